"""JobRepository Protocol - interface for job persistence."""

from typing import Protocol, runtime_checkable

from .schema_job_record import JobRecord, JobStatus


@runtime_checkable
class JobRepository(Protocol):
    """Protocol for job persistence operations.

    Applications back this with their relational store. Implementations
    must make ``compare_and_set`` atomic per job id; the job store builds
    every state change on top of it.
    """

    def add_job(self, job: JobRecord) -> bool:
        """Save a new job.

        Returns:
            True if saved, False if a job with the same id already exists
        """
        ...

    def get_job(self, job_id: str) -> JobRecord | None:
        """Get job by ID."""
        ...

    def get_job_by_correlation_id(self, correlation_id: str) -> JobRecord | None:
        """Get job by its external correlation id."""
        ...

    def compare_and_set(
        self,
        job_id: str,
        expected_version: int,
        job: JobRecord,
    ) -> bool:
        """Replace the stored job if its version still matches.

        Args:
            job_id: Unique job identifier
            expected_version: Version the caller read before building ``job``
            job: Replacement record (its version must be expected_version + 1)

        Returns:
            True if the write won, False if the job is missing or was
            changed concurrently
        """
        ...

    def list_jobs(
        self,
        *,
        story_id: int | None = None,
        status: JobStatus | None = None,
        depends_on: str | None = None,
    ) -> list[JobRecord]:
        """List jobs matching every given filter, in insertion order."""
        ...
