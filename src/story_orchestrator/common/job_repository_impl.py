from __future__ import annotations

import threading
from typing_extensions import override

from .job_repository import JobRepository
from .schema_job_record import JobRecord, JobStatus


class InMemoryJobRepository(JobRepository):
    """
    Thread-safe in-process implementation of JobRepository.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._jobs: dict[str, JobRecord] = {}
        self._lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    @override
    def add_job(self, job: JobRecord) -> bool:
        with self._lock:
            if job.job_id in self._jobs:
                return False
            self._jobs[job.job_id] = job.model_copy(deep=True)
            return True

    @override
    def compare_and_set(
        self,
        job_id: str,
        expected_version: int,
        job: JobRecord,
    ) -> bool:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or current.version != expected_version:
                return False
            self._jobs[job_id] = job.model_copy(deep=True)
            return True

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @override
    def get_job(self, job_id: str) -> JobRecord | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    @override
    def get_job_by_correlation_id(self, correlation_id: str) -> JobRecord | None:
        with self._lock:
            for job in self._jobs.values():
                if job.correlation_id == correlation_id:
                    return job.model_copy(deep=True)
            return None

    @override
    def list_jobs(
        self,
        *,
        story_id: int | None = None,
        status: JobStatus | None = None,
        depends_on: str | None = None,
    ) -> list[JobRecord]:
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if (story_id is None or job.story_id == story_id)
                and (status is None or job.status == status)
                and (depends_on is None or depends_on in job.depends_on)
            ]
