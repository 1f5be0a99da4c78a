"""Exception hierarchy for the job store and event publisher."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .schema_job_record import JobRecord, JobStatus


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""


# ---------------------------------------------------------------------------
# Job store
# ---------------------------------------------------------------------------


class JobStoreError(OrchestratorError):
    """Base class for job store errors."""


class JobNotFoundError(JobStoreError):
    def __init__(self, job_id: str):
        self.job_id: str = job_id
        super().__init__(f"Job '{job_id}' not found")


class JobAlreadyExistsError(JobStoreError):
    def __init__(self, job_id: str):
        self.job_id: str = job_id
        super().__init__(f"Job '{job_id}' already exists")


class CyclicDependencyError(JobStoreError):
    def __init__(self, job_id: str, path: Sequence[str] = ()):
        self.job_id: str = job_id
        self.path: list[str] = list(path)
        if self.path:
            chain = " -> ".join([job_id, *self.path])
            super().__init__(f"Job '{job_id}' would depend on itself: {chain}")
        else:
            super().__init__(f"Job '{job_id}' cannot depend on itself")


class UnknownDependencyError(JobStoreError):
    def __init__(self, missing: Sequence[str]):
        self.missing: list[str] = list(missing)
        super().__init__(f"Unknown dependencies: {', '.join(self.missing)}")


class InvalidTransitionError(JobStoreError):
    def __init__(
        self,
        job_id: str,
        current: JobStatus,
        requested: JobStatus,
        reason: str | None = None,
    ):
        self.job_id: str = job_id
        self.current: JobStatus = current
        self.requested: JobStatus = requested
        message = f"Job '{job_id}' cannot move from {current.value} to {requested.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ActiveJobError(JobStoreError):
    """Raised when a story already has pending or running work of a kind."""

    def __init__(self, job: JobRecord):
        self.job: JobRecord = job
        super().__init__(f"{job.kind.value} generation job already in progress")


# ---------------------------------------------------------------------------
# Event publisher
# ---------------------------------------------------------------------------


class BrokerUnavailableError(OrchestratorError):
    """The broker did not accept an event.

    When raised from ``JobStore.transition`` the state change has already
    been persisted and ``job`` holds the stored record.
    """

    def __init__(self, topic: str, event_name: str, job: JobRecord | None = None):
        self.topic: str = topic
        self.event_name: str = event_name
        self.job: JobRecord | None = job
        super().__init__(f"Broker unavailable, could not publish {event_name} to {topic}")
