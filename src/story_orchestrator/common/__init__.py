"""Common module - job model, persistence protocol, store and scheduler."""

from .content_hash import extract_fingerprint, find_artifact, fingerprint, fingerprint_filename
from .errors import (
    ActiveJobError,
    BrokerUnavailableError,
    CyclicDependencyError,
    InvalidTransitionError,
    JobAlreadyExistsError,
    JobNotFoundError,
    JobStoreError,
    OrchestratorError,
    UnknownDependencyError,
)
from .generation_task import GenerationTask
from .job_creator import GenerationRequest, request_generation
from .job_repository import JobRepository
from .job_repository_impl import InMemoryJobRepository
from .job_store import JobStore
from .progress import ProgressInfo, Severity, project_progress
from .scheduler import DependencyScheduler
from .schema_job_record import JobKind, JobProgress, JobRecord, JobRecordUpdate, JobStatus

__all__ = [
    "ActiveJobError",
    "BrokerUnavailableError",
    "CyclicDependencyError",
    "DependencyScheduler",
    "GenerationRequest",
    "GenerationTask",
    "InMemoryJobRepository",
    "InvalidTransitionError",
    "JobAlreadyExistsError",
    "JobKind",
    "JobNotFoundError",
    "JobProgress",
    "JobRecord",
    "JobRecordUpdate",
    "JobRepository",
    "JobStatus",
    "JobStore",
    "JobStoreError",
    "OrchestratorError",
    "ProgressInfo",
    "Severity",
    "UnknownDependencyError",
    "extract_fingerprint",
    "find_artifact",
    "fingerprint",
    "fingerprint_filename",
    "project_progress",
    "request_generation",
]
