"""story_orchestrator - Job orchestration and live progress fan-out for story generation."""

from .app import Orchestrator, build_orchestrator, create_app
from .common.content_hash import (
    extract_fingerprint,
    find_artifact,
    fingerprint,
    fingerprint_filename,
)
from .common.errors import (
    ActiveJobError,
    BrokerUnavailableError,
    CyclicDependencyError,
    InvalidTransitionError,
    JobAlreadyExistsError,
    JobNotFoundError,
    OrchestratorError,
    UnknownDependencyError,
)
from .common.generation_task import GenerationTask
from .common.job_creator import GenerationRequest, request_generation
from .common.job_repository import JobRepository
from .common.job_repository_impl import InMemoryJobRepository
from .common.job_store import JobStore
from .common.progress import ProgressInfo, Severity, project_progress
from .common.scheduler import DependencyScheduler
from .common.schema_job_record import (
    JobKind,
    JobProgress,
    JobRecord,
    JobRecordUpdate,
    JobStatus,
)
from .config import OrchestratorSettings
from .events import EventName, EventPublisher, ObserverConnection, RoomBridge
from .utils.mqtt import (
    BroadcasterBase,
    LocalBroadcaster,
    MQTTBroadcaster,
    create_broadcaster,
)
from .worker import Worker

__version__ = "0.1.0"

__all__ = [
    "ActiveJobError",
    "BroadcasterBase",
    "BrokerUnavailableError",
    "CyclicDependencyError",
    "DependencyScheduler",
    "EventName",
    "EventPublisher",
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
    "LocalBroadcaster",
    "MQTTBroadcaster",
    "ObserverConnection",
    "Orchestrator",
    "OrchestratorError",
    "OrchestratorSettings",
    "ProgressInfo",
    "RoomBridge",
    "Severity",
    "UnknownDependencyError",
    "Worker",
    "__version__",
    "build_orchestrator",
    "create_app",
    "create_broadcaster",
    "extract_fingerprint",
    "find_artifact",
    "fingerprint",
    "fingerprint_filename",
    "project_progress",
    "request_generation",
]
