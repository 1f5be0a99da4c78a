from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, ClassVar

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator

JobMetadataRecord = dict[str, JsonValue]
JobResultRecord = dict[str, JsonValue]

Percentage = Annotated[int, Field(ge=0, le=100)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    done = "done"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.done, JobStatus.failed)


class JobKind(str, Enum):
    story = "story"
    page = "page"
    image = "image"
    speech = "speech"
    video = "video"


class JobProgress(BaseModel):
    """Structured progress payload reported by a worker."""

    message: str = ""
    percentage: Percentage = 0

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


JobProgressValue = Percentage | JobProgress


class JobRecord(BaseModel):
    """Persisted job representation (DB / wire format)."""

    job_id: str
    correlation_id: str | None = None
    kind: JobKind

    status: JobStatus = JobStatus.pending
    ready: bool = False
    progress: JobProgressValue | None = None

    story_id: int | None = None
    page_id: int | None = None
    depends_on: list[str] = Field(default_factory=list)

    metadata: JobMetadataRecord = Field(default_factory=dict)
    result: JobResultRecord | None = None
    error: str | None = None

    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_millis: int | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_outcome(self) -> "JobRecord":
        if self.result and self.error:
            raise ValueError("A job cannot carry both a result and an error")
        return self


class JobRecordUpdate(BaseModel):
    """Partial update applied alongside a status transition."""

    progress: JobProgressValue | None = None
    result: JobResultRecord | None = None
    error: str | None = None
    correlation_id: str | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_outcome(self) -> "JobRecordUpdate":
        if self.result and self.error:
            raise ValueError("result and error are mutually exclusive")
        return self


class JobPage(BaseModel):
    jobs: list[JobRecord]
    total: int
    page: int
    page_size: int


class JobStats(BaseModel):
    by_status: dict[str, int]
    by_kind: dict[str, int]
    total_count: int
    recent_jobs: list[JobRecord]
