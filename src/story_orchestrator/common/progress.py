"""Progress projection - presentation view of a job's raw state."""

from enum import Enum

from pydantic import BaseModel, Field

from .schema_job_record import JobProgress, JobRecord, JobStatus


class Severity(str, Enum):
    info = "info"
    warning = "warning"
    success = "success"
    failure = "failure"


class ProgressInfo(BaseModel):
    percentage: int = Field(ge=0, le=100)
    message: str
    severity: Severity


def project_progress(job: JobRecord) -> ProgressInfo:
    """Map a job to (percentage, message, severity). Never mutates the job."""
    if job.status == JobStatus.done:
        return ProgressInfo(
            percentage=100, message="Generation completed", severity=Severity.success
        )

    if job.status == JobStatus.failed:
        message = f"Generation failed: {job.error}" if job.error else "Generation failed"
        return ProgressInfo(percentage=0, message=message, severity=Severity.failure)

    if job.status == JobStatus.running and job.progress is not None:
        if isinstance(job.progress, JobProgress):
            return ProgressInfo(
                percentage=job.progress.percentage,
                message=job.progress.message or "Processing",
                severity=Severity.info,
            )
        return ProgressInfo(
            percentage=job.progress, message="Processing", severity=Severity.info
        )

    return ProgressInfo(percentage=0, message="Queued", severity=Severity.warning)


def is_processing(status: JobStatus) -> bool:
    return status in (JobStatus.pending, JobStatus.running, JobStatus.failed)


def is_completed(status: JobStatus) -> bool:
    return status == JobStatus.done


def is_failed(status: JobStatus) -> bool:
    return status == JobStatus.failed


def can_delete(status: JobStatus) -> bool:
    return is_completed(status) or is_failed(status)
