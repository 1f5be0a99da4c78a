"""Event names and topic naming for change events."""

from enum import Enum

from ..common.schema_job_record import JobKind, JobRecord, JobStatus


class EventName(str, Enum):
    PAGE_GENERATING = "page:generating"

    IMAGE_CREATED = "image:created"
    IMAGE_UPDATE = "image:update"
    IMAGE_DELETED = "image:deleted"
    IMAGE_SET_DEFAULT = "image:set:default"
    IMAGE_BULK_ADD = "image:bulk:add"

    SPEECH_CREATED = "speech:created"
    SPEECH_UPDATE = "speech:update"
    SPEECH_DELETED = "speech:deleted"
    SPEECH_SET_DEFAULT = "speech:set:default"
    SPEECH_BULK_ADD = "speech:bulk:add"

    VIDEO_CREATED = "video:created"
    VIDEO_UPDATE = "video:update"
    VIDEO_DELETED = "video:deleted"

    MEDIA_UPDATE = "media:update"
    STORY_SETTINGS_UPDATE = "story:settings:update"

    JOB_PENDING = "job:pending"
    JOB_RUNNING = "job:running"
    JOB_DONE = "job:done"
    JOB_FAILED = "job:failed"


_JOB_EVENTS: dict[JobStatus, EventName] = {
    JobStatus.pending: EventName.JOB_PENDING,
    JobStatus.running: EventName.JOB_RUNNING,
    JobStatus.done: EventName.JOB_DONE,
    JobStatus.failed: EventName.JOB_FAILED,
}

_CREATED_EVENTS: dict[JobKind, EventName] = {
    JobKind.image: EventName.IMAGE_CREATED,
    JobKind.speech: EventName.SPEECH_CREATED,
    JobKind.video: EventName.VIDEO_CREATED,
}


def job_event_name(status: JobStatus) -> EventName:
    return _JOB_EVENTS[status]


def artifact_created_event(kind: JobKind) -> EventName:
    """Completion event for an artifact kind; job:done for non-artifact kinds."""
    return _CREATED_EVENTS.get(kind, EventName.JOB_DONE)


def story_topic(story_id: int) -> str:
    return f"story:{story_id}"


def job_topic(job_id: str) -> str:
    return f"job:{job_id}"


def topic_for_job(job: JobRecord) -> str:
    if job.story_id is not None:
        return story_topic(job.story_id)
    return job_topic(job.job_id)
