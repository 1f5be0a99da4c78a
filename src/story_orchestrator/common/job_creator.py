from collections.abc import Iterable, Mapping

from loguru import logger
from pydantic import BaseModel, JsonValue

from ..events.event_names import artifact_created_event, story_topic, topic_for_job
from ..events.publisher import EventPublisher
from .content_hash import find_artifact, fingerprint
from .job_store import JobStore
from .schema_job_record import JobKind, JobRecord


class GenerationRequest(BaseModel):
    """Outcome of asking for an artifact to be generated."""

    fingerprint: str
    cache_hit: bool
    artifact_path: str | None = None
    job: JobRecord | None = None


def request_generation(
    *,
    kind: JobKind,
    store: JobStore,
    publisher: EventPublisher,
    content: bytes | str,
    settings: object = None,
    existing_artifacts: Iterable[str | None] = (),
    story_id: int | None = None,
    page_id: int | None = None,
    depends_on: Iterable[str] = (),
    metadata: Mapping[str, JsonValue] | None = None,
) -> GenerationRequest:
    """Reuse an identical artifact if one exists, otherwise enqueue a job.

    A cache hit creates no job: the completion event for the existing
    artifact is published straight away.

    Raises:
        BrokerUnavailableError: cache hit whose completion event was refused
        CyclicDependencyError, UnknownDependencyError: from job creation
    """
    content_fingerprint = fingerprint(content, settings)

    artifact_path = find_artifact(existing_artifacts, content_fingerprint)
    if artifact_path is not None:
        logger.info(f"Reusing {kind.value} artifact {artifact_path}")
        if story_id is not None:
            topic = story_topic(story_id)
        else:
            topic = f"{kind.value}:{content_fingerprint}"
        publisher.publish(
            topic,
            artifact_created_event(kind).value,
            {
                "artifact_path": artifact_path,
                "fingerprint": content_fingerprint,
                "story_id": story_id,
                "page_id": page_id,
                "cached": True,
            },
        )
        return GenerationRequest(
            fingerprint=content_fingerprint,
            cache_hit=True,
            artifact_path=artifact_path,
        )

    job = store.create(
        kind,
        story_id=story_id,
        page_id=page_id,
        depends_on=depends_on,
        metadata={**(metadata or {}), "fingerprint": content_fingerprint},
    )
    logger.info(f"Queued {kind.value} job {job.job_id} on {topic_for_job(job)}")
    return GenerationRequest(fingerprint=content_fingerprint, cache_hit=False, job=job)
