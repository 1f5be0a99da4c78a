"""Events - change event publishing and observer fan-out."""

from .event_names import (
    EventName,
    artifact_created_event,
    job_event_name,
    job_topic,
    story_topic,
    topic_for_job,
)
from .publisher import DEFAULT_EVENT_CHANNEL, EventPublisher, decode_event, encode_event
from .room_bridge import ObserverConnection, RoomBridge

__all__ = [
    "DEFAULT_EVENT_CHANNEL",
    "EventName",
    "EventPublisher",
    "ObserverConnection",
    "RoomBridge",
    "artifact_created_event",
    "decode_event",
    "encode_event",
    "job_event_name",
    "job_topic",
    "story_topic",
    "topic_for_job",
]
