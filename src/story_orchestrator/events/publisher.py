"""Event publisher - puts change events on the shared broker channel."""

import json

from loguru import logger
from pydantic_core import to_jsonable_python

from ..common.errors import BrokerUnavailableError
from ..utils.mqtt import BroadcasterBase

DEFAULT_EVENT_CHANNEL = "socket"

EventTriple = tuple[str, str, object]


def encode_event(topic: str, event_name: str, payload: object) -> str:
    return json.dumps(to_jsonable_python([topic, event_name, payload]))


def decode_event(message: str | bytes) -> EventTriple:
    """Parse a ``[topic, eventName, payload]`` broker message.

    Raises:
        ValueError: If the message is not a three-element JSON array
                    with string topic and event name.
    """
    try:
        decoded = json.loads(message)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"Event message is not valid JSON: {e}") from e

    if not isinstance(decoded, list) or len(decoded) != 3:
        raise ValueError("Event message must be a [topic, eventName, payload] array")

    topic, event_name, payload = decoded
    if not isinstance(topic, str) or not isinstance(event_name, str):
        raise ValueError("Event topic and name must be strings")
    return topic, event_name, payload


class EventPublisher:
    """Publishes (topic, event_name, payload) triples on one broker channel.

    Fire-and-forget: the broker client queues the message and ``publish``
    returns. There is no retry; a refused message raises
    BrokerUnavailableError and the caller decides what to do.
    """

    def __init__(
        self,
        broadcaster: BroadcasterBase,
        channel: str = DEFAULT_EVENT_CHANNEL,
        qos: int = 1,
    ):
        self.broadcaster: BroadcasterBase = broadcaster
        self.channel: str = channel
        self.qos: int = qos

    def publish(self, topic: str, event_name: str, payload: object) -> None:
        event_name = str(getattr(event_name, "value", event_name))
        message = encode_event(topic, event_name, payload)

        if not self.broadcaster.publish_event(
            topic=self.channel, payload=message, qos=self.qos
        ):
            logger.error(f"Failed to emit {event_name} event to {topic}")
            raise BrokerUnavailableError(topic, event_name)

        logger.debug(f"Emitted {event_name} event to {topic}")
