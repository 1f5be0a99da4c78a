from .mqtt_impl import (
    BroadcasterBase,
    InvalidMQTTURLException,
    LocalBroadcaster,
    MQTTBroadcaster,
    SubscriptionTable,
    UnsupportedMQTTURLException,
    parse_mqtt_url,
)
from .mqtt_instance import create_broadcaster

__all__ = [
    "BroadcasterBase",
    "InvalidMQTTURLException",
    "LocalBroadcaster",
    "MQTTBroadcaster",
    "SubscriptionTable",
    "UnsupportedMQTTURLException",
    "create_broadcaster",
    "parse_mqtt_url",
]
