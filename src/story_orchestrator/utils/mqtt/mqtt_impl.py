"""Broker clients carrying change events between processes.

Both clients hand payloads to callbacks as ``(topic, text)``. Adapter
methods never raise: failures are logged and reported as False or None.
"""

import threading
from collections.abc import Callable
from typing import Protocol
from urllib.parse import urlparse
from uuid import uuid4

import paho.mqtt.client as mqtt
from loguru import logger
from paho.mqtt.client import ConnectFlags, DisconnectFlags, MQTTMessage
from typing_extensions import override
from paho.mqtt.enums import CallbackAPIVersion
from paho.mqtt.properties import Properties
from paho.mqtt.reasoncodes import ReasonCode

MessageCallback = Callable[[str, str], None]

SUPPORTED_SCHEMES = ("mqtt", "tcp")


class InvalidMQTTURLException(ValueError):
    """Raised when an MQTT URL is missing its host or port."""


class UnsupportedMQTTURLException(ValueError):
    """Raised when an MQTT URL uses a scheme other than mqtt://."""


def parse_mqtt_url(mqtt_url: str | None) -> tuple[str, int]:
    """Split ``mqtt://host:port`` into its broker host and port."""
    if mqtt_url is None:
        raise ValueError("MQTT URL cannot be None")

    parsed = urlparse(mqtt_url)
    if parsed.scheme not in SUPPORTED_SCHEMES:
        raise UnsupportedMQTTURLException(
            f"Unsupported MQTT URL scheme '{parsed.scheme}' in {mqtt_url}"
        )
    try:
        port = parsed.port
    except ValueError as e:
        raise InvalidMQTTURLException(f"Invalid port in MQTT URL {mqtt_url}") from e
    if not parsed.hostname or port is None:
        raise InvalidMQTTURLException(
            f"MQTT URL must include host and port, got {mqtt_url}"
        )
    return parsed.hostname, port


class SubscriptionTable:
    """Thread-safe map of subscription id -> (topic filter, callback).

    Topic filters follow MQTT wildcard rules (``+`` and ``#``).
    """

    def __init__(self):
        self._entries: dict[str, tuple[str, MessageCallback]] = {}
        self._lock: threading.Lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, subscription_id: object) -> bool:
        with self._lock:
            return subscription_id in self._entries

    def add(self, topic: str, callback: MessageCallback) -> str:
        subscription_id = str(uuid4())
        with self._lock:
            self._entries[subscription_id] = (topic, callback)
        return subscription_id

    def remove(self, subscription_id: str) -> str | None:
        """Drop a subscription and return its topic filter, if it existed."""
        with self._lock:
            entry = self._entries.pop(subscription_id, None)
        return entry[0] if entry is not None else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def topics(self) -> set[str]:
        with self._lock:
            return {topic for topic, _ in self._entries.values()}

    def has_topic(self, topic: str) -> bool:
        return topic in self.topics()

    def dispatch(self, topic: str, payload: str) -> int:
        """Call every callback whose filter matches ``topic``.

        A failing callback is logged and does not stop the others.

        Returns:
            Number of callbacks invoked
        """
        with self._lock:
            targets = [
                (subscription_id, callback)
                for subscription_id, (pattern, callback) in self._entries.items()
                if mqtt.topic_matches_sub(pattern, topic)
            ]
        for subscription_id, callback in targets:
            try:
                callback(topic, payload)
            except Exception as e:
                logger.error(f"Error in callback for subscription {subscription_id}: {e}")
        return len(targets)


class BroadcasterBase(Protocol):
    connected: bool

    def connect(self) -> bool:
        return False

    def disconnect(self):
        pass

    def publish_event(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        return False

    def subscribe(
        self,
        *,
        topic: str,
        callback: MessageCallback,
        qos: int = 1,
    ) -> str | None:
        return None

    def unsubscribe(self, subscription_id: str) -> bool:
        return False


class MQTTBroadcaster(BroadcasterBase):
    """Event broadcaster over an MQTT v5 broker.

    Callbacks run on paho's network thread. Topic subscriptions are shared:
    several callbacks on one topic cost a single broker subscription, and
    every tracked topic is subscribed again after a reconnect.
    """

    def __init__(self, mqtt_url: str | None = None, connect_timeout: float = 5.0):
        self.broker: str
        self.port: int
        self.broker, self.port = parse_mqtt_url(mqtt_url)
        self.connect_timeout: float = connect_timeout
        self.client: mqtt.Client | None = None
        self.connected: bool = False
        self.subscriptions: SubscriptionTable = SubscriptionTable()
        self._handshake: threading.Event = threading.Event()

    @override
    def connect(self) -> bool:
        """Connect and wait up to ``connect_timeout`` for the broker's CONNACK."""
        logger.info(f"Connecting to MQTT broker {self.broker}:{self.port}")
        self._handshake.clear()
        try:
            client = mqtt.Client(
                callback_api_version=CallbackAPIVersion.VERSION2,
                protocol=mqtt.MQTTv5,
            )
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message
            _ = client.reconnect_delay_set(min_delay=1, max_delay=30)

            self.client = client
            _ = client.connect(self.broker, self.port, keepalive=60, clean_start=True)
            _ = client.loop_start()
        except Exception as e:
            logger.warning(f"Failed to connect to MQTT broker {self.broker}:{self.port}: {e}")
            self.connected = False
            return False

        if not self._handshake.wait(self.connect_timeout):
            logger.warning(
                f"No answer from MQTT broker {self.broker}:{self.port} "
                f"within {self.connect_timeout}s"
            )
        return self.connected

    @override
    def disconnect(self):
        self.subscriptions.clear()
        client, self.client = self.client, None
        self.connected = False
        if client is not None:
            _ = client.disconnect()
            _ = client.loop_stop()

    @override
    def publish_event(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        client = self.client
        if not self.connected or client is None:
            return False

        try:
            # paho queues the message; rc only says whether it was accepted
            info = client.publish(topic, payload, qos=qos, retain=False)
        except Exception as e:
            logger.error(f"Error publishing to {topic}: {e}")
            return False

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Broker client refused publish to {topic}: {mqtt.error_string(info.rc)}")
            return False
        return True

    @override
    def subscribe(
        self, *, topic: str, callback: MessageCallback, qos: int = 1
    ) -> str | None:
        """Register ``callback`` for ``topic`` (wildcards allowed).

        Returns:
            Subscription ID if successful, None otherwise
        """
        client = self.client
        if not self.connected or client is None:
            return None

        if not self.subscriptions.has_topic(topic):
            try:
                rc, _mid = client.subscribe(topic, qos=qos)
            except Exception as e:
                logger.error(f"Error subscribing to {topic}: {e}")
                return None
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Failed to subscribe to {topic}: {mqtt.error_string(rc)}")
                return None

        subscription_id = self.subscriptions.add(topic, callback)
        logger.info(f"Subscribed to {topic} (subscription_id: {subscription_id})")
        return subscription_id

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        client = self.client
        if not self.connected or client is None:
            return False

        topic = self.subscriptions.remove(subscription_id)
        if topic is None:
            logger.warning(f"Subscription ID not found: {subscription_id}")
            return False

        if not self.subscriptions.has_topic(topic):
            try:
                rc, _mid = client.unsubscribe(topic)
            except Exception as e:
                logger.error(f"Error unsubscribing from {topic}: {e}")
                return False
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Failed to unsubscribe from {topic}: {mqtt.error_string(rc)}")
                return False

        logger.info(f"Unsubscribed {subscription_id} from {topic}")
        return True

    #
    # MQTT v5 Callback APIs
    #
    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: object,
        _flags: ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None,
    ) -> None:
        self.connected = reason_code == 0
        self._handshake.set()
        if not self.connected:
            logger.warning(f"MQTT connection refused: reason={reason_code}, props={properties}")
            return

        logger.info("MQTT connected using v5")
        # clean_start drops broker-side subscriptions on every reconnect
        for topic in sorted(self.subscriptions.topics()):
            rc, _mid = client.subscribe(topic, qos=1)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Failed to resubscribe to {topic}: {mqtt.error_string(rc)}")

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: object,
        _disconnect_flags: DisconnectFlags,
        reason_code: ReasonCode,
        _properties: Properties | None,
    ) -> None:
        self.connected = False
        logger.warning(f"MQTT disconnected: {reason_code}")

    def _on_message(
        self, _client: mqtt.Client, _userdata: object, message: MQTTMessage
    ) -> None:
        try:
            payload = message.payload.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error(f"Dropping non UTF-8 message on {message.topic}: {e}")
            return
        _ = self.subscriptions.dispatch(message.topic, payload)


class LocalBroadcaster(BroadcasterBase):
    """In-process broker for single-process deployments.

    Delivery is synchronous on the publishing thread and follows the same
    topic filter rules as MQTT.
    """

    def __init__(self):
        self.connected: bool = False
        self.subscriptions: SubscriptionTable = SubscriptionTable()

    @override
    def connect(self) -> bool:
        self.connected = True
        return True

    @override
    def disconnect(self):
        self.subscriptions.clear()
        self.connected = False

    @override
    def publish_event(self, *, topic: str, payload: str, qos: int = 1) -> bool:
        if not self.connected:
            return False
        _ = self.subscriptions.dispatch(topic, payload)
        return True

    @override
    def subscribe(
        self, *, topic: str, callback: MessageCallback, qos: int = 1
    ) -> str | None:
        if not self.connected:
            return None
        subscription_id = self.subscriptions.add(topic, callback)
        logger.info(f"Subscribed to {topic} (subscription_id: {subscription_id})")
        return subscription_id

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        return self.subscriptions.remove(subscription_id) is not None
