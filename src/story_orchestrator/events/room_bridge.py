"""Room bridge - fans broker events out to topic-scoped observer rooms.

One process-wide subscription to the event channel feeds every observer
connection joined to an event's topic. Each connection owns a bounded
outbox, so a slow or dead observer only ever loses its own messages.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from uuid import uuid4

from loguru import logger

from ..common.errors import BrokerUnavailableError
from ..utils.mqtt import BroadcasterBase
from .publisher import DEFAULT_EVENT_CHANNEL, decode_event

ObserverMessage = dict[str, object]
SendFn = Callable[[ObserverMessage], Awaitable[None]]

DEFAULT_MAX_PENDING = 100


class ObserverConnection:
    """One observer's transport connection, as seen by the bridge.

    ``send`` is the transport's async send (e.g. ``WebSocket.send_json``).
    Messages wait in a bounded outbox until ``pump`` delivers them; when
    the outbox is full new messages are dropped and counted.
    """

    def __init__(
        self,
        send: SendFn,
        max_pending: int = DEFAULT_MAX_PENDING,
        connection_id: str | None = None,
    ):
        self.connection_id: str = connection_id or str(uuid4())
        self.topics: set[str] = set()
        self.ready: bool = False
        self.closed: bool = False
        self.dropped: int = 0
        self._send: SendFn = send
        self._outbox: asyncio.Queue[ObserverMessage] = asyncio.Queue(maxsize=max_pending)
        self._ready_callbacks: list[Callable[[], None]] = []
        self._close_callbacks: list[Callable[[ObserverConnection], None]] = []

    def __repr__(self) -> str:
        return f"ObserverConnection({self.connection_id!r}, ready={self.ready})"

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def on_ready(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` every time the transport becomes ready."""
        self._ready_callbacks.append(callback)

    def on_close(self, callback: Callable[[ObserverConnection], None]) -> None:
        self._close_callbacks.append(callback)

    def mark_ready(self) -> None:
        if self.closed:
            return
        self.ready = True
        for callback in list(self._ready_callbacks):
            callback()

    def offer(self, message: ObserverMessage) -> bool:
        """Queue a message without blocking. False if closed or full."""
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Observer {self.connection_id} outbox full, dropped {message.get('event')}"
            )
            return False

    async def pump(self) -> None:
        """Deliver queued messages until the connection closes."""
        while not self.closed:
            message = await self._outbox.get()
            try:
                await self._send(message)
            except Exception as e:
                logger.warning(f"Observer {self.connection_id} send failed: {e}")
                self.close()
                return

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.ready = False
        for callback in list(self._close_callbacks):
            callback(self)


class RoomBridge:
    """Subscribes to the event channel and re-broadcasts to rooms.

    Broker callbacks may arrive on the broker client's own thread. Outboxes
    are only touched from the bound loop while it runs, or, with no loop
    bound, from the thread that called ``start``. Events arriving anywhere
    else are logged and dropped.

    Example:
        bridge = RoomBridge(broadcaster)
        bridge.bind_loop(asyncio.get_running_loop())
        bridge.start()

        connection = ObserverConnection(websocket.send_json)
        bridge.join("story:1", connection)
        connection.mark_ready()
    """

    def __init__(
        self,
        broadcaster: BroadcasterBase,
        channel: str = DEFAULT_EVENT_CHANNEL,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.broadcaster: BroadcasterBase = broadcaster
        self.channel: str = channel
        self._loop: asyncio.AbstractEventLoop | None = loop
        self._rooms: dict[str, set[ObserverConnection]] = {}
        self._watched: set[str] = set()
        self._lock: threading.Lock = threading.Lock()
        self._subscription_id: str | None = None
        self._owner_thread: int | None = None

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._subscription_id is not None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def start(self) -> None:
        if self._subscription_id is not None:
            logger.info("Room bridge already started")
            return

        subscription_id = self.broadcaster.subscribe(
            topic=self.channel, callback=self._on_message
        )
        if subscription_id is None:
            raise BrokerUnavailableError(self.channel, "subscribe")

        self._subscription_id = subscription_id
        self._owner_thread = threading.get_ident()
        logger.info(f"Room bridge subscribed to channel: {self.channel}")

    def stop(self) -> None:
        if self._subscription_id is None:
            return
        _ = self.broadcaster.unsubscribe(self._subscription_id)
        self._subscription_id = None
        logger.info("Room bridge stopped")

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def join(self, topic: str, connection: ObserverConnection) -> None:
        """Add the connection to a room, now or once it becomes ready."""
        if connection.closed:
            return
        self._watch(connection)
        connection.topics.add(topic)
        if connection.ready:
            self._add(topic, connection)
        else:
            logger.debug(f"Deferred join of {connection.connection_id} to {topic}")

    def leave(self, topic: str, connection: ObserverConnection) -> None:
        connection.topics.discard(topic)
        with self._lock:
            members = self._rooms.get(topic)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self._rooms[topic]
        logger.info(f"Client {connection.connection_id} left {topic}")

    def members(self, topic: str) -> list[ObserverConnection]:
        with self._lock:
            return list(self._rooms.get(topic, ()))

    def _watch(self, connection: ObserverConnection) -> None:
        with self._lock:
            if connection.connection_id in self._watched:
                return
            self._watched.add(connection.connection_id)
        connection.on_ready(lambda: self._restore(connection))
        connection.on_close(self._drop)

    def _add(self, topic: str, connection: ObserverConnection) -> None:
        with self._lock:
            self._rooms.setdefault(topic, set()).add(connection)
        logger.info(f"Client {connection.connection_id} joined {topic}")

    def _restore(self, connection: ObserverConnection) -> None:
        for topic in list(connection.topics):
            self._add(topic, connection)

    def _drop(self, connection: ObserverConnection) -> None:
        with self._lock:
            for topic in [t for t, m in self._rooms.items() if connection in m]:
                self._rooms[topic].discard(connection)
                if not self._rooms[topic]:
                    del self._rooms[topic]
            self._watched.discard(connection.connection_id)
        logger.info(f"Client disconnected: {connection.connection_id}")

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast(self, topic: str, event_name: str, payload: object) -> int:
        """Offer the event to every member of the topic's room.

        Returns:
            Number of observers that accepted the message
        """
        message: ObserverMessage = {"event": event_name, "payload": payload}
        members = self.members(topic)
        delivered = sum(1 for connection in members if connection.offer(message))
        logger.debug(
            f"Forwarded {event_name} event to {topic} ({delivered}/{len(members)} observers)"
        )
        return delivered

    def _on_message(self, _channel: str, message: str) -> None:
        try:
            topic, event_name, payload = decode_event(message)
        except ValueError as e:
            logger.error(f"Error processing broker message: {e}")
            return

        loop = self._loop
        if loop is None:
            if threading.get_ident() != self._owner_thread:
                logger.warning(
                    f"Dropped {event_name} event for {topic}: no event loop bound "
                    f"for broker-thread delivery"
                )
                return
            _ = self.broadcast(topic, event_name, payload)
            return

        if self._on_loop(loop):
            _ = self.broadcast(topic, event_name, payload)
            return

        if loop.is_closed() or not loop.is_running():
            logger.warning(f"Dropped {event_name} event for {topic}: event loop is not running")
            return
        try:
            _ = loop.call_soon_threadsafe(self.broadcast, topic, event_name, payload)
        except RuntimeError as e:
            # loop closed after the check above
            logger.warning(f"Dropped {event_name} event for {topic}: {e}")

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False
