"""Unit tests for RoomBridge fan-out and ObserverConnection outboxes."""

import asyncio
import threading

import pytest

from story_orchestrator.common.errors import BrokerUnavailableError
from story_orchestrator.events.publisher import DEFAULT_EVENT_CHANNEL, EventPublisher
from story_orchestrator.events.room_bridge import (
    ObserverConnection,
    ObserverMessage,
    RoomBridge,
)
from story_orchestrator.utils.mqtt import LocalBroadcaster

# ============================================================================
# Helpers
# ============================================================================


class RecordingTransport:
    """Collects messages sent to one observer."""

    def __init__(self):
        self.messages: list[ObserverMessage] = []
        self.received: asyncio.Event = asyncio.Event()

    async def send(self, message: ObserverMessage) -> None:
        self.messages.append(message)
        self.received.set()


def drain(connection: ObserverConnection) -> list[ObserverMessage]:
    """Pull queued messages without a running pump."""
    messages: list[ObserverMessage] = []
    while connection.pending:
        messages.append(connection._outbox.get_nowait())  # pyright: ignore[reportPrivateUsage]
    return messages


def ready_connection(max_pending: int = 100) -> ObserverConnection:
    connection = ObserverConnection(RecordingTransport().send, max_pending=max_pending)
    connection.mark_ready()
    return connection


@pytest.fixture
def bridge(broadcaster: LocalBroadcaster):
    bridge = RoomBridge(broadcaster)
    bridge.start()
    yield bridge
    bridge.stop()


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifecycle:
    def test_start_is_idempotent(self, broadcaster: LocalBroadcaster):
        bridge = RoomBridge(broadcaster)
        bridge.start()
        bridge.start()

        assert bridge.is_running
        assert len(broadcaster.subscriptions) == 1

        bridge.stop()
        assert not bridge.is_running
        assert len(broadcaster.subscriptions) == 0

    def test_start_fails_without_broker(self):
        bridge = RoomBridge(LocalBroadcaster())
        with pytest.raises(BrokerUnavailableError):
            bridge.start()
        assert not bridge.is_running


# ============================================================================
# Fan-out Tests
# ============================================================================


class TestFanOut:
    def test_event_reaches_every_room_member(
        self, bridge: RoomBridge, publisher: EventPublisher
    ):
        first, second, other = ready_connection(), ready_connection(), ready_connection()
        bridge.join("story:1", first)
        bridge.join("story:1", second)
        bridge.join("story:2", other)

        publisher.publish("story:1", "image:created", {"page_id": 3})

        expected = {"event": "image:created", "payload": {"page_id": 3}}
        assert drain(first) == [expected]
        assert drain(second) == [expected]
        assert drain(other) == []

    def test_event_without_room_is_dropped(
        self, bridge: RoomBridge, publisher: EventPublisher
    ):
        publisher.publish("story:404", "job:done", {})
        assert bridge.broadcast("story:404", "job:done", {}) == 0

    def test_leave_stops_delivery(self, bridge: RoomBridge, publisher: EventPublisher):
        connection = ready_connection()
        bridge.join("story:1", connection)
        bridge.join("story:2", connection)
        bridge.leave("story:1", connection)

        publisher.publish("story:1", "job:done", {})
        publisher.publish("story:2", "job:done", {"story": 2})

        assert drain(connection) == [{"event": "job:done", "payload": {"story": 2}}]
        assert bridge.members("story:1") == []

    def test_close_leaves_all_rooms(self, bridge: RoomBridge):
        connection = ready_connection()
        bridge.join("story:1", connection)
        bridge.join("job:abc", connection)

        connection.close()

        assert bridge.members("story:1") == []
        assert bridge.members("job:abc") == []
        assert connection.offer({"event": "job:done", "payload": {}}) is False

    def test_join_after_close_is_ignored(self, bridge: RoomBridge):
        connection = ready_connection()
        connection.close()
        bridge.join("story:1", connection)
        assert bridge.members("story:1") == []

    def test_malformed_broker_message_is_ignored(
        self, broadcaster: LocalBroadcaster, bridge: RoomBridge
    ):
        connection = ready_connection()
        bridge.join("story:1", connection)

        assert broadcaster.publish_event(topic=DEFAULT_EVENT_CHANNEL, payload="{oops")
        assert broadcaster.publish_event(topic=DEFAULT_EVENT_CHANNEL, payload='["story:1"]')
        assert drain(connection) == []


# ============================================================================
# Readiness Tests
# ============================================================================


class TestDeferredJoin:
    def test_join_before_ready_is_applied_on_ready(
        self, bridge: RoomBridge, publisher: EventPublisher
    ):
        connection = ObserverConnection(RecordingTransport().send)
        bridge.join("story:1", connection)

        assert bridge.members("story:1") == []
        publisher.publish("story:1", "job:running", {})
        assert drain(connection) == []

        connection.mark_ready()
        assert bridge.members("story:1") == [connection]

        publisher.publish("story:1", "job:done", {})
        assert drain(connection) == [{"event": "job:done", "payload": {}}]

    def test_rooms_restored_on_reconnect(self, bridge: RoomBridge):
        """Rooms joined before a transport drop are re-joined when ready again."""
        connection = ready_connection()
        bridge.join("story:1", connection)

        # transport drop without closing the logical connection
        connection.ready = False
        bridge._drop(connection)  # pyright: ignore[reportPrivateUsage]
        assert bridge.members("story:1") == []

        bridge.join("story:2", connection)
        connection.mark_ready()
        assert bridge.members("story:1") == [connection]
        assert bridge.members("story:2") == [connection]

    def test_explicit_leave_not_restored(self, bridge: RoomBridge):
        connection = ready_connection()
        bridge.join("story:1", connection)
        bridge.leave("story:1", connection)

        connection.mark_ready()
        assert bridge.members("story:1") == []


# ============================================================================
# Back-pressure Tests
# ============================================================================


class TestBackPressure:
    def test_full_outbox_drops_only_for_that_observer(
        self, bridge: RoomBridge, publisher: EventPublisher
    ):
        slow = ready_connection(max_pending=2)
        fast = ready_connection(max_pending=10)
        bridge.join("story:1", slow)
        bridge.join("story:1", fast)

        for i in range(3):
            publisher.publish("story:1", "job:running", {"progress": i})

        assert slow.dropped == 1
        assert [m["payload"] for m in drain(slow)] == [{"progress": 0}, {"progress": 1}]
        assert len(drain(fast)) == 3
        assert fast.dropped == 0

    @pytest.mark.asyncio
    async def test_stalled_observer_does_not_block_others(self, broadcaster: LocalBroadcaster):
        bridge = RoomBridge(broadcaster, loop=asyncio.get_running_loop())
        bridge.start()
        publisher = EventPublisher(broadcaster)

        stalled = asyncio.Event()

        async def never_returns(_message: ObserverMessage) -> None:
            await stalled.wait()

        transport = RecordingTransport()
        slow = ObserverConnection(never_returns, max_pending=1)
        fast = ObserverConnection(transport.send)
        for connection in (slow, fast):
            connection.mark_ready()
            bridge.join("story:1", connection)
        pumps = [asyncio.create_task(c.pump()) for c in (slow, fast)]

        for i in range(5):
            publisher.publish("story:1", "job:running", {"progress": i})
            await asyncio.sleep(0)

        for _ in range(50):
            if len(transport.messages) == 5:
                break
            await asyncio.sleep(0.01)

        assert [m["payload"] for m in transport.messages] == [
            {"progress": i} for i in range(5)
        ]
        assert slow.dropped > 0

        for connection in (slow, fast):
            connection.close()
        for pump in pumps:
            _ = pump.cancel()
        _ = await asyncio.gather(*pumps, return_exceptions=True)
        bridge.stop()

    @pytest.mark.asyncio
    async def test_send_failure_closes_only_that_connection(
        self, broadcaster: LocalBroadcaster
    ):
        bridge = RoomBridge(broadcaster, loop=asyncio.get_running_loop())
        bridge.start()

        async def broken(_message: ObserverMessage) -> None:
            raise ConnectionError("socket gone")

        dead = ObserverConnection(broken)
        healthy = ready_connection()
        dead.mark_ready()
        bridge.join("story:1", dead)
        bridge.join("story:1", healthy)

        _ = dead.offer({"event": "job:running", "payload": {}})
        await asyncio.wait_for(dead.pump(), timeout=1)

        assert dead.closed
        assert bridge.members("story:1") == [healthy]
        bridge.stop()


# ============================================================================
# Thread Hand-off Tests
# ============================================================================


class TestThreadHandOff:
    @pytest.mark.asyncio
    async def test_broker_thread_events_are_delivered_on_loop(
        self, broadcaster: LocalBroadcaster
    ):
        """Events published from another thread are fanned out on the bound loop."""
        bridge = RoomBridge(broadcaster)
        bridge.bind_loop(asyncio.get_running_loop())
        bridge.start()

        transport = RecordingTransport()
        connection = ObserverConnection(transport.send)
        connection.mark_ready()
        bridge.join("story:1", connection)
        pump = asyncio.create_task(connection.pump())

        publisher = EventPublisher(broadcaster)
        thread = threading.Thread(
            target=publisher.publish, args=("story:1", "speech:created", {"page_id": 1})
        )
        thread.start()
        thread.join()

        await asyncio.wait_for(transport.received.wait(), timeout=2)
        assert transport.messages == [{"event": "speech:created", "payload": {"page_id": 1}}]

        connection.close()
        _ = pump.cancel()
        _ = await asyncio.gather(pump, return_exceptions=True)
        bridge.stop()

    def test_foreign_thread_event_dropped_without_bound_loop(
        self, bridge: RoomBridge, publisher: EventPublisher
    ):
        """Without a loop, only the thread that started the bridge fans out."""
        connection = ready_connection()
        bridge.join("story:1", connection)

        thread = threading.Thread(
            target=publisher.publish, args=("story:1", "image:created", {"page_id": 1})
        )
        thread.start()
        thread.join()
        assert connection.pending == 0

        publisher.publish("story:1", "image:created", {"page_id": 2})
        assert drain(connection) == [{"event": "image:created", "payload": {"page_id": 2}}]

    def test_event_dropped_when_bound_loop_is_stopped(
        self, broadcaster: LocalBroadcaster, publisher: EventPublisher
    ):
        loop = asyncio.new_event_loop()
        bridge = RoomBridge(broadcaster, loop=loop)
        bridge.start()
        connection = ready_connection()
        bridge.join("story:1", connection)

        publisher.publish("story:1", "video:created", {"story_id": 1})
        loop.run_until_complete(asyncio.sleep(0))

        assert connection.pending == 0
        bridge.stop()
        loop.close()
