"""
Tests for the bus -> WebSocket forwarding adapter.

Tests:
- Events are forwarded with the change type as channel
- Publishing never waits on a slow broadcaster
- Full queue drops the oldest event
- Broadcast errors do not stop forwarding
- Stop lets the in-flight event finish, bounded by a timeout
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from api.services.event_forwarder import EventForwarder
from worldstate.events.bus import ChangeBus, ChangeType


class RecordingBroadcaster:
    def __init__(self):
        self.messages = []

    async def broadcast(self, channel, payload):
        self.messages.append((channel, payload))


class BlockingBroadcaster:
    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0
        self.delivered = 0

    async def broadcast(self, channel, payload):
        self.calls += 1
        await self.release.wait()
        self.delivered += 1


@pytest.fixture
def bus():
    return ChangeBus("test")


async def test_forwards_with_change_type_channel(bus):
    broadcaster = RecordingBroadcaster()
    forwarder = EventForwarder(broadcaster)
    forwarder.attach(bus)
    forwarder.start()

    bus.publish(ChangeType.TERRITORY_CONTROL_CHANGED, {"territory_id": "grove_street"})
    await asyncio.wait_for(forwarder.queue.join(), timeout=1)

    assert len(broadcaster.messages) == 1
    channel, payload = broadcaster.messages[0]
    assert channel == "territory_control_changed"
    assert payload["type"] == "territory_control_changed"
    assert payload["data"] == {"territory_id": "grove_street"}

    await forwarder.stop()


async def test_publish_does_not_wait_for_slow_broadcaster(bus):
    broadcaster = BlockingBroadcaster()
    forwarder = EventForwarder(broadcaster)
    forwarder.attach(bus)
    forwarder.start()

    for i in range(5):
        bus.publish(ChangeType.PRICES_UPDATED, {"i": i})
    await asyncio.sleep(0.01)

    # First event is stuck in the broadcaster, the rest are queued
    assert broadcaster.calls == 1
    assert forwarder.queue.qsize() == 4

    broadcaster.release.set()
    await asyncio.wait_for(forwarder.queue.join(), timeout=1)
    assert broadcaster.calls == 5

    await forwarder.stop()


async def test_full_queue_drops_oldest(bus):
    broadcaster = RecordingBroadcaster()
    forwarder = EventForwarder(broadcaster, max_queue_size=2)
    forwarder.attach(bus)

    for i in range(3):
        bus.publish(ChangeType.EVENT_CREATED, {"i": i})

    assert forwarder.dropped == 1
    await forwarder.drain()

    assert [payload["data"]["i"] for _, payload in broadcaster.messages] == [1, 2]


async def test_broadcast_error_does_not_stop_forwarding(bus):
    broadcaster = AsyncMock()
    broadcaster.broadcast.side_effect = [RuntimeError("socket closed"), None]
    forwarder = EventForwarder(broadcaster)
    forwarder.attach(bus)
    forwarder.start()

    bus.publish(ChangeType.EVENT_CREATED, {})
    bus.publish(ChangeType.EVENT_EXPIRED, {})
    await asyncio.wait_for(forwarder.queue.join(), timeout=1)

    assert broadcaster.broadcast.await_count == 2
    assert forwarder.forwarded == 1

    await forwarder.stop()


async def test_stop_detaches_and_drains(bus):
    broadcaster = RecordingBroadcaster()
    forwarder = EventForwarder(broadcaster)
    forwarder.attach(bus)

    bus.publish(ChangeType.EVENT_CREATED, {})
    await forwarder.stop(drain=True)

    assert len(broadcaster.messages) == 1
    assert bus.handler_count() == 0


def test_queue_size_must_be_positive():
    with pytest.raises(ValueError):
        EventForwarder(RecordingBroadcaster(), max_queue_size=0)


async def test_stop_lets_in_flight_event_finish(bus):
    broadcaster = BlockingBroadcaster()
    forwarder = EventForwarder(broadcaster)
    forwarder.attach(bus)
    forwarder.start()

    bus.publish(ChangeType.EVENT_CREATED, {"i": 0})
    await asyncio.sleep(0.01)
    assert broadcaster.calls == 1

    stopping = asyncio.create_task(forwarder.stop())
    await asyncio.sleep(0.01)
    assert not stopping.done()

    broadcaster.release.set()
    await asyncio.wait_for(stopping, timeout=1)

    assert broadcaster.delivered == 1
    assert forwarder.forwarded == 1


async def test_stop_gives_up_on_stuck_broadcaster(bus):
    broadcaster = BlockingBroadcaster()
    forwarder = EventForwarder(broadcaster)
    forwarder.attach(bus)
    forwarder.start()

    bus.publish(ChangeType.EVENT_CREATED, {})
    await asyncio.sleep(0.01)

    await asyncio.wait_for(forwarder.stop(timeout=0.05), timeout=1)

    assert broadcaster.delivered == 0
    assert bus.handler_count() == 0
