"""
Bridge from the in-process change buses to WebSocket clients.

Bus handlers run synchronously inside the publisher's call, so the
handler here only enqueues. A background task drains the queue and does
the network I/O. When the queue is full the oldest pending event is
dropped; a slow client can cost notifications but never blocks a
domain mutation.
"""

import asyncio
from typing import Any, Awaitable, Optional, Protocol

import structlog

from worldstate.events.bus import ChangeBus, ChangeEvent

logger = structlog.get_logger(__name__)


class Broadcaster(Protocol):
    def broadcast(self, channel: str, payload: Any) -> Awaitable[None]:
        ...


class EventForwarder:
    """Bounded queue between change buses and a broadcaster."""

    def __init__(self, broadcaster: Broadcaster, max_queue_size: int = 1000):
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")

        self.broadcaster = broadcaster
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0
        self.forwarded = 0
        self._unsubscribers: list = []
        self._task: Optional[asyncio.Task] = None

    def attach(self, bus: ChangeBus) -> None:
        """Forward every change published on bus."""
        self._unsubscribers.append(bus.subscribe_all(self.enqueue))
        logger.info("event_forwarder_attached", bus=bus.name)

    def detach_all(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def enqueue(self, event: ChangeEvent) -> None:
        """Bus handler. Never blocks and never raises on a full queue."""
        if self.queue.full():
            self.queue.get_nowait()
            self.queue.task_done()
            self.dropped += 1
            logger.warning(
                "event_forwarder_queue_full",
                dropped_total=self.dropped,
                change_type=event.type.value,
            )
        self.queue.put_nowait(event)

    async def _forward(self, event: ChangeEvent) -> None:
        try:
            await self.broadcaster.broadcast(event.type.value, event.to_dict())
            self.forwarded += 1
        except Exception as e:
            logger.error(
                "event_forward_error",
                change_type=event.type.value,
                error=str(e),
            )

    async def run(self) -> None:
        """Forward queued events until cancelled."""
        logger.info("event_forwarder_started")
        try:
            while True:
                event = await self.queue.get()
                try:
                    await self._forward(event)
                finally:
                    self.queue.task_done()
        except asyncio.CancelledError:
            logger.info("event_forwarder_stopped", forwarded=self.forwarded)
            raise

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="event-forwarder")
        return self._task

    async def drain(self) -> int:
        """Forward whatever is queued right now. Returns the count."""
        count = 0
        while not self.queue.empty():
            event = self.queue.get_nowait()
            try:
                await self._forward(event)
            finally:
                self.queue.task_done()
            count += 1
        return count

    async def stop(self, drain: bool = True, timeout: float = 5.0) -> None:
        """
        Stop forwarding.

        With drain, the running task first gets up to `timeout` seconds to
        finish the event it is broadcasting and everything still queued.
        Whatever remains after that is flushed inline.
        """
        self.detach_all()

        if self._task is not None:
            if drain and not self._task.done():
                try:
                    await asyncio.wait_for(self.queue.join(), timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "event_forwarder_stop_timeout",
                        pending=self.queue.qsize(),
                        timeout=timeout,
                    )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if drain:
            flushed = await self.drain()
            if flushed:
                logger.info("event_forwarder_drained", events=flushed)
