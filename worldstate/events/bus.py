"""
In-process change bus.

Domains publish structured change events here. Delivery is synchronous
and in publish order; a publish issued from inside a handler is queued
behind the event currently being delivered, so no subscriber ever sees
events out of order or re-entrantly.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class ChangeType(Enum):
    """Change notifications emitted by the state domains."""
    # World domain
    TERRITORY_CONTROL_CHANGED = "territory_control_changed"
    EVENT_CREATED = "event_created"
    EVENT_EXPIRED = "event_expired"

    # Economy domain
    PRICES_UPDATED = "prices_updated"
    TRANSACTION_COMPLETED = "transaction_completed"
    ECONOMIC_INDICATORS_UPDATED = "economic_indicators_updated"


@dataclass(frozen=True)
class ChangeEvent:
    """A single published change."""
    type: ChangeType
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape forwarded to real-time observers."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


Handler = Callable[[ChangeEvent], None]


class ChangeBus:
    """
    Typed publish/subscribe surface.

    Handlers must be plain (non-async) callables. Anything that does I/O
    belongs behind an EventForwarder queue, not in a handler.
    """

    def __init__(self, name: str = "bus", clock: Callable[[], datetime] = datetime.now):
        self.name = name
        self._clock = clock
        self._handlers: dict[Optional[ChangeType], list[Handler]] = {}
        self._pending: deque[ChangeEvent] = deque()
        self._delivering = False

    def subscribe(self, change_type: ChangeType, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for one change type.

        Returns:
            A callable that removes the subscription.
        """
        self._handlers.setdefault(change_type, []).append(handler)
        return lambda: self._unsubscribe(change_type, handler)

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for every change type."""
        return self.subscribe(None, handler)

    def _unsubscribe(self, change_type: Optional[ChangeType], handler: Handler) -> None:
        handlers = self._handlers.get(change_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, change_type: Optional[ChangeType] = None) -> int:
        return len(self._handlers.get(change_type, []))

    def publish(self, change_type: ChangeType, data: dict[str, Any]) -> ChangeEvent:
        """
        Publish a change and deliver it synchronously.

        Returns:
            The published event.
        """
        event = ChangeEvent(type=change_type, data=data, timestamp=self._clock())
        self._pending.append(event)

        if not self._delivering:
            self._drain()

        return event

    def _drain(self) -> None:
        self._delivering = True
        try:
            while self._pending:
                self._deliver(self._pending.popleft())
        finally:
            self._delivering = False

    def _deliver(self, event: ChangeEvent) -> None:
        handlers = list(self._handlers.get(event.type, [])) + list(self._handlers.get(None, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "change_handler_error",
                    bus=self.name,
                    change_type=event.type.value,
                    error=str(e),
                )

    def clear(self) -> None:
        """Drop every subscription."""
        self._handlers.clear()
