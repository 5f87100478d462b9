"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import asyncio
import os
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest

from worldstate.errors import BackendUnavailableError
from worldstate.storage.cache_coordinator import CacheCoordinator
from worldstate.storage.memory_store import MemoryStore

# Set test environment
os.environ["ENVIRONMENT"] = "test"


class FakeClock:
    """Controllable datetime source."""

    def __init__(self, start: Optional[datetime] = None):
        # Mid-afternoon in May: "sunny" weather
        self.now = start or datetime(2024, 5, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class MonotonicClock:
    """Controllable float seconds source for MemoryStore."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDurableStore:
    """
    Stand-in for RedisStateStore with failure switches and call counters.

    - connect_error: exception raised by connect()
    - healthy: value returned by health_check()
    - failing: every key-value call raises BackendUnavailableError
    - delay: seconds each key-value call sleeps before answering
    """

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.connect_calls = 0
        self.close_calls = 0
        self.set_calls = 0
        self.connect_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.healthy = True
        self.failing = False
        self.delay = 0.0

    async def _maybe_fail(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failing:
            raise BackendUnavailableError("connection refused")

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def get(self, key):
        await self._maybe_fail()
        return self.data.get(key)

    async def set(self, key, value, ttl_seconds=None):
        await self._maybe_fail()
        self.set_calls += 1
        self.data[key] = value
        return True

    async def delete(self, key):
        await self._maybe_fail()
        return self.data.pop(key, None) is not None

    async def exists(self, key):
        await self._maybe_fail()
        return key in self.data

    async def expire(self, key, ttl_seconds):
        await self._maybe_fail()
        return key in self.data

    async def health_check(self) -> bool:
        return self.healthy

    async def ping_latency_ms(self) -> float:
        await self._maybe_fail()
        return 0.5

    async def stats(self) -> dict:
        await self._maybe_fail()
        return {"total_keys": len(self.data), "keys_by_prefix": {}, "memory_usage": "1M"}

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic_clock():
    return MonotonicClock()


@pytest.fixture
def durable_store():
    return FakeDurableStore()


@pytest.fixture
def memory_store(monotonic_clock):
    return MemoryStore(clock=monotonic_clock)


@pytest.fixture
def cache(durable_store, memory_store):
    """Cache Coordinator over a healthy fake durable store."""
    return CacheCoordinator(durable_store, memory_store, operation_timeout=0.2)


@pytest.fixture
def fallback_cache(memory_store):
    """Cache Coordinator whose durable store refuses connections."""
    store = FakeDurableStore()
    store.connect_error = BackendUnavailableError("connection refused")
    return CacheCoordinator(store, memory_store, operation_timeout=0.2)
