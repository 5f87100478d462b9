"""
Tests for the Cache Coordinator state machine.

Covers:
- Idempotent initialization
- Fallback on failed connect / failed health check / timeouts
- Sticky fallback and explicit re-promotion
- Health and disconnect semantics
"""

import asyncio

import pytest

from worldstate.errors import BackendUnavailableError
from worldstate.storage.cache_coordinator import BackendState, CacheCoordinator


class TestInitialization:

    async def test_initialize_promotes_healthy_primary(self, cache, durable_store):
        await cache.initialize()

        assert cache.initialized
        assert cache.state == BackendState.PRIMARY_ACTIVE
        assert durable_store.connect_calls == 1

    async def test_initialize_twice_connects_once(self, cache, durable_store):
        await cache.initialize()
        await cache.initialize()

        assert durable_store.connect_calls == 1

    async def test_concurrent_initialize_connects_once(self, cache, durable_store):
        await asyncio.gather(*(cache.initialize() for _ in range(5)))

        assert durable_store.connect_calls == 1

    async def test_connect_failure_selects_fallback(self, fallback_cache):
        await fallback_cache.initialize()

        assert fallback_cache.initialized
        assert fallback_cache.state == BackendState.FALLBACK_ACTIVE

    async def test_failed_health_check_routes_writes_to_fallback(
        self, cache, durable_store, memory_store
    ):
        durable_store.healthy = False

        await cache.initialize()
        await cache.set("k", "v", 60)

        assert cache.state == BackendState.FALLBACK_ACTIVE
        assert "k" not in durable_store.data
        assert await memory_store.get("k") == "v"
        assert await cache.get("k") == "v"

    async def test_connect_timeout_selects_fallback(self, durable_store, memory_store):
        async def slow_connect():
            await asyncio.sleep(1)

        durable_store.connect = slow_connect
        coordinator = CacheCoordinator(durable_store, memory_store, operation_timeout=0.05)

        await coordinator.initialize()

        assert coordinator.state == BackendState.FALLBACK_ACTIVE

    async def test_first_operation_initializes_lazily(self, cache, durable_store):
        await cache.set("k", 1)

        assert cache.initialized
        assert durable_store.data["k"] == 1


class TestDemotion:

    async def test_operation_failure_demotes_and_serves_from_fallback(
        self, cache, durable_store, memory_store
    ):
        await cache.initialize()
        durable_store.failing = True

        assert await cache.set("k", "v") is True

        assert cache.state == BackendState.FALLBACK_ACTIVE
        assert await memory_store.get("k") == "v"

    async def test_operation_timeout_demotes(self, cache, durable_store):
        await cache.initialize()
        durable_store.delay = 1.0

        assert await cache.get("missing") is None
        assert cache.state == BackendState.FALLBACK_ACTIVE

    async def test_fallback_is_sticky_after_primary_recovers(self, cache, durable_store):
        await cache.initialize()
        durable_store.failing = True
        await cache.get("k")

        durable_store.failing = False
        await cache.set("k", "v")

        assert cache.state == BackendState.FALLBACK_ACTIVE
        assert "k" not in durable_store.data

    async def test_reinitialize_promotes_recovered_primary(self, cache, durable_store):
        await cache.initialize()
        durable_store.failing = True
        await cache.get("k")
        durable_store.failing = False

        await cache.reinitialize()

        assert cache.state == BackendState.PRIMARY_ACTIVE
        assert durable_store.connect_calls == 2


class TestHealthAndStats:

    async def test_health_reports_primary_latency(self, cache):
        await cache.initialize()

        health = await cache.health_check()

        assert health["backend_healthy"] is True
        assert health["detail"]["backend"] == "primary_active"
        assert health["detail"]["latency_ms"] == 0.5

    async def test_health_never_raises_and_demotes(self, cache, durable_store):
        await cache.initialize()
        durable_store.failing = True

        health = await cache.health_check()

        assert health["backend_healthy"] is False
        assert "error" in health["detail"]
        assert cache.state == BackendState.FALLBACK_ACTIVE

    async def test_health_in_fallback_probes_memory_store(self, fallback_cache):
        await fallback_cache.initialize()

        health = await fallback_cache.health_check()

        assert health == {
            "backend_healthy": True,
            "detail": {"backend": "fallback_active"},
        }

    async def test_stats_include_initialized_flag(self, cache):
        await cache.set("world:territories", [])

        stats = await cache.stats()

        assert stats["initialized"] is True
        assert stats["total_keys"] == 1


class TestDisconnect:

    async def test_disconnect_closes_connected_primary(self, cache, durable_store):
        await cache.initialize()
        await cache.disconnect()

        assert durable_store.close_calls == 1
        assert not cache.initialized

    async def test_disconnect_without_connection_does_not_close(self, cache, durable_store):
        await cache.disconnect()

        assert durable_store.close_calls == 0

    async def test_disconnect_after_failed_connect_does_not_close(self, fallback_cache):
        await fallback_cache.initialize()
        await fallback_cache.disconnect()

        assert fallback_cache._primary.close_calls == 0

    async def test_disconnect_errors_propagate(self, cache, durable_store):
        await cache.initialize()
        durable_store.close_error = BackendUnavailableError("close failed")

        with pytest.raises(BackendUnavailableError):
            await cache.disconnect()
