"""
Tests for the async Redis adapter.

The redis client is replaced with an AsyncMock; no server is needed.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from worldstate.errors import BackendUnavailableError
from worldstate.storage.memory_store import MemoryStore
from worldstate.storage.redis_state import RedisStateStore


@pytest.fixture
def client():
    mock = MagicMock()
    for name in ("ping", "get", "set", "setex", "delete", "exists", "expire", "info", "aclose"):
        setattr(mock, name, AsyncMock())
    mock.ping.return_value = True
    return mock


@pytest.fixture
def store(client):
    return RedisStateStore(key_prefix="test", client=client)


class TestRedisStateStore:
    """Key prefixing, JSON encoding and error translation."""

    async def test_set_with_ttl_uses_setex(self, store, client):
        assert await store.set("world:territories", [{"id": "a"}], ttl_seconds=300) is True

        client.setex.assert_awaited_once_with(
            "test:world:territories", 300, json.dumps([{"id": "a"}])
        )
        client.set.assert_not_awaited()

    async def test_set_without_ttl_uses_set(self, store, client):
        await store.set("k", {"a": 1})

        client.set.assert_awaited_once_with("test:k", json.dumps({"a": 1}))

    async def test_get_decodes_json(self, store, client):
        client.get.return_value = json.dumps({"a": 1})

        assert await store.get("k") == {"a": 1}
        client.get.assert_awaited_once_with("test:k")

    async def test_get_returns_plain_string_when_not_json(self, store, client):
        client.get.return_value = "not json {"

        assert await store.get("k") == "not json {"

    async def test_get_missing_returns_none(self, store, client):
        client.get.return_value = None

        assert await store.get("k") is None

    async def test_delete_and_exists(self, store, client):
        client.delete.return_value = 1
        client.exists.return_value = 0

        assert await store.delete("k") is True
        assert await store.exists("k") is False

    @pytest.mark.parametrize("operation,args", [
        ("get", ("k",)),
        ("set", ("k", "v")),
        ("delete", ("k",)),
        ("exists", ("k",)),
        ("expire", ("k", 10)),
    ])
    async def test_redis_errors_become_backend_unavailable(self, store, client, operation, args):
        for name in ("get", "set", "delete", "exists", "expire"):
            getattr(client, name).side_effect = redis.ConnectionError("down")

        with pytest.raises(BackendUnavailableError):
            await getattr(store, operation)(*args)

    async def test_connect_failure_raises_backend_unavailable(self, store, client):
        client.ping.side_effect = redis.ConnectionError("refused")

        with pytest.raises(BackendUnavailableError):
            await store.connect()

    async def test_health_check_never_raises(self, store, client):
        client.ping.side_effect = redis.TimeoutError("slow")

        assert await store.health_check() is False

    async def test_ping_latency_is_non_negative(self, store):
        assert await store.ping_latency_ms() >= 0

    async def test_stats_groups_keys_by_first_segment(self, store, client):
        async def scan_iter(match):
            for key in ("test:world:territories", "test:economy:market_items", "test:economy:indicators"):
                yield key

        client.scan_iter = scan_iter
        client.info.return_value = {"used_memory_human": "1.2M"}

        stats = await store.stats()

        assert stats["total_keys"] == 3
        assert stats["keys_by_prefix"] == {"world": 1, "economy": 2}
        assert stats["memory_usage"] == "1.2M"

    async def test_close(self, store, client):
        await store.close()
        client.aclose.assert_awaited_once()


class DictRedisClient:
    """Minimal in-memory stand-in for redis.asyncio.Redis string commands."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def setex(self, key, ttl, value):
        self.data[key] = value


class TestBackendParity:
    """Both stores hand back exactly what was stored."""

    @pytest.mark.parametrize("value", [
        "42",
        "null",
        "true",
        '{"a": 1}',
        "plain text",
        "",
        42,
        None,
        {"territories": [{"id": "grove_street"}]},
    ])
    async def test_value_survives_both_backends(self, value, monotonic_clock):
        redis_store = RedisStateStore(key_prefix="test", client=DictRedisClient())
        memory_store = MemoryStore(clock=monotonic_clock)

        await redis_store.set("k", value)
        await memory_store.set("k", value)

        assert await redis_store.get("k") == value
        assert await memory_store.get("k") == value

    async def test_string_is_written_as_json(self):
        client = DictRedisClient()
        store = RedisStateStore(key_prefix="test", client=client)

        await store.set("k", "null")

        assert client.data["test:k"] == '"null"'
