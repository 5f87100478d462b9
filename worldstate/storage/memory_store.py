"""
In-process key-value store used when Redis is unavailable.

This is the store of last resort: no operation ever raises. Failures
are logged and reported as None / False.
"""

import json
import time
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class MemoryStore:
    """
    Dict-backed store with the same contract as RedisStateStore.

    Values are kept as JSON text so callers never share mutable
    structures with the store. Keys without a TTL live for the life
    of the process. Expired keys are purged lazily on access.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            clock: Monotonic seconds source (injectable for tests)
        """
        self._clock = clock
        self._items: dict[str, tuple[str, Optional[float]]] = {}

    def _live_entry(self, key: str) -> Optional[tuple[str, Optional[float]]]:
        entry = self._items.get(key)
        if entry is None:
            return None

        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._items[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        try:
            entry = self._live_entry(key)
            if entry is None:
                return None
            return json.loads(entry[0])
        except Exception as e:
            logger.error("memory_store_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value)
            expires_at = self._clock() + ttl_seconds if ttl_seconds else None
            self._items[key] = (payload, expires_at)
            return True
        except Exception as e:
            logger.error("memory_store_set_failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        try:
            return self._live_entry(key) is not None
        except Exception as e:
            logger.error("memory_store_exists_failed", key=key, error=str(e))
            return False

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        try:
            entry = self._live_entry(key)
            if entry is None:
                return False
            self._items[key] = (entry[0], self._clock() + ttl_seconds)
            return True
        except Exception as e:
            logger.error("memory_store_expire_failed", key=key, error=str(e))
            return False

    async def health_check(self) -> bool:
        """Round-trip a probe key."""
        probe = "__health_check__"
        try:
            await self.set(probe, "ok", 1)
            value = await self.get(probe)
            await self.delete(probe)
            return value == "ok"
        except Exception as e:
            logger.error("memory_store_health_check_failed", error=str(e))
            return False

    async def stats(self) -> dict:
        keys_by_prefix: dict[str, int] = {}
        try:
            for key in list(self._items):
                if self._live_entry(key) is None:
                    continue
                segment = str(key).split(":", 1)[0]
                keys_by_prefix[segment] = keys_by_prefix.get(segment, 0) + 1
        except Exception as e:
            logger.error("memory_store_stats_failed", error=str(e))
            return {"total_keys": 0, "keys_by_prefix": {}, "memory_usage": None}

        return {
            "total_keys": sum(keys_by_prefix.values()),
            "keys_by_prefix": keys_by_prefix,
            "memory_usage": None,
        }

    def clear(self) -> None:
        self._items.clear()

    def size(self) -> int:
        """Number of stored keys, including ones not yet purged."""
        return len(self._items)
