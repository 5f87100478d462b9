"""
Redis state store - the durable backend for world snapshots.

Redis is used for:
- Territory snapshots
- Market item and economic indicator snapshots
- Any other key-value state the services want to survive a restart

In-memory domain state is TRUTH, Redis is CACHE. Every Redis failure is
raised as BackendUnavailableError so the Cache Coordinator can demote to
the in-process fallback store.
"""

import json
import time
from typing import Any, Optional

import redis
import redis.asyncio as aioredis
import structlog

from worldstate.errors import BackendUnavailableError

logger = structlog.get_logger(__name__)


class RedisStateStore:
    """
    Async Redis-backed key-value store.

    Design principles:
    - Transparent JSON serialization of structured values
    - TTL on snapshots so a cold start never reads stale data
    - Structured key naming under a single prefix

    Key naming convention:
    - {prefix}:{key}, e.g. ws:world:territories
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        socket_timeout: float = 2.0,
        key_prefix: str = "ws",
        client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize the Redis client (no network I/O until connect()).

        Args:
            host: Redis host
            port: Redis port
            db: Redis database number
            password: Redis password (optional)
            socket_timeout: Socket timeout in seconds
            key_prefix: Namespace prepended to every key
            client: Pre-built client (tests)
        """
        self.host = host
        self.port = port
        self.db = db
        self.prefix = key_prefix
        self.client = client or aioredis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,  # Return strings, not bytes
        )

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def connect(self) -> None:
        """Open the connection by pinging the server."""
        try:
            await self.client.ping()
        except (redis.RedisError, OSError) as e:
            logger.error("redis_connection_failed", host=self.host, port=self.port, error=str(e))
            raise BackendUnavailableError(str(e)) from e

        logger.info("redis_connected", host=self.host, port=self.port, db=self.db)

    # =========================================================================
    # Key-value contract
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        """Get a value, decoding JSON where possible."""
        try:
            data = await self.client.get(self._key(key))
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e

        if data is None:
            return None

        try:
            return json.loads(data)
        except json.JSONDecodeError:
            # Raw text written by something other than this adapter
            return data

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Set a value with optional TTL. Strings are JSON-encoded like everything else."""
        data = json.dumps(value)

        try:
            if ttl_seconds:
                await self.client.setex(self._key(key), ttl_seconds, data)
            else:
                await self.client.set(self._key(key), data)
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e

        logger.debug("redis_key_set", key=key, ttl_seconds=ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        try:
            removed = await self.client.delete(self._key(key))
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e
        return removed > 0

    async def exists(self, key: str) -> bool:
        try:
            return await self.client.exists(self._key(key)) > 0
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set expiry on an existing key."""
        try:
            return bool(await self.client.expire(self._key(key), ttl_seconds))
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e

    # =========================================================================
    # Utility Methods
    # =========================================================================

    async def health_check(self) -> bool:
        """Check if Redis is responding."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning("redis_health_check_failed", error=str(e))
            return False

    async def ping_latency_ms(self) -> float:
        """Round-trip time of a PING, in milliseconds."""
        started = time.perf_counter()
        try:
            await self.client.ping()
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e
        return (time.perf_counter() - started) * 1000

    async def stats(self) -> dict:
        """Key counts by first key segment plus server memory usage."""
        keys_by_prefix: dict[str, int] = {}
        total = 0

        try:
            async for key in self.client.scan_iter(match=f"{self.prefix}:*"):
                total += 1
                segment = key[len(self.prefix) + 1:].split(":", 1)[0]
                keys_by_prefix[segment] = keys_by_prefix.get(segment, 0) + 1
            info = await self.client.info("memory")
        except (redis.RedisError, OSError) as e:
            raise BackendUnavailableError(str(e)) from e

        return {
            "total_keys": total,
            "keys_by_prefix": keys_by_prefix,
            "memory_usage": info.get("used_memory_human"),
        }

    async def close(self) -> None:
        """Close Redis connection."""
        await self.client.aclose()
        logger.info("redis_connection_closed")
