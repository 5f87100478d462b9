"""
Cache Coordinator - one blended cache surface over Redis and memory.

State machine:

    (uninitialized) --initialize()--> PRIMARY_ACTIVE
          |                               |
          |  connect/health failure       | operation failure / timeout
          v                               v
    FALLBACK_ACTIVE <---------------------+

FALLBACK_ACTIVE is sticky: only an explicit reinitialize() attempts
promotion back to PRIMARY_ACTIVE. Callers never see which backend
served a request and never see backend errors.
"""

import asyncio
from enum import Enum
from typing import Any, Optional

import structlog

from worldstate.errors import BackendUnavailableError
from worldstate.storage.memory_store import MemoryStore
from worldstate.storage.redis_state import RedisStateStore

logger = structlog.get_logger(__name__)


class BackendState(Enum):
    """Which backend is serving requests."""
    PRIMARY_ACTIVE = "primary_active"
    FALLBACK_ACTIVE = "fallback_active"


class CacheCoordinator:
    """
    Owns the lifecycle of the durable and fallback stores.

    Every primary call is bounded by operation_timeout. A timeout is
    treated exactly like a failed health check: demote, log a warning,
    and serve the request from the fallback store.
    """

    def __init__(
        self,
        primary: RedisStateStore,
        fallback: Optional[MemoryStore] = None,
        operation_timeout: float = 2.0,
    ):
        """
        Args:
            primary: Durable store adapter
            fallback: In-process store (created if omitted)
            operation_timeout: Seconds before a primary call counts as failed
        """
        self._primary = primary
        self._fallback = fallback or MemoryStore()
        self.operation_timeout = operation_timeout

        self._state = BackendState.FALLBACK_ACTIVE
        self._initialized = False
        self._primary_connected = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def state(self) -> BackendState:
        """Current backend state (diagnostics only)."""
        return self._state

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """
        Connect and probe the primary store.

        Idempotent: once initialized, further calls do nothing.
        """
        async with self._init_lock:
            if self._initialized:
                logger.debug("cache_already_initialized")
                return

            logger.info("cache_initializing")

            try:
                await asyncio.wait_for(self._primary.connect(), self.operation_timeout)
                self._primary_connected = True

                healthy = await asyncio.wait_for(
                    self._primary.health_check(), self.operation_timeout
                )
                if not healthy:
                    raise BackendUnavailableError("primary health check failed")

                self._state = BackendState.PRIMARY_ACTIVE
                logger.info("cache_primary_active")

            except (BackendUnavailableError, asyncio.TimeoutError, OSError) as e:
                self._state = BackendState.FALLBACK_ACTIVE
                logger.warning(
                    "cache_primary_unavailable_using_fallback",
                    error=str(e) or type(e).__name__,
                )

            self._initialized = True

    async def reinitialize(self) -> None:
        """Re-run the primary probe, allowing promotion out of fallback."""
        async with self._init_lock:
            self._initialized = False
        logger.info("cache_reinitializing", previous_state=self._state.value)
        await self.initialize()

    async def disconnect(self) -> None:
        """
        Close the primary connection if it was ever opened.

        Teardown errors propagate: shutdown ordering matters to the caller.
        """
        if self._primary_connected:
            await self._primary.close()
            self._primary_connected = False

        self._initialized = False
        self._state = BackendState.FALLBACK_ACTIVE
        logger.info("cache_disconnected")

    # =========================================================================
    # Blended key-value surface
    # =========================================================================

    async def _call(self, operation: str, *args) -> Any:
        if not self._initialized:
            await self.initialize()

        if self._state == BackendState.PRIMARY_ACTIVE:
            try:
                return await asyncio.wait_for(
                    getattr(self._primary, operation)(*args),
                    self.operation_timeout,
                )
            except (BackendUnavailableError, asyncio.TimeoutError, OSError) as e:
                self._demote(operation, e)

        return await getattr(self._fallback, operation)(*args)

    def _demote(self, operation: str, error: Exception) -> None:
        self._state = BackendState.FALLBACK_ACTIVE
        logger.warning(
            "cache_primary_failed_demoting_to_fallback",
            operation=operation,
            error=str(error) or type(error).__name__,
        )

    async def get(self, key: str) -> Optional[Any]:
        return await self._call("get", key)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        return await self._call("set", key, value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        return await self._call("delete", key)

    async def exists(self, key: str) -> bool:
        return await self._call("exists", key)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return await self._call("expire", key, ttl_seconds)

    # =========================================================================
    # Monitoring
    # =========================================================================

    async def health_check(self) -> dict:
        """
        Probe the active backend.

        Returns:
            {"backend_healthy": bool, "detail": {...}}; never raises.
        """
        detail: dict[str, Any] = {"backend": self._state.value}

        try:
            if self._state == BackendState.PRIMARY_ACTIVE:
                latency = await asyncio.wait_for(
                    self._primary.ping_latency_ms(), self.operation_timeout
                )
                detail["latency_ms"] = round(latency, 3)
                healthy = True
            else:
                healthy = await self._fallback.health_check()
        except Exception as e:
            detail["error"] = str(e) or type(e).__name__
            healthy = False
            if self._state == BackendState.PRIMARY_ACTIVE:
                self._demote("health_check", e)

        return {"backend_healthy": healthy, "detail": detail}

    async def stats(self) -> dict:
        """Key statistics from the active backend."""
        stats = await self._call("stats")
        return {
            "initialized": self._initialized,
            **stats,
        }
