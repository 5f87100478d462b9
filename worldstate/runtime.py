"""
Runtime wiring.

Builds every component explicitly from Settings and owns the periodic
recomputation tasks:

    RedisStateStore + MemoryStore -> CacheCoordinator
    CacheCoordinator -> WorldService, EconomyService
    service buses -> EventForwarder -> broadcaster (WebSocketManager)
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from api.services.event_forwarder import Broadcaster, EventForwarder
from worldstate.config import Settings
from worldstate.economy.ledger import InMemoryLedger, Ledger
from worldstate.economy.pricing import PricingParameters
from worldstate.economy.service import EconomyService
from worldstate.storage.cache_coordinator import CacheCoordinator
from worldstate.storage.memory_store import MemoryStore
from worldstate.storage.redis_state import RedisStateStore
from worldstate.world.service import WorldService

logger = structlog.get_logger(__name__)


class WorldRuntime:
    """
    Owns the live world: cache, both domains, forwarding and ticks.

    Usage:
        runtime = WorldRuntime(settings, broadcaster=ws_manager)
        await runtime.start()
        ...
        await runtime.shutdown()
    """

    def __init__(
        self,
        settings: Settings,
        ledger: Optional[Ledger] = None,
        player_counter: Optional[Callable[[], Awaitable[int]]] = None,
        broadcaster: Optional[Broadcaster] = None,
        primary: Optional[RedisStateStore] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings

        redis_cfg = settings.redis
        self.primary = primary or RedisStateStore(
            host=redis_cfg.host,
            port=redis_cfg.port,
            db=redis_cfg.db,
            password=redis_cfg.password,
            socket_timeout=redis_cfg.socket_timeout,
            key_prefix=redis_cfg.key_prefix,
        )
        self.cache = CacheCoordinator(
            self.primary,
            MemoryStore(),
            operation_timeout=settings.cache.operation_timeout,
        )

        self.ledger = ledger or InMemoryLedger()

        self.world = WorldService(
            self.cache,
            clock=clock,
            snapshot_ttl_seconds=settings.world.snapshot_ttl_seconds,
            player_counter=player_counter,
            indicators_source=lambda: self.economy.indicators(),
        )
        self.economy = EconomyService(
            self.cache,
            self.ledger,
            clock=clock,
            snapshot_ttl_seconds=settings.economy.snapshot_ttl_seconds,
            pricing_params=PricingParameters.from_overrides(settings.economy.pricing),
            active_events_source=self.world.active_events,
        )

        self.forwarder = (
            EventForwarder(broadcaster, settings.broadcast.queue_size)
            if broadcaster is not None else None
        )

        self._tasks: list[asyncio.Task] = []
        self.running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Initialize the cache, restore both domains and start ticking."""
        if self.running:
            return

        logger.info("world_runtime_starting", environment=self.settings.environment)

        await self.cache.initialize()
        await self.world.load_or_initialize()
        await self.economy.load_or_initialize()

        if self.forwarder is not None:
            self.forwarder.attach(self.world.bus)
            self.forwarder.attach(self.economy.bus)
            self.forwarder.start()

        self._tasks = [
            asyncio.create_task(
                self._periodic("world_tick", self.settings.world.tick_interval_seconds, self._world_tick),
                name="world-tick",
            ),
            asyncio.create_task(
                self._periodic("economy_tick", self.settings.economy.tick_interval_seconds, self.economy.tick),
                name="economy-tick",
            ),
        ]

        self.running = True
        logger.info("world_runtime_started", cache_state=self.cache.state.value)

    async def shutdown(self) -> None:
        """Stop ticks, flush pending notifications, close the cache."""
        logger.info("world_runtime_shutting_down")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.forwarder is not None:
            await self.forwarder.stop(drain=True)

        await self.cache.disconnect()

        self.running = False
        logger.info("world_runtime_stopped")

    async def _world_tick(self) -> None:
        self.world.tick()

    async def _periodic(
        self,
        name: str,
        interval: float,
        step: Callable[[], Awaitable[Any]],
    ) -> None:
        """Run step every interval seconds; errors are logged, not fatal."""
        logger.info("periodic_task_started", task=name, interval_seconds=interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await step()
            except Exception as e:
                logger.error("periodic_task_error", task=name, error=str(e))

    # =========================================================================
    # Read models
    # =========================================================================

    async def snapshot(self) -> dict[str, Any]:
        """Full state for resyncing real-time observers."""
        indicators = self.economy.indicators()
        return {
            "world": await self.world.snapshot(),
            "territories": [t.to_dict() for t in self.world.list_territories()],
            "active_events": [e.to_dict() for e in self.world.active_events()],
            "market_items": [item.to_dict() for item in self.economy.list_items()],
            "indicators": indicators.to_dict() if indicators else None,
        }

    async def health(self) -> dict[str, Any]:
        cache_health = await self.cache.health_check()
        return {
            "status": "healthy" if self.running else "starting",
            "cache": cache_health,
            "world": self.world.stats(),
            "economy": self.economy.stats(),
        }
