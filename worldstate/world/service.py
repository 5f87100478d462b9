"""
World service - territory control and world events.

Owns the authoritative territory map and the set of active world events.
Mutations follow one path:

    mutate memory -> write-through snapshot -> publish change

The tick expires events strictly by time and reports weather changes
derived from the clock.
"""

import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from worldstate.economy.models import EconomicIndicatorSet
from worldstate.errors import NotFoundError, ValidationError
from worldstate.events.bus import ChangeBus, ChangeType
from worldstate.storage.cache_coordinator import CacheCoordinator
from worldstate.storage.snapshots import load_with_default, persist_snapshot
from worldstate.world import environment
from worldstate.world.models import (
    EventKind,
    EventLocation,
    Severity,
    Territory,
    WorldEvent,
    default_territories,
    parse_territories,
)

logger = structlog.get_logger(__name__)

# kind -> (duration minutes, radius)
CONFLICT_RULE = (30, 200.0)
POLICE_RAID_RULE = (20, 300.0)
ECONOMIC_SHIFT_RULE = (60, 5000.0)
WEATHER_RULE = (60, 5000.0)

# player activity -> economic signal
ACTIVITY_SIGNALS = {
    "drug_deal": "drug_market",
    "weapon_purchase": "weapon_market",
}


def economic_shift_severity(magnitude: float) -> Severity:
    if magnitude > 2:
        return Severity.HIGH
    if magnitude > 1:
        return Severity.MEDIUM
    return Severity.LOW


def _parse_location(location: Any) -> tuple[float, float, float]:
    """Validate an {x, y, z?} mapping."""
    if not isinstance(location, dict):
        raise ValidationError("location must be a mapping with x and y", field="location")

    try:
        return (
            float(location["x"]),
            float(location["y"]),
            float(location.get("z", 0.0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"invalid location: {e}", field="location") from e


def _require_id(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string", field=field)
    return value


class WorldService:
    """
    Territory/Event domain.

    Collaborators are injected:
    - cache: snapshot persistence
    - bus: change publication (one per service by default)
    - player_counter: async count of online players (optional)
    - indicators_source: current economic indicators (optional)
    """

    TERRITORIES_KEY = "world:territories"

    def __init__(
        self,
        cache: CacheCoordinator,
        bus: Optional[ChangeBus] = None,
        clock: Callable[[], datetime] = datetime.now,
        snapshot_ttl_seconds: int = 300,
        player_counter: Optional[Callable[[], Awaitable[int]]] = None,
        indicators_source: Optional[Callable[[], Optional[EconomicIndicatorSet]]] = None,
    ):
        self.cache = cache
        self.bus = bus or ChangeBus("world", clock=clock)
        self._clock = clock
        self.snapshot_ttl_seconds = snapshot_ttl_seconds
        self._player_counter = player_counter
        self._indicators_source = indicators_source

        self._territories: dict[str, Territory] = {}
        self._active_events: dict[str, WorldEvent] = {}
        self._last_weather: Optional[str] = None
        self.loaded = False

    def subscribe(self, change_type: ChangeType, handler) -> Callable[[], None]:
        return self.bus.subscribe(change_type, handler)

    # =========================================================================
    # Persistence
    # =========================================================================

    async def load_or_initialize(self) -> bool:
        """
        Restore territories from the cache, or seed the defaults.

        Returns:
            True if a snapshot was loaded, False if defaults were used.
        """
        territories, from_cache = await load_with_default(
            self.cache,
            self.TERRITORIES_KEY,
            default_factory=lambda: default_territories(self._clock()),
            parse=parse_territories,
            dump=lambda items: [t.to_dict() for t in items],
            ttl_seconds=self.snapshot_ttl_seconds,
        )

        self._territories = {t.id: t for t in territories}
        self._last_weather = environment.weather_for(self._clock())
        self.loaded = True

        logger.info(
            "world_initialized",
            territories=len(self._territories),
            from_cache=from_cache,
        )
        return from_cache

    async def _persist_territories(self) -> None:
        await persist_snapshot(
            self.cache,
            self.TERRITORIES_KEY,
            [t.to_dict() for t in self._territories.values()],
            self.snapshot_ttl_seconds,
        )

    # =========================================================================
    # Territories
    # =========================================================================

    def get_territory(self, territory_id: str) -> Optional[Territory]:
        return self._territories.get(territory_id)

    def list_territories(self) -> list[Territory]:
        return list(self._territories.values())

    async def set_territory_controller(
        self,
        territory_id: str,
        faction_id: Optional[str],
    ) -> Territory:
        """
        Change (or clear) the controlling faction of a territory.

        Raises:
            NotFoundError: Unknown territory id
            ValidationError: Blank faction id
        """
        territory = self._territories.get(territory_id)
        if territory is None:
            raise NotFoundError("territory", territory_id)
        if faction_id is not None:
            _require_id(faction_id, "faction_id")

        previous_faction = territory.controlling_faction
        territory.controlling_faction = faction_id
        territory.last_update = self._clock()

        await self._persist_territories()

        self.bus.publish(
            ChangeType.TERRITORY_CONTROL_CHANGED,
            {
                "territory_id": territory_id,
                "previous_faction": previous_faction,
                "new_faction": faction_id,
                "territory": territory.to_dict(),
            },
        )

        logger.info(
            "territory_control_changed",
            territory_id=territory_id,
            previous_faction=previous_faction or "none",
            new_faction=faction_id or "none",
        )
        return territory

    def location_territory(self, x: float, y: float) -> Optional[Territory]:
        """First territory whose boundary contains the point."""
        for territory in self._territories.values():
            if territory.boundaries.contains(x, y):
                return territory
        return None

    def is_contested(self, x: float, y: float) -> bool:
        return any(
            t.contested and t.boundaries.contains(x, y)
            for t in self._territories.values()
        )

    def location_name(self, x: float, y: float) -> str:
        return environment.location_name(x, y)

    # =========================================================================
    # World events
    # =========================================================================

    def _store_event(
        self,
        kind: EventKind,
        location: EventLocation,
        severity: Severity,
        duration_minutes: int,
        description: str,
        affected_factions: tuple[str, ...] = (),
    ) -> WorldEvent:
        event = WorldEvent.create(
            event_id=f"{kind.value}_{uuid.uuid4().hex[:12]}",
            kind=kind,
            location=location,
            severity=severity,
            duration_minutes=duration_minutes,
            description=description,
            created_at=self._clock(),
            affected_factions=affected_factions,
        )

        self._active_events[event.id] = event
        self.bus.publish(ChangeType.EVENT_CREATED, event.to_dict())

        logger.info(
            "world_event_created",
            event_id=event.id,
            kind=kind.value,
            severity=severity.value,
            expires_at=event.expires_at.isoformat(),
        )
        return event

    def record_faction_conflict(
        self,
        faction_a: str,
        faction_b: str,
        location: dict,
    ) -> WorldEvent:
        """Territory conflict between two factions (30 min, high)."""
        _require_id(faction_a, "faction_a")
        _require_id(faction_b, "faction_b")
        x, y, z = _parse_location(location)
        duration, radius = CONFLICT_RULE

        return self._store_event(
            EventKind.TERRITORY_CONFLICT,
            EventLocation(x, y, z, radius),
            Severity.HIGH,
            duration,
            f"Territory conflict between {faction_a} and {faction_b}",
            affected_factions=(faction_a, faction_b),
        )

    def record_player_activity(
        self,
        player_id: str,
        activity: str,
        location: dict,
    ) -> Optional[WorldEvent]:
        """
        Translate a player activity into a world event.

        police_chase -> police raid; drug_deal / weapon_purchase -> economic
        shift in the matching market; anything else creates no event.
        """
        _require_id(player_id, "player_id")
        _require_id(activity, "activity")
        x, y, z = _parse_location(location)

        event = None
        if activity == "police_chase":
            duration, radius = POLICE_RAID_RULE
            event = self._store_event(
                EventKind.POLICE_RAID,
                EventLocation(x, y, z, radius),
                Severity.HIGH,
                duration,
                "Police raid in progress",
            )
        elif activity in ACTIVITY_SIGNALS:
            event = self.record_economic_signal(ACTIVITY_SIGNALS[activity], 1)

        logger.debug("player_activity_handled", player_id=player_id, activity=activity)
        return event

    def record_economic_signal(self, change_type: str, magnitude: float) -> WorldEvent:
        """City-wide economic shift; severity scales with magnitude."""
        _require_id(change_type, "change_type")
        if not isinstance(magnitude, (int, float)) or magnitude < 0:
            raise ValidationError("magnitude must be a non-negative number", field="magnitude")

        duration, radius = ECONOMIC_SHIFT_RULE
        return self._store_event(
            EventKind.ECONOMIC_SHIFT,
            EventLocation(0.0, 0.0, 0.0, radius),
            economic_shift_severity(magnitude),
            duration,
            f"Economic shift in {change_type} market",
        )

    def active_events(
        self,
        kind: Optional[EventKind] = None,
        severity: Optional[Severity] = None,
    ) -> list[WorldEvent]:
        """Active events, optionally filtered by kind and severity."""
        return [
            event for event in self._active_events.values()
            if (kind is None or event.kind == kind)
            and (severity is None or event.severity == severity)
        ]

    def events_at_location(self, x: float, y: float, z: float = 0.0) -> list[WorldEvent]:
        return [e for e in self._active_events.values() if e.location.covers(x, y, z)]

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self) -> list[WorldEvent]:
        """
        Expire events whose time is up and report weather changes.

        Returns:
            Events expired by this tick.
        """
        now = self._clock()

        expired = [e for e in self._active_events.values() if not e.is_active(now)]
        for event in expired:
            del self._active_events[event.id]
            self.bus.publish(ChangeType.EVENT_EXPIRED, event.to_dict())

        if expired:
            logger.info("world_events_expired", count=len(expired))

        weather = environment.weather_for(now)
        if self._last_weather is not None and weather != self._last_weather:
            duration, radius = WEATHER_RULE
            self._store_event(
                EventKind.WEATHER_CHANGE,
                EventLocation(0.0, 0.0, 0.0, radius),
                Severity.LOW,
                duration,
                f"Weather turning {weather} (was {self._last_weather})",
            )
        self._last_weather = weather

        return expired

    # =========================================================================
    # Read models
    # =========================================================================

    async def _active_players(self) -> int:
        if self._player_counter is None:
            return 0
        try:
            return int(await self._player_counter())
        except Exception as e:
            logger.warning("active_players_count_failed", error=str(e))
            return 0

    def _indicators(self) -> Optional[EconomicIndicatorSet]:
        return self._indicators_source() if self._indicators_source else None

    async def snapshot(self) -> dict[str, Any]:
        """Materialized world view for external read models."""
        now = self._clock()
        indicators = self._indicators()

        return {
            "current_time": now.isoformat(),
            "weather": environment.weather_for(now),
            "active_players": await self._active_players(),
            "faction_wars": any(
                e.kind == EventKind.FACTION_WAR for e in self._active_events.values()
            ),
            "economic_state": environment.economic_level(
                indicators.business_activity if indicators else None
            ),
            "crime_level": environment.crime_level(
                indicators.criminal_activity if indicators else None
            ),
        }

    def stats(self) -> dict[str, Any]:
        by_kind: dict[str, int] = {}
        for event in self._active_events.values():
            by_kind[event.kind.value] = by_kind.get(event.kind.value, 0) + 1

        territories = self._territories.values()
        return {
            "territories": {
                "total": len(self._territories),
                "controlled": sum(1 for t in territories if t.controlling_faction),
                "contested": sum(1 for t in territories if t.contested),
            },
            "events": {
                "active": len(self._active_events),
                "by_kind": by_kind,
            },
        }
