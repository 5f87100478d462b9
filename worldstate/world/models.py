"""
World domain data model.

Territories are long-lived and only ever superseded, never deleted.
World events live for a fixed duration:

    CREATED/ACTIVE --(now >= expires_at)--> EXPIRED (terminal)
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from worldstate.errors import SerializationError, ValidationError


class EventKind(Enum):
    """Kinds of world events."""
    TERRITORY_CONFLICT = "territory_conflict"
    ECONOMIC_SHIFT = "economic_shift"
    POLICE_RAID = "police_raid"
    WEATHER_CHANGE = "weather_change"
    FACTION_WAR = "faction_war"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Boundary:
    """Axis-aligned rectangle on the map (optional z level)."""
    x1: float
    y1: float
    x2: float
    y2: float
    z: Optional[float] = None

    def __post_init__(self):
        if not (self.x1 < self.x2 and self.y1 < self.y2):
            raise ValidationError(
                f"degenerate boundary ({self.x1}, {self.y1}, {self.x2}, {self.y2})",
                field="boundaries",
            )

    def contains(self, x: float, y: float) -> bool:
        return self.x1 <= x <= self.x2 and self.y1 <= y <= self.y2

    def to_dict(self) -> dict[str, Any]:
        data = {"x1": self.x1, "y1": self.y1, "x2": self.x2, "y2": self.y2}
        if self.z is not None:
            data["z"] = self.z
        return data

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Boundary":
        return cls(
            x1=float(d["x1"]),
            y1=float(d["y1"]),
            x2=float(d["x2"]),
            y2=float(d["y2"]),
            z=float(d["z"]) if d.get("z") is not None else None,
        )


@dataclass
class Territory:
    """
    A controllable region.

    controlling_faction references a faction managed outside this service.
    """
    id: str
    name: str
    boundaries: Boundary
    value: float
    contested: bool = False
    controlling_faction: Optional[str] = None
    last_update: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "boundaries": self.boundaries.to_dict(),
            "controlling_faction": self.controlling_faction,
            "contested": self.contested,
            "value": self.value,
            "last_update": self.last_update.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Territory":
        return cls(
            id=str(d["id"]),
            name=str(d["name"]),
            boundaries=Boundary.from_dict(d["boundaries"]),
            controlling_faction=d.get("controlling_faction"),
            contested=bool(d.get("contested", False)),
            value=float(d["value"]),
            last_update=datetime.fromisoformat(d["last_update"]),
        )


@dataclass(frozen=True)
class EventLocation:
    x: float
    y: float
    z: float = 0.0
    radius: float = 0.0

    def covers(self, x: float, y: float, z: float = 0.0) -> bool:
        distance = ((self.x - x) ** 2 + (self.y - y) ** 2 + (self.z - z) ** 2) ** 0.5
        return distance <= self.radius

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z, "radius": self.radius}


@dataclass(frozen=True)
class WorldEvent:
    """A time-boxed world event. Active iff now < expires_at."""
    id: str
    kind: EventKind
    location: EventLocation
    severity: Severity
    duration_minutes: int
    affected_factions: tuple[str, ...]
    description: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def create(
        cls,
        event_id: str,
        kind: EventKind,
        location: EventLocation,
        severity: Severity,
        duration_minutes: int,
        description: str,
        created_at: datetime,
        affected_factions: tuple[str, ...] = (),
    ) -> "WorldEvent":
        """Build an event with expires_at derived from the duration."""
        return cls(
            id=event_id,
            kind=kind,
            location=location,
            severity=severity,
            duration_minutes=duration_minutes,
            affected_factions=tuple(affected_factions),
            description=description,
            created_at=created_at,
            expires_at=created_at + timedelta(minutes=duration_minutes),
        )

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "location": self.location.to_dict(),
            "severity": self.severity.value,
            "duration_minutes": self.duration_minutes,
            "affected_factions": list(self.affected_factions),
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


def default_territories(now: datetime) -> list[Territory]:
    """Seed territories used when no snapshot exists."""
    seeds = [
        ("grove_street", "Grove Street", (-2493, -617, -2393, -517), False, 85),
        ("ballas_territory", "Ballas Territory", (-2616, -122, -2516, -22), False, 75),
        ("downtown_ls", "Downtown Los Santos", (-762, -818, -562, -618), True, 95),
        ("vinewood", "Vinewood", (-1289, -1098, -1089, -898), False, 90),
        ("del_perro", "Del Perro", (-1756, -1026, -1556, -826), False, 70),
    ]

    return [
        Territory(
            id=territory_id,
            name=name,
            boundaries=Boundary(*bounds),
            contested=contested,
            value=value,
            last_update=now,
        )
        for territory_id, name, bounds, contested, value in seeds
    ]


def parse_territories(raw: Any) -> list[Territory]:
    """Decode a cached territory snapshot."""
    if not isinstance(raw, list) or not raw:
        raise SerializationError("territory snapshot must be a non-empty list")

    try:
        territories = [Territory.from_dict(item) for item in raw]
    except ValidationError as e:
        raise SerializationError(str(e)) from e

    ids = [t.id for t in territories]
    if len(set(ids)) != len(ids):
        raise SerializationError("duplicate territory ids in snapshot")
    return territories
