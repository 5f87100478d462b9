"""
Economy domain data model.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from worldstate.errors import SerializationError


class ItemCategory(Enum):
    DRUGS = "drugs"
    WEAPONS = "weapons"
    VEHICLES = "vehicles"
    SERVICES = "services"
    PROPERTY = "property"


class TransactionKind(Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    TRANSFER = "transfer"
    INCOME = "income"
    EXPENSE = "expense"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class MarketItem:
    """
    A tradeable item.

    Invariants (maintained by EconomyService):
    - current_price >= 0.1 * base_price
    - 0 <= supply, demand <= 100
    """
    id: str
    name: str
    category: ItemCategory
    base_price: float
    current_price: float
    supply: float
    demand: float
    volatility: float
    average_volume: float
    last_update: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "base_price": self.base_price,
            "current_price": self.current_price,
            "supply": self.supply,
            "demand": self.demand,
            "volatility": self.volatility,
            "average_volume": self.average_volume,
            "last_update": self.last_update.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MarketItem":
        item = cls(
            id=str(d["id"]),
            name=str(d["name"]),
            category=ItemCategory(d["category"]),
            base_price=float(d["base_price"]),
            current_price=float(d["current_price"]),
            supply=float(d["supply"]),
            demand=float(d["demand"]),
            volatility=float(d["volatility"]),
            average_volume=float(d["average_volume"]),
            last_update=datetime.fromisoformat(d["last_update"]),
        )

        if item.base_price <= 0 or item.current_price < 0.1 * item.base_price:
            raise SerializationError(f"item {item.id} violates the price floor")
        if not (0 <= item.supply <= 100 and 0 <= item.demand <= 100):
            raise SerializationError(f"item {item.id} has supply/demand outside 0-100")
        if not 0 <= item.volatility <= 1:
            raise SerializationError(f"item {item.id} has volatility outside 0-1")
        return item


@dataclass(frozen=True)
class Transaction:
    """Immutable audit record of price-driving activity."""
    id: str
    kind: TransactionKind
    actor_id: str
    amount: float
    description: str
    timestamp: datetime
    item_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def quantity(self) -> int:
        return int(self.metadata.get("quantity", 1))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "actor_id": self.actor_id,
            "item_id": self.item_id,
            "amount": self.amount,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


PERCENTAGE_FIELDS = (
    "inflation",
    "unemployment",
    "criminal_activity",
    "tourism",
    "business_activity",
)


@dataclass
class EconomicIndicatorSet:
    """City-wide economic indicators. Percentage fields are 0-100."""
    inflation: float
    unemployment: float
    gdp: float
    criminal_activity: float
    tourism: float
    business_activity: float
    last_update: datetime = field(default_factory=datetime.now)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls) if f.name != "last_update")

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in self.field_names()}
        data["last_update"] = self.last_update.isoformat()
        return data

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EconomicIndicatorSet":
        if not isinstance(d, dict):
            raise SerializationError("indicator snapshot must be a mapping")

        values = {}
        for name in cls.field_names():
            value = d[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SerializationError(f"indicator {name} is not numeric")
            values[name] = float(value)

        return cls(last_update=datetime.fromisoformat(d["last_update"]), **values)


def default_market_items(now: datetime) -> list[MarketItem]:
    """Seed catalog used when no snapshot exists."""
    seeds = [
        # id, name, category, base price, supply, demand, volatility, avg volume
        ("weed", "Cannabis", ItemCategory.DRUGS, 50, 70, 60, 0.3, 10),
        ("cocaine", "Cocaine", ItemCategory.DRUGS, 200, 40, 80, 0.5, 5),
        ("meth", "Methamphetamine", ItemCategory.DRUGS, 150, 50, 70, 0.4, 8),
        ("pistol", "Pistol", ItemCategory.WEAPONS, 500, 80, 60, 0.2, 3),
        ("assault_rifle", "Assault Rifle", ItemCategory.WEAPONS, 2500, 30, 90, 0.6, 1),
        ("sports_car", "Sports Car", ItemCategory.VEHICLES, 50000, 60, 40, 0.1, 2),
    ]

    return [
        MarketItem(
            id=item_id,
            name=name,
            category=category,
            base_price=float(price),
            current_price=float(price),
            supply=float(supply),
            demand=float(demand),
            volatility=volatility,
            average_volume=float(volume),
            last_update=now,
        )
        for item_id, name, category, price, supply, demand, volatility, volume in seeds
    ]


def default_indicators(now: datetime) -> EconomicIndicatorSet:
    return EconomicIndicatorSet(
        inflation=2.5,
        unemployment=15.0,
        gdp=1_000_000.0,
        criminal_activity=60.0,
        tourism=40.0,
        business_activity=70.0,
        last_update=now,
    )


def parse_market_items(raw: Any) -> list[MarketItem]:
    """Decode a cached market catalog."""
    if not isinstance(raw, list) or not raw:
        raise SerializationError("market snapshot must be a non-empty list")
    return [MarketItem.from_dict(item) for item in raw]
