"""
Market pricing model.

Each tick, an item's price moves by

    change = (pressure + market_force) * inflation_multiplier

where
    pressure      = (demand / max(supply, 1) - 1) * pressure_coefficient
    market_force  = (volume signal + world event signal) * volatility
    inflation     = 1 + inflation% / 100

and the result is floored at price_floor_ratio * base_price.

The constants below are tuned by feel, not derived. They are kept as
PricingParameters fields so they can be overridden from config.
"""

from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import Optional

import structlog

from worldstate.economy.models import EconomicIndicatorSet, ItemCategory, MarketItem, clamp

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PricingParameters:
    """Tunable pricing constants."""
    pressure_coefficient: float = 0.1

    # Recent volume vs. the item's average volume
    high_volume_ratio: float = 1.5
    high_volume_push: float = 0.05
    low_volume_ratio: float = 0.5
    low_volume_pull: float = 0.03

    # World event effects
    police_raid_drug_push: float = 0.1
    conflict_weapon_push: float = 0.08

    price_floor_ratio: float = 0.1
    update_threshold: float = 0.01

    # Supply / demand drift
    restock_supply_step: float = 10.0
    purchase_supply_step: float = 1.0
    purchase_demand_step: float = 2.0
    demand_decay_step: float = 1.0
    demand_decay_floor: float = 10.0
    demand_decay_interval: timedelta = timedelta(hours=1)

    activity_window: timedelta = timedelta(hours=1)

    @classmethod
    def from_overrides(cls, overrides: Optional[dict]) -> "PricingParameters":
        """Build parameters from a config mapping, ignoring unknown keys."""
        params = cls()
        if not overrides:
            return params

        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in overrides.items():
            if key not in known:
                logger.warning("unknown_pricing_parameter", key=key)
                continue
            if isinstance(getattr(params, key), timedelta):
                values[key] = timedelta(seconds=float(value))
            else:
                values[key] = float(value)

        return replace(params, **values)


@dataclass(frozen=True)
class MarketActivity:
    """What happened around an item since the last look."""
    sales_volume: float = 0.0
    purchase_events: int = 0
    restock_events: int = 0
    last_purchase_at: Optional[datetime] = None
    world_events: frozenset = frozenset()


def supply_demand_pressure(item: MarketItem, params: PricingParameters) -> float:
    return (item.demand / max(item.supply, 1) - 1) * params.pressure_coefficient


def market_force(item: MarketItem, activity: MarketActivity, params: PricingParameters) -> float:
    """Volume and world-event signal, scaled by the item's volatility."""
    force = 0.0

    if activity.sales_volume > item.average_volume * params.high_volume_ratio:
        force += params.high_volume_push
    elif activity.sales_volume < item.average_volume * params.low_volume_ratio:
        force -= params.low_volume_pull

    if "police_raid" in activity.world_events and item.category == ItemCategory.DRUGS:
        force += params.police_raid_drug_push

    if "territory_conflict" in activity.world_events and item.category == ItemCategory.WEAPONS:
        force += params.conflict_weapon_push

    return force * item.volatility


def inflation_multiplier(indicators: Optional[EconomicIndicatorSet]) -> float:
    if indicators is None:
        return 1.0
    return 1 + indicators.inflation / 100


def next_price(
    item: MarketItem,
    activity: MarketActivity,
    multiplier: float,
    params: PricingParameters,
) -> float:
    """Candidate price for the next tick, floored at the minimum price."""
    change = (supply_demand_pressure(item, params) + market_force(item, activity, params)) * multiplier
    return max(item.base_price * params.price_floor_ratio, item.current_price * (1 + change))


def is_significant_move(old_price: float, new_price: float, params: PricingParameters) -> bool:
    return abs(new_price - old_price) > old_price * params.update_threshold


def drift_supply_demand(
    item: MarketItem,
    activity: MarketActivity,
    params: PricingParameters,
) -> tuple[float, float]:
    """Supply/demand after restock and purchase signals (clamped 0-100)."""
    supply, demand = item.supply, item.demand

    if activity.restock_events > 0:
        supply = clamp(supply + activity.restock_events * params.restock_supply_step, 0, 100)

    if activity.purchase_events > 0:
        supply = clamp(supply - activity.purchase_events * params.purchase_supply_step, 0, 100)
        demand = clamp(demand + activity.purchase_events * params.purchase_demand_step, 0, 100)

    return supply, demand


def demand_decay_due(
    now: datetime,
    idle_since: datetime,
    last_decay_at: Optional[datetime],
    params: PricingParameters,
) -> bool:
    """True once per idle interval with no purchase activity."""
    if now - idle_since <= params.demand_decay_interval:
        return False
    if last_decay_at is not None and now - last_decay_at < params.demand_decay_interval:
        return False
    return True
