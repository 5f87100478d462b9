"""
Economy service - market prices, trades and economic indicators.

Owns the market catalog, the transaction log and the indicator set.
Trades go through the ledger collaborator first; in-memory state is
only touched once the ledger has accepted the money movement, so a
rejected trade leaves no trace.
"""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

import structlog

from worldstate.economy import pricing
from worldstate.economy.ledger import Ledger
from worldstate.economy.models import (
    PERCENTAGE_FIELDS,
    EconomicIndicatorSet,
    ItemCategory,
    MarketItem,
    Transaction,
    TransactionKind,
    clamp,
    default_indicators,
    default_market_items,
    parse_market_items,
)
from worldstate.errors import InsufficientFundsError, NotFoundError, ValidationError
from worldstate.events.bus import ChangeBus, ChangeType
from worldstate.storage.cache_coordinator import CacheCoordinator
from worldstate.storage.snapshots import load_with_default, persist_snapshot
from worldstate.world.models import WorldEvent

logger = structlog.get_logger(__name__)


def _validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", field="quantity")
    return quantity


def _validate_actor(actor_id: Any) -> str:
    if not isinstance(actor_id, str) or not actor_id.strip():
        raise ValidationError("actor_id must be a non-empty string", field="actor_id")
    return actor_id


class EconomyService:
    """
    Market/Indicator domain.

    Collaborators are injected:
    - cache: snapshot persistence
    - ledger: actor balances
    - bus: change publication (one per service by default)
    - active_events_source: currently active world events (optional)
    """

    ITEMS_KEY = "economy:market_items"
    INDICATORS_KEY = "economy:indicators"

    SELL_SPREAD = 0.9  # sellers receive 90% of the current price

    def __init__(
        self,
        cache: CacheCoordinator,
        ledger: Ledger,
        bus: Optional[ChangeBus] = None,
        clock: Callable[[], datetime] = datetime.now,
        snapshot_ttl_seconds: int = 3600,
        pricing_params: Optional[pricing.PricingParameters] = None,
        active_events_source: Optional[Callable[[], Iterable[WorldEvent]]] = None,
    ):
        self.cache = cache
        self.ledger = ledger
        self.bus = bus or ChangeBus("economy", clock=clock)
        self._clock = clock
        self.snapshot_ttl_seconds = snapshot_ttl_seconds
        self.pricing = pricing_params or pricing.PricingParameters()
        self._active_events_source = active_events_source

        self._items: dict[str, MarketItem] = {}
        self._transactions: list[Transaction] = []
        self._indicators: Optional[EconomicIndicatorSet] = None

        # Tick bookkeeping
        self._pending_restocks: dict[str, int] = {}
        self._last_purchase_at: dict[str, datetime] = {}
        self._last_decay_at: dict[str, datetime] = {}
        self._last_tick_at: Optional[datetime] = None
        self._started_at = clock()
        self.loaded = False

    def subscribe(self, change_type: ChangeType, handler) -> Callable[[], None]:
        return self.bus.subscribe(change_type, handler)

    # =========================================================================
    # Persistence
    # =========================================================================

    async def load_or_initialize(self) -> bool:
        """
        Restore the market catalog and indicators, or seed defaults.

        Returns:
            True if both snapshots came from the cache.
        """
        items, items_cached = await load_with_default(
            self.cache,
            self.ITEMS_KEY,
            default_factory=lambda: default_market_items(self._clock()),
            parse=parse_market_items,
            dump=lambda values: [item.to_dict() for item in values],
            ttl_seconds=self.snapshot_ttl_seconds,
        )

        indicators, indicators_cached = await load_with_default(
            self.cache,
            self.INDICATORS_KEY,
            default_factory=lambda: default_indicators(self._clock()),
            parse=EconomicIndicatorSet.from_dict,
            dump=lambda value: value.to_dict(),
            ttl_seconds=self.snapshot_ttl_seconds,
        )

        self._items = {item.id: item for item in items}
        self._indicators = indicators
        self._started_at = self._clock()
        self.loaded = True

        logger.info(
            "economy_initialized",
            market_items=len(self._items),
            items_from_cache=items_cached,
            indicators_from_cache=indicators_cached,
        )
        return items_cached and indicators_cached

    async def _persist_items(self) -> None:
        await persist_snapshot(
            self.cache,
            self.ITEMS_KEY,
            [item.to_dict() for item in self._items.values()],
            self.snapshot_ttl_seconds,
        )

    async def _persist_indicators(self) -> None:
        if self._indicators is not None:
            await persist_snapshot(
                self.cache,
                self.INDICATORS_KEY,
                self._indicators.to_dict(),
                self.snapshot_ttl_seconds,
            )

    # =========================================================================
    # Catalog
    # =========================================================================

    def get_item(self, item_id: str) -> Optional[MarketItem]:
        return self._items.get(item_id)

    def list_items(self, category: Optional[ItemCategory] = None) -> list[MarketItem]:
        return [
            item for item in self._items.values()
            if category is None or item.category == category
        ]

    def _require_item(self, item_id: str) -> MarketItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFoundError("item", item_id)
        return item

    # =========================================================================
    # Trades
    # =========================================================================

    def _new_transaction(
        self,
        kind: TransactionKind,
        actor_id: str,
        item: MarketItem,
        amount: float,
        description: str,
        metadata: dict,
    ) -> Transaction:
        now = self._clock()
        return Transaction(
            id=f"txn_{now.strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:9]}",
            kind=kind,
            actor_id=actor_id,
            item_id=item.id,
            amount=amount,
            description=description,
            timestamp=now,
            metadata=metadata,
        )

    async def purchase(self, actor_id: str, item_id: str, quantity: int = 1) -> Transaction:
        """
        Buy items at the current price.

        Raises:
            ValidationError: Bad actor id or quantity
            NotFoundError: Unknown item or actor
            InsufficientFundsError: Balance below total cost
        """
        _validate_actor(actor_id)
        quantity = _validate_quantity(quantity)
        item = self._require_item(item_id)

        unit_price = item.current_price
        total_cost = unit_price * quantity

        balance = await self.ledger.get_balance(actor_id)
        if balance is None:
            raise NotFoundError("actor", actor_id)
        if balance < total_cost:
            logger.warning(
                "purchase_rejected_insufficient_funds",
                actor_id=actor_id,
                item_id=item_id,
                required=total_cost,
                available=balance,
            )
            raise InsufficientFundsError(actor_id, total_cost, balance)

        await self.ledger.debit(actor_id, total_cost)

        transaction = self._new_transaction(
            TransactionKind.PURCHASE,
            actor_id,
            item,
            total_cost,
            f"Purchased {quantity}x {item.name}",
            {"quantity": quantity, "unit_price": unit_price},
        )
        self._transactions.append(transaction)

        item.supply = clamp(item.supply - 2 * quantity, 0, 100)
        item.demand = clamp(item.demand + quantity, 0, 100)
        item.last_update = transaction.timestamp
        self._last_purchase_at[item.id] = transaction.timestamp

        await self._persist_items()
        self.bus.publish(ChangeType.TRANSACTION_COMPLETED, transaction.to_dict())

        logger.info(
            "purchase_completed",
            actor_id=actor_id,
            item_id=item_id,
            quantity=quantity,
            total_cost=total_cost,
        )
        return transaction

    async def sell(self, actor_id: str, item_id: str, quantity: int = 1) -> Transaction:
        """
        Sell items back to the market at current price minus the spread.

        Raises:
            ValidationError: Bad actor id or quantity
            NotFoundError: Unknown item or actor
        """
        _validate_actor(actor_id)
        quantity = _validate_quantity(quantity)
        item = self._require_item(item_id)

        sell_price = item.current_price * self.SELL_SPREAD
        total_revenue = sell_price * quantity

        if await self.ledger.get_balance(actor_id) is None:
            raise NotFoundError("actor", actor_id)

        await self.ledger.credit(actor_id, total_revenue)

        transaction = self._new_transaction(
            TransactionKind.SALE,
            actor_id,
            item,
            total_revenue,
            f"Sold {quantity}x {item.name}",
            {"quantity": quantity, "unit_price": sell_price},
        )
        self._transactions.append(transaction)

        item.supply = clamp(item.supply + 2 * quantity, 0, 100)
        item.demand = clamp(item.demand - quantity, 0, 100)
        item.last_update = transaction.timestamp

        await self._persist_items()
        self.bus.publish(ChangeType.TRANSACTION_COMPLETED, transaction.to_dict())

        logger.info(
            "sale_completed",
            actor_id=actor_id,
            item_id=item_id,
            quantity=quantity,
            total_revenue=total_revenue,
        )
        return transaction

    def record_restock(self, item_id: str, count: int = 1) -> int:
        """
        Register restock signals, applied to supply on the next tick.

        Returns:
            Pending restock signals for the item.
        """
        self._require_item(item_id)
        count = _validate_quantity(count)
        self._pending_restocks[item_id] = self._pending_restocks.get(item_id, 0) + count
        return self._pending_restocks[item_id]

    def recent_transactions(
        self,
        limit: int = 50,
        actor_id: Optional[str] = None,
    ) -> list[Transaction]:
        """Newest-first transactions, optionally for one actor."""
        if limit < 0:
            raise ValidationError("limit must be non-negative", field="limit")

        matching = (
            t for t in self._transactions
            if actor_id is None or t.actor_id == actor_id
        )
        return sorted(matching, key=lambda t: t.timestamp, reverse=True)[:limit]

    # =========================================================================
    # Tick
    # =========================================================================

    def _world_event_kinds(self) -> frozenset:
        if self._active_events_source is None:
            return frozenset()
        return frozenset(event.kind.value for event in self._active_events_source())

    def _activity_for(
        self,
        item_id: str,
        now: datetime,
        world_events: frozenset,
    ) -> pricing.MarketActivity:
        window_start = now - self.pricing.activity_window
        since = self._last_tick_at or self._started_at
        horizon = min(window_start, since)

        volume = 0
        purchase_events = 0
        for txn in reversed(self._transactions):
            if txn.timestamp < horizon:
                break
            if txn.item_id != item_id or txn.kind != TransactionKind.PURCHASE:
                continue
            if txn.timestamp >= window_start:
                volume += txn.quantity
            if txn.timestamp > since:
                purchase_events += 1

        return pricing.MarketActivity(
            sales_volume=volume,
            purchase_events=purchase_events,
            restock_events=self._pending_restocks.pop(item_id, 0),
            last_purchase_at=self._last_purchase_at.get(item_id),
            world_events=world_events,
        )

    async def tick(self) -> list[dict[str, Any]]:
        """
        Recompute prices, supply and demand for every item.

        Only price moves above the update threshold are applied and
        published. Supply/demand drift is persisted either way.

        Returns:
            The published price updates.
        """
        now = self._clock()
        params = self.pricing
        multiplier = pricing.inflation_multiplier(self._indicators)
        world_events = self._world_event_kinds()

        updates = []
        drifted = False

        for item in self._items.values():
            activity = self._activity_for(item.id, now, world_events)

            new_price = pricing.next_price(item, activity, multiplier, params)
            if pricing.is_significant_move(item.current_price, new_price, params):
                updates.append({
                    "item_id": item.id,
                    "name": item.name,
                    "previous_price": item.current_price,
                    "current_price": new_price,
                })
                item.current_price = new_price
                item.last_update = now

            supply, demand = pricing.drift_supply_demand(item, activity, params)

            idle_since = activity.last_purchase_at or self._started_at
            if demand > params.demand_decay_floor and pricing.demand_decay_due(
                now, idle_since, self._last_decay_at.get(item.id), params
            ):
                demand = max(params.demand_decay_floor, demand - params.demand_decay_step)
                self._last_decay_at[item.id] = now

            if (supply, demand) != (item.supply, item.demand):
                item.supply, item.demand = supply, demand
                item.last_update = now
                drifted = True

        self._last_tick_at = now

        if updates or drifted:
            await self._persist_items()

        if updates:
            self.bus.publish(ChangeType.PRICES_UPDATED, {"updates": updates})
            logger.info("market_prices_updated", count=len(updates))

        return updates

    # =========================================================================
    # Indicators
    # =========================================================================

    def indicators(self) -> Optional[EconomicIndicatorSet]:
        return self._indicators

    async def update_indicators(self, updates: dict[str, Any]) -> EconomicIndicatorSet:
        """
        Merge a partial update into the indicator set.

        Percentage fields are clamped to 0-100; last_update is always
        re-stamped.

        Raises:
            ValidationError: Unknown field or non-numeric value
        """
        known = EconomicIndicatorSet.field_names()
        unknown = sorted(set(updates) - set(known))
        if unknown:
            raise ValidationError(f"unknown indicator fields: {', '.join(unknown)}", field=unknown[0])

        clean: dict[str, float] = {}
        for name, value in updates.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"indicator {name} must be numeric", field=name)
            if name in PERCENTAGE_FIELDS:
                value = clamp(float(value), 0, 100)
            elif value < 0:
                raise ValidationError(f"indicator {name} must be non-negative", field=name)
            clean[name] = float(value)

        now = self._clock()
        base = self._indicators or default_indicators(now)
        self._indicators = replace(base, **clean, last_update=now)

        await self._persist_indicators()
        self.bus.publish(ChangeType.ECONOMIC_INDICATORS_UPDATED, self._indicators.to_dict())

        logger.info("economic_indicators_updated", fields=sorted(clean))
        return self._indicators

    # =========================================================================
    # Stats
    # =========================================================================

    def stats(self) -> dict[str, Any]:
        """Aggregates computed fresh from in-memory state."""
        items = list(self._items.values())
        transactions = self._transactions

        cutoff = self._clock() - timedelta(hours=24)
        volume_24h = sum(t.amount for t in transactions if t.timestamp > cutoff)

        return {
            "market": {
                "total_items": len(items),
                "average_price": (
                    sum(item.current_price for item in items) / len(items) if items else 0.0
                ),
                "total_volume": sum(item.supply * item.current_price for item in items),
            },
            "transactions": {
                "total": len(transactions),
                "volume_24h": volume_24h,
                "average_amount": (
                    sum(t.amount for t in transactions) / len(transactions)
                    if transactions else 0.0
                ),
            },
            "indicators": self._indicators.to_dict() if self._indicators else None,
        }
