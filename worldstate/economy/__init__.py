"""
Economy domain: market items, trades, economic indicators.
"""

from worldstate.economy.models import (
    EconomicIndicatorSet,
    ItemCategory,
    MarketItem,
    Transaction,
    TransactionKind,
)
from worldstate.economy.pricing import PricingParameters
from worldstate.economy.ledger import InMemoryLedger, Ledger
from worldstate.economy.service import EconomyService

__all__ = [
    "EconomicIndicatorSet",
    "EconomyService",
    "InMemoryLedger",
    "ItemCategory",
    "Ledger",
    "MarketItem",
    "PricingParameters",
    "Transaction",
    "TransactionKind",
]
