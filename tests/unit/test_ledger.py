"""
Tests for the in-memory ledger.
"""

import asyncio

import pytest

from worldstate.economy.ledger import InMemoryLedger
from worldstate.errors import InsufficientFundsError, NotFoundError, ValidationError


class TestInMemoryLedger:

    def setup_method(self):
        self.ledger = InMemoryLedger({"a": 100.0})

    async def test_debit_and_credit(self):
        assert await self.ledger.debit("a", 40) == 60
        assert await self.ledger.credit("a", 15) == 75
        assert await self.ledger.get_balance("a") == 75

    async def test_unknown_actor(self):
        assert await self.ledger.get_balance("b") is None
        with pytest.raises(NotFoundError):
            await self.ledger.debit("b", 1)
        with pytest.raises(NotFoundError):
            await self.ledger.credit("b", 1)

    async def test_overdraft_rejected_without_change(self):
        with pytest.raises(InsufficientFundsError):
            await self.ledger.debit("a", 100.01)

        assert await self.ledger.get_balance("a") == 100.0

    async def test_concurrent_debits_never_overdraw(self):
        results = await asyncio.gather(
            *(self.ledger.debit("a", 30) for _ in range(5)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, InsufficientFundsError)]
        assert len(failures) == 2
        assert await self.ledger.get_balance("a") == pytest.approx(10.0)

    def test_open_account(self):
        self.ledger.open_account("c", 5)
        assert self.ledger.balances["c"] == 5.0

        with pytest.raises(ValidationError):
            self.ledger.open_account("d", -1)
