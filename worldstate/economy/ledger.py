"""
Actor balance ledger.

The economy never owns money. It asks a ledger collaborator for
balances and asks it to debit or credit. Production wires this to the
character database; InMemoryLedger serves development and tests.
"""

from typing import Optional, Protocol

import structlog

from worldstate.errors import InsufficientFundsError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class Ledger(Protocol):
    """Balance collaborator used by EconomyService."""

    async def get_balance(self, actor_id: str) -> Optional[float]:
        """Current balance, or None for an unknown actor."""
        ...

    async def debit(self, actor_id: str, amount: float) -> float:
        """Remove funds. Raises NotFoundError / InsufficientFundsError."""
        ...

    async def credit(self, actor_id: str, amount: float) -> float:
        """Add funds. Raises NotFoundError."""
        ...


class InMemoryLedger:
    """
    Dict-backed ledger.

    The funds check and the debit happen in one step with no await in
    between, so two purchases can never overdraw an account.
    """

    def __init__(self, balances: Optional[dict[str, float]] = None):
        self.balances: dict[str, float] = dict(balances or {})

    def open_account(self, actor_id: str, balance: float = 0.0) -> None:
        if balance < 0:
            raise ValidationError("opening balance must be non-negative", field="balance")
        self.balances[actor_id] = float(balance)
        logger.info("ledger_account_opened", actor_id=actor_id, balance=balance)

    async def get_balance(self, actor_id: str) -> Optional[float]:
        return self.balances.get(actor_id)

    async def debit(self, actor_id: str, amount: float) -> float:
        if actor_id not in self.balances:
            raise NotFoundError("actor", actor_id)

        available = self.balances[actor_id]
        if available < amount:
            raise InsufficientFundsError(actor_id, amount, available)

        self.balances[actor_id] = available - amount
        return self.balances[actor_id]

    async def credit(self, actor_id: str, amount: float) -> float:
        if actor_id not in self.balances:
            raise NotFoundError("actor", actor_id)

        self.balances[actor_id] += amount
        return self.balances[actor_id]
