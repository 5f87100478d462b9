"""
Error taxonomy.

Request errors (NotFoundError, InsufficientFundsError, ValidationError)
are raised to the immediate caller and never retried.

Backend errors (BackendUnavailableError, SerializationError) are raised
by the storage layer and absorbed by the Cache Coordinator or the
snapshot loader. They should never reach a caller of a domain service.
"""

from typing import Optional


class WorldStateError(Exception):
    """Base class for all world state errors."""


class NotFoundError(WorldStateError):
    """Unknown territory, item or actor id."""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier!r} not found")


class InsufficientFundsError(WorldStateError):
    """Actor balance does not cover the requested purchase."""

    def __init__(self, actor_id: str, required: float, available: float):
        self.actor_id = actor_id
        self.required = required
        self.available = available
        super().__init__(
            f"actor {actor_id!r} needs {required:.2f} but has {available:.2f}"
        )


class ValidationError(WorldStateError):
    """Malformed mutation input."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class BackendUnavailableError(WorldStateError):
    """Durable store unreachable or timing out."""


class SerializationError(WorldStateError):
    """Persisted snapshot could not be decoded."""
