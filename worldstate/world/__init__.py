"""
World domain: territories, world events, environment.
"""

from worldstate.world.models import (
    Boundary,
    EventKind,
    EventLocation,
    Severity,
    Territory,
    WorldEvent,
)
from worldstate.world.service import WorldService

__all__ = [
    "Boundary",
    "EventKind",
    "EventLocation",
    "Severity",
    "Territory",
    "WorldEvent",
    "WorldService",
]
