"""
Storage layer with separated concerns.

- RedisStateStore: durable snapshots (primary backend)
- MemoryStore: in-process fallback, never raises
- CacheCoordinator: picks the active backend and hides it from callers
- load_with_default: shared snapshot restore with built-in defaults
"""

from worldstate.storage.cache_coordinator import BackendState, CacheCoordinator
from worldstate.storage.memory_store import MemoryStore
from worldstate.storage.redis_state import RedisStateStore
from worldstate.storage.snapshots import load_with_default, persist_snapshot

__all__ = [
    "BackendState",
    "CacheCoordinator",
    "MemoryStore",
    "RedisStateStore",
    "load_with_default",
    "persist_snapshot",
]
