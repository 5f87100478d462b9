"""
Snapshot loading with a guaranteed default.

Both domains restore their state the same way: read the snapshot key
through the Cache Coordinator, decode it, and fall back to built-in
defaults (persisting them) on a miss or a corrupt payload.
"""

from typing import Any, Callable, Optional, TypeVar

import structlog

from worldstate.errors import SerializationError
from worldstate.storage.cache_coordinator import CacheCoordinator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def load_with_default(
    cache: CacheCoordinator,
    key: str,
    default_factory: Callable[[], T],
    parse: Callable[[Any], T],
    dump: Callable[[T], Any],
    ttl_seconds: Optional[int] = None,
) -> tuple[T, bool]:
    """
    Load a snapshot or seed it from defaults.

    Args:
        cache: Cache Coordinator to read and write through
        key: Snapshot key
        default_factory: Builds the default value
        parse: Decodes and validates the raw cached value; raises
            SerializationError (or KeyError/TypeError/ValueError) on bad data
        dump: Encodes a value for storage
        ttl_seconds: TTL for the persisted default

    Returns:
        (value, loaded_from_cache). Never raises.
    """
    raw = None
    try:
        raw = await cache.get(key)
    except Exception as e:
        logger.warning("snapshot_read_failed", key=key, error=str(e))

    if raw is not None:
        try:
            value = parse(raw)
            logger.info("snapshot_loaded", key=key)
            return value, True
        except (SerializationError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("snapshot_corrupt_using_defaults", key=key, error=str(e))
    else:
        logger.info("snapshot_missing_using_defaults", key=key)

    value = default_factory()
    await persist_snapshot(cache, key, dump(value), ttl_seconds)
    return value, False


async def persist_snapshot(
    cache: CacheCoordinator,
    key: str,
    payload: Any,
    ttl_seconds: Optional[int] = None,
) -> bool:
    """Write-through a snapshot. Failures are logged, never raised."""
    try:
        success = await cache.set(key, payload, ttl_seconds)
    except Exception as e:
        logger.warning("snapshot_write_failed", key=key, error=str(e))
        return False

    if not success:
        logger.warning("snapshot_write_rejected", key=key)
    return success
