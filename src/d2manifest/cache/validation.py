"""Staleness policy for the cached manifest.

Ordinary reads decide staleness from the age of the cache alone: a manifest
fetched less than ``max_age`` ago is served even if the remote version has
since moved on. Comparing against the remote version would need a network
round trip per read, so it is only done on explicit refreshes
(see :func:`is_version_current` and ``ManifestCache.sync``).
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from d2manifest.cache.metadata import CacheMetadata, utc_now

MaxAge = Union[int, float, timedelta, None]


def _max_age_seconds(max_age: MaxAge) -> Optional[float]:
    if max_age is None:
        return None
    if isinstance(max_age, timedelta):
        return max_age.total_seconds()
    return float(max_age)


def is_cache_valid(
    metadata: Optional[CacheMetadata],
    max_age: MaxAge,
    now: Optional[datetime] = None,
) -> bool:
    """Check if the cached manifest may still be served.

    Args:
        metadata: Metadata of the cached manifest, or None if nothing is cached
        max_age: Time-to-live in seconds or as a timedelta. None never expires.
        now: Reference time (defaults to the current UTC time)

    Returns:
        True if cache is still valid, False if missing or expired
    """
    if metadata is None:
        return False

    ttl_seconds = _max_age_seconds(max_age)
    if ttl_seconds is None:
        # None means never expire
        return True

    return metadata.age_seconds(now) < ttl_seconds


def get_ttl_remaining(
    metadata: Optional[CacheMetadata],
    max_age: MaxAge,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Get remaining seconds until the cached manifest expires.

    Args:
        metadata: Metadata of the cached manifest
        max_age: Time-to-live in seconds or as a timedelta
        now: Reference time (defaults to the current UTC time)

    Returns:
        Seconds remaining (0 if expired or nothing cached), or None if never expires
    """
    ttl_seconds = _max_age_seconds(max_age)
    if ttl_seconds is None:
        return None
    if metadata is None:
        return 0

    remaining = ttl_seconds - metadata.age_seconds(now or utc_now())
    return max(0, int(remaining))


def is_version_current(
    metadata: Optional[CacheMetadata], remote_version: str
) -> bool:
    """Check if the cached manifest matches the given remote version."""
    if metadata is None:
        return False
    return metadata.version == remote_version
