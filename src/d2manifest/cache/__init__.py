"""Local caching of the Destiny 2 manifest.

This module keeps one copy of the remote manifest on disk, refreshes it on a
time-to-live basis, and collapses concurrent refills into one download.

Key components:
- ManifestCache: Main cache interface
- CacheConfig: Configuration management
- CacheStore: On-disk document and metadata storage
- CacheMetadata: Metadata record of the cached manifest
"""

from d2manifest.cache.config import CacheConfig
from d2manifest.cache.metadata import CacheMetadata
from d2manifest.cache.store import CacheStore
from d2manifest.cache.manager import ManifestCache, ManifestInfo

__all__ = [
    "ManifestCache",
    "ManifestInfo",
    "CacheConfig",
    "CacheMetadata",
    "CacheStore",
]
