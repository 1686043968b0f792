"""d2manifest: Local cache and lookups for the Destiny 2 manifest."""

__version__ = "0.1.0"

from d2manifest.cache import CacheConfig, ManifestCache
from d2manifest.errors import (
    ConfigurationError,
    DefinitionNotFound,
    ManifestError,
    TableNotFound,
)

__all__ = [
    "ManifestCache",
    "CacheConfig",
    "ManifestError",
    "ConfigurationError",
    "TableNotFound",
    "DefinitionNotFound",
    "__version__",
]
