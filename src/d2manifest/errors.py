"""Exception hierarchy for d2manifest.

Lookup misses (``TableNotFound``, ``DefinitionNotFound``) are client-facing
"not found" results. Everything else raised during a refill aborts the refill
and leaves any previously cached manifest untouched.
"""


class ManifestError(Exception):
    """Base exception for all d2manifest errors."""

    pass


class ConfigurationError(ManifestError):
    """Raised when required configuration (e.g. the API key) is missing or invalid."""

    pass


# Upstream version probe


class UpstreamError(ManifestError):
    """Base exception for failures of the manifest version endpoint."""

    pass


class UpstreamUnavailable(UpstreamError):
    """Raised when the version endpoint cannot be reached or reports failure."""

    pass


class UpstreamProtocolError(UpstreamError):
    """Raised when the version endpoint answers with a malformed response."""

    pass


# Manifest download


class FetchError(ManifestError):
    """Base exception for manifest download failures."""

    pass


class DownloadError(FetchError):
    """Raised on network, timeout or HTTP status failures while downloading."""

    pass


class DecodeError(FetchError):
    """Raised when the downloaded payload is not a valid manifest document."""

    pass


# Local persistence


class CacheError(ManifestError):
    """Base exception for local cache errors."""

    pass


class CacheIOError(CacheError):
    """Raised when the cache cannot be read from or written to disk."""

    pass


class CacheLockError(CacheError):
    """Raised when unable to acquire the cache refill lock."""

    pass


# Lookups


class ManifestLookupError(ManifestError, LookupError):
    """Base exception for lookups against an otherwise valid manifest."""

    pass


class TableNotFound(ManifestLookupError):
    """Raised when the manifest has no table with the requested name."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Manifest table '{table}' not found")


class DefinitionNotFound(ManifestLookupError):
    """Raised when a table has no definition for the requested hash."""

    def __init__(self, table: str, definition_hash: str):
        self.table = table
        self.definition_hash = definition_hash
        super().__init__(
            f"Definition with hash '{definition_hash}' not found in table '{table}'"
        )
