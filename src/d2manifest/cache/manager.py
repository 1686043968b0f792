"""Cache manager coordinating version checks, downloads and cached reads."""

import copy
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import requests
from filelock import FileLock, Timeout

from d2manifest.cache.config import CacheConfig
from d2manifest.cache.metadata import CacheMetadata, utc_now
from d2manifest.cache.store import CacheStore, ManifestDocument
from d2manifest.cache.validation import (
    get_ttl_remaining,
    is_cache_valid,
    is_version_current,
)
from d2manifest.errors import (
    CacheIOError,
    CacheLockError,
    DefinitionNotFound,
    ManifestError,
    TableNotFound,
)
from d2manifest.remote.fetcher import ManifestFetcher
from d2manifest.remote.probe import ManifestVersionInfo, VersionProbe
from d2manifest.remote.session import build_session
from d2manifest.utils import (
    MAX_BATCH_SIZE,
    DefinitionBatch,
    hash_candidates,
    thaw,
    validate_table_name,
)

logger = logging.getLogger(__name__)

# Refill modes
_REFILL_STALE = "stale"  # cache missed or expired; skip if someone else refilled
_REFILL_FORCE = "force"  # always download
_REFILL_SYNC = "sync"  # download only if the remote version moved on

_Result = Tuple[CacheMetadata, ManifestDocument]


@dataclass(frozen=True)
class ManifestInfo:
    """Remote manifest version compared against the cache."""

    remote_version: str
    cached_version: Optional[str]
    cache_valid: bool
    fetched_at: Optional[datetime] = None
    ttl_remaining: Optional[int] = None
    remote: Optional[ManifestVersionInfo] = None

    @property
    def version_current(self) -> bool:
        """True if the cache holds the version currently published upstream."""
        return self.cached_version == self.remote_version

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remote_version": self.remote_version,
            "cached_version": self.cached_version,
            "cache_valid": self.cache_valid,
            "version_current": self.version_current,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "ttl_remaining": self.ttl_remaining,
        }


def _waiter_error(error: BaseException) -> BaseException:
    """Copy a shared refill error so each waiter raises with its own traceback."""
    try:
        return copy.copy(error)
    except TypeError:
        return ManifestError(f"Manifest refill failed: {error}")


class _Flight:
    """An in-progress refill that concurrent callers can wait on."""

    def __init__(self):
        self.done = threading.Event()
        self.result: Optional[_Result] = None
        self.error: Optional[BaseException] = None


class ManifestCache:
    """Serves the Destiny 2 manifest from a local cache.

    Reads are answered from disk while the cached copy is younger than
    ``config.max_age``. A missing or expired cache triggers a refill: probe
    the current version, download the document, write it through the store,
    then answer from the new copy. Refill failures propagate to the caller and
    never replace or hide the previous cache.

    Refills are single-flight: concurrent callers that find the cache stale
    while a refill is running wait for it and share its result or its error.
    Processes sharing a cache directory are serialized with a file lock.

    Examples:
        >>> cache = ManifestCache(CacheConfig.from_env())
        >>> items = cache.get_table('DestinyInventoryItemDefinition')
        >>> cache.get_definition('DestinyInventoryItemDefinition', '1363886209')
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        *,
        probe: Optional[VersionProbe] = None,
        fetcher: Optional[ManifestFetcher] = None,
        store: Optional[CacheStore] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the manifest cache.

        Args:
            config: Cache configuration (read from the environment if None)
            probe: Version probe to use instead of the default HTTP one
            fetcher: Manifest fetcher to use instead of the default HTTP one
            store: Cache store to use instead of one under ``config.cache_dir``
            session: Shared requests session for the default probe and fetcher
            clock: Returns the current UTC time; used for staleness decisions

        Raises:
            ConfigurationError: If the configuration is incomplete
        """
        self.config = config or CacheConfig.from_env()
        self.config.validate()

        if probe is None or fetcher is None:
            session = session or build_session(self.config)
        self.probe = probe or VersionProbe(self.config, session)
        self.fetcher = fetcher or ManifestFetcher(self.config, session)
        self.store = store or CacheStore(self.config.cache_dir)

        self.lock_dir: Path = self.store.cache_dir / ".locks"
        self._clock = clock or utc_now

        self._flight_lock = threading.Lock()
        self._flight: Optional[_Flight] = None

        self._stats_lock = threading.Lock()
        self._stats = {
            "cache_hits": 0,
            "cache_misses": 0,
            "refills": 0,
            "refill_failures": 0,
        }

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def _is_fresh(self, metadata: Optional[CacheMetadata]) -> bool:
        if metadata is None or metadata.locale != self.config.locale:
            return False
        return is_cache_valid(metadata, self.config.max_age, now=self._clock())

    def is_valid(self) -> bool:
        """Check if the cached manifest can be served without a refill."""
        return self._is_fresh(self.store.read_metadata())

    # ------------------------------------------------------------------
    # Refill
    # ------------------------------------------------------------------

    def _refill(self, mode: str) -> _Result:
        """Run a refill, or wait for the one already in flight."""
        with self._flight_lock:
            flight = self._flight
            leader = flight is None
            if leader:
                flight = self._flight = _Flight()

        if not leader:
            logger.debug("Waiting for in-flight manifest refill")
            flight.done.wait()
            if flight.error is not None:
                raise _waiter_error(flight.error) from flight.error
            return flight.result

        try:
            flight.result = self._run_refill(mode)
            return flight.result
        except Exception as e:
            flight.error = e
            self._count("refill_failures")
            raise
        finally:
            if flight.result is None and flight.error is None:
                flight.error = ManifestError("Manifest refill was interrupted")
            with self._flight_lock:
                self._flight = None
            flight.done.set()

    def _run_refill(self, mode: str) -> _Result:
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(
                f"Cannot create cache lock directory at {self.lock_dir}: {e}"
            ) from e

        lock_path = self.lock_dir / "manifest.lock"
        try:
            with FileLock(lock_path, timeout=self.config.lock_timeout):
                return self._refill_locked(mode)
        except Timeout as e:
            raise CacheLockError(
                f"Timeout acquiring manifest lock after {self.config.lock_timeout} seconds"
            ) from e

    def _cached_result(self) -> Optional[_Result]:
        metadata = self.store.read_metadata()
        if metadata is None:
            return None
        document = self.store.read_document()
        if document is None:
            return None
        return metadata, document

    def _refill_locked(self, mode: str) -> _Result:
        """Refill with the file lock held."""
        if mode == _REFILL_STALE:
            # Another process may have refilled while we waited for the lock
            cached = self._cached_result()
            if cached is not None and self._is_fresh(cached[0]):
                logger.info(f"Manifest {cached[0].version} was refilled by another process")
                return cached

        info = self.probe.current_version()

        if mode == _REFILL_SYNC:
            cached = self._cached_result()
            if (
                cached is not None
                and cached[0].locale == self.config.locale
                and is_version_current(cached[0], info.version)
            ):
                logger.info(f"Cached manifest {info.version} is current")
                return cached

        return self._fetch_and_store(info)

    def _fetch_and_store(self, info: ManifestVersionInfo) -> _Result:
        location = info.content_path(self.config.locale)
        logger.info(f"Refilling manifest cache with version {info.version}")

        document = self.fetcher.fetch(location)
        metadata = CacheMetadata(
            version=info.version,
            fetched_at=self._clock(),
            source_path=location,
            locale=self.config.locale,
        )
        metadata = self.store.write(metadata, document)
        cached = self.store.read_document()
        if cached is None:
            raise CacheIOError(
                f"Manifest cache at {self.store.cache_dir} vanished after write"
            )

        self._count("refills")
        logger.info(
            f"Manifest {metadata.version} cached ({metadata.size_bytes / (1024 * 1024):.2f} MB)"
        )
        return metadata, cached

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_document(self) -> ManifestDocument:
        """Get the full manifest, refilling the cache if it is missing or expired.

        Returns:
            Read-only mapping of table name to definition table

        Raises:
            UpstreamError, FetchError, CacheError: If a needed refill fails
        """
        metadata = self.store.read_metadata()
        if self._is_fresh(metadata):
            document = self.store.read_document()
            if document is not None:
                self._count("cache_hits")
                logger.debug(f"Manifest cache hit ({metadata.version})")
                return document

        self._count("cache_misses")
        _, document = self._refill(_REFILL_STALE)
        return document

    def get_table(self, name: str) -> Mapping[str, Any]:
        """Get one manifest table.

        Args:
            name: Table name (e.g. 'DestinyInventoryItemDefinition')

        Returns:
            Read-only mapping of definition hash to definition

        Raises:
            TableNotFound: If the manifest has no such table, or the name
                cannot name one (empty or padded with whitespace)
        """
        try:
            validate_table_name(name)
        except ValueError as e:
            raise TableNotFound(name) from e
        body = self.get_document().get(name)
        if not isinstance(body, Mapping):
            raise TableNotFound(name)
        return body

    def get_definition(self, table: str, definition_hash: Union[str, int]) -> Any:
        """Get a single definition by hash.

        Signed 32-bit hashes are also looked up in their unsigned form.

        Args:
            table: Table name
            definition_hash: Definition hash as a string or integer

        Returns:
            A copy of the definition

        Raises:
            TableNotFound: If the manifest has no such table
            DefinitionNotFound: If the table has no definition for the hash
        """
        body = self.get_table(table)
        for key in hash_candidates(definition_hash):
            if key in body:
                return thaw(body[key])
        raise DefinitionNotFound(table, str(definition_hash))

    def get_definitions(
        self, table: str, definition_hashes: Iterable[Union[str, int]]
    ) -> DefinitionBatch:
        """Look up several definitions from one table.

        Args:
            table: Table name
            definition_hashes: Up to 20 hashes. A single hash is treated as a
                batch of one.

        Returns:
            Dict with 'results' (hash -> definition), 'missing' (hashes not
            found), 'total_requested' and 'total_found'

        Raises:
            ValueError: If no hashes or more than 20 hashes are given
            TableNotFound: If the manifest has no such table
        """
        if isinstance(definition_hashes, (str, int)):
            definition_hashes = [definition_hashes]
        hashes = [str(h) for h in definition_hashes]
        if not hashes:
            raise ValueError("definition_hashes must not be empty")
        if len(hashes) > MAX_BATCH_SIZE:
            raise ValueError(
                f"At most {MAX_BATCH_SIZE} definitions can be requested in a single batch"
            )

        self.get_table(table)

        results: Dict[str, Any] = {}
        missing: List[str] = []
        for definition_hash in hashes:
            try:
                results[definition_hash] = self.get_definition(table, definition_hash)
            except DefinitionNotFound:
                missing.append(definition_hash)

        return DefinitionBatch(
            results=results,
            missing=missing,
            total_requested=len(hashes),
            total_found=len(results),
        )

    def list_tables(self) -> List[str]:
        """Get sorted table names of the manifest."""
        return sorted(self.get_document().keys())

    # ------------------------------------------------------------------
    # Version info and administration
    # ------------------------------------------------------------------

    def get_info(self) -> ManifestInfo:
        """Compare the remote manifest version against the cache.

        Always contacts the version endpoint.

        Raises:
            UpstreamError: If the version endpoint fails
        """
        remote = self.probe.current_version()
        metadata = self.store.read_metadata()
        return ManifestInfo(
            remote_version=remote.version,
            cached_version=metadata.version if metadata else None,
            cache_valid=self._is_fresh(metadata),
            fetched_at=metadata.fetched_at if metadata else None,
            ttl_remaining=get_ttl_remaining(
                metadata, self.config.max_age, now=self._clock()
            )
            if metadata
            else None,
            remote=remote,
        )

    def force_refresh(self) -> CacheMetadata:
        """Download the manifest regardless of the cache state.

        Joins a refill that is already in flight instead of starting another.

        Returns:
            Metadata of the newly cached manifest
        """
        logger.info("Force refreshing manifest cache")
        metadata, _ = self._refill(_REFILL_FORCE)
        return metadata

    def sync(self) -> CacheMetadata:
        """Download the manifest only if the remote version differs from the cache.

        Returns:
            Metadata of the cached manifest after the check
        """
        metadata, _ = self._refill(_REFILL_SYNC)
        return metadata

    def clear(self) -> None:
        """Remove the cached manifest. Safe to call on an empty cache."""
        self.store.invalidate()
        logger.info("Manifest cache cleared")

    def get_status(self) -> Optional[Dict[str, Any]]:
        """Get local cache status without contacting the API.

        Returns:
            Status dict, or None if nothing is cached
        """
        metadata = self.store.read_metadata()
        if metadata is None:
            return None

        return {
            "cached": True,
            "version": metadata.version,
            "locale": metadata.locale,
            "source_path": metadata.source_path,
            "size_bytes": metadata.size_bytes,
            "fetched_at": metadata.fetched_at.isoformat(),
            "valid": self._is_fresh(metadata),
            "ttl_remaining": get_ttl_remaining(
                metadata, self.config.max_age, now=self._clock()
            ),
            "cache_path": str(self.store.document_path),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics for this instance.

        Returns:
            Statistics dict
        """
        with self._stats_lock:
            stats = dict(self._stats)
        stats["cache_dir"] = str(self.store.cache_dir)
        stats["max_age"] = self.config.max_age

        # Calculate hit rate
        total_requests = stats["cache_hits"] + stats["cache_misses"]
        stats["cache_hit_rate"] = (
            stats["cache_hits"] / total_requests if total_requests > 0 else 0.0
        )

        return stats
