"""On-disk storage for the cached manifest document and its metadata."""

import logging
import os
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import orjson

from d2manifest.cache.metadata import CacheMetadata
from d2manifest.errors import CacheIOError, TableNotFound
from d2manifest.utils import FrozenMapping

logger = logging.getLogger(__name__)

DOCUMENT_FILE = "manifest_data.json"
METADATA_FILE = "manifest_info.json"

ManifestDocument = Mapping[str, Mapping[str, Any]]


class CacheStore:
    """Persists one manifest document and its metadata in a cache directory.

    The document is always written before the metadata, and both go through
    a temp file and ``os.replace``, so a reader never sees metadata that
    points at a document which has not been fully written. A document without
    metadata (or metadata without a document) is reported as "no cache".

    Parsed documents are kept in memory and reused for as long as the
    metadata on disk still describes the same fetch.
    """

    def __init__(self, cache_dir: Union[str, Path]):
        """Initialize cache store.

        Args:
            cache_dir: Directory where the manifest and metadata are stored
        """
        self.cache_dir = Path(cache_dir)
        self.document_path = self.cache_dir / DOCUMENT_FILE
        self.metadata_path = self.cache_dir / METADATA_FILE
        self._memo_lock = threading.Lock()
        self._memo_key: Optional[Tuple[str, str]] = None
        self._memo_document: Optional[Dict[str, Any]] = None

    @staticmethod
    def _key(metadata: CacheMetadata) -> Tuple[str, str]:
        return (metadata.version, metadata.fetched_at.isoformat())

    def read_metadata(self) -> Optional[CacheMetadata]:
        """Read metadata of the cached manifest.

        Returns:
            CacheMetadata, or None if nothing (consistent) is cached
        """
        try:
            raw = self.metadata_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read cache metadata {self.metadata_path}: {e}")
            return None

        try:
            metadata = CacheMetadata.from_dict(orjson.loads(raw))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupt cache metadata, treating as cache miss: {e}")
            return None

        if not self.document_path.exists():
            logger.warning(
                "Cache metadata found without manifest document, treating as cache miss"
            )
            return None

        return metadata

    def _load_document(self, metadata: CacheMetadata) -> Optional[Dict[str, Any]]:
        key = self._key(metadata)
        with self._memo_lock:
            if self._memo_key == key and self._memo_document is not None:
                return self._memo_document

        try:
            raw = self.document_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read cached manifest {self.document_path}: {e}")
            return None

        try:
            document = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(f"Corrupt cached manifest, treating as cache miss: {e}")
            return None
        if not isinstance(document, dict):
            logger.warning("Cached manifest is not a JSON object, treating as cache miss")
            return None

        with self._memo_lock:
            self._memo_key = key
            self._memo_document = document
        return document

    def read_document(self, table: Optional[str] = None) -> Optional[Mapping[str, Any]]:
        """Read the cached manifest, or one table of it.

        Args:
            table: Table name to narrow to. If None, returns the whole document.

        Returns:
            Read-only view of the document or table, or None if nothing is cached

        Raises:
            TableNotFound: If a table is requested and the cached document lacks it
        """
        metadata = self.read_metadata()
        if metadata is None:
            return None

        document = self._load_document(metadata)
        if document is None:
            return None

        if table is None:
            return FrozenMapping(document)

        body = document.get(table)
        if not isinstance(body, dict):
            raise TableNotFound(table)
        return FrozenMapping(body)

    def list_tables(self) -> Optional[List[str]]:
        """Get sorted table names of the cached manifest, or None if nothing is cached."""
        document = self.read_document()
        if document is None:
            return None
        return sorted(document.keys())

    def _atomic_write(self, path: Path, content: bytes) -> None:
        """Write content to path through a temp file in the same directory."""
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(temp_path, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.warning(
                        f"Failed to clean up temp file {temp_path}: {cleanup_error}"
                    )
            raise

    def write(self, metadata: CacheMetadata, document: ManifestDocument) -> CacheMetadata:
        """Persist a freshly fetched manifest.

        Args:
            metadata: Metadata describing the fetch
            document: Full manifest document

        Returns:
            The metadata as written, with ``size_bytes`` set to the document size

        Raises:
            CacheIOError: If the document or the metadata cannot be written.
                A failed document write leaves the previous metadata untouched.
        """
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f"Cannot create cache directory {self.cache_dir}: {e}") from e

        content = orjson.dumps(document)

        try:
            self._atomic_write(self.document_path, content)
        except OSError as e:
            logger.error(f"Error writing manifest document: {e}")
            raise CacheIOError(f"Cannot write manifest document: {e}") from e

        metadata = replace(metadata, size_bytes=len(content))

        try:
            self._atomic_write(self.metadata_path, orjson.dumps(metadata.to_dict()))
        except OSError as e:
            logger.error(f"Error writing cache metadata: {e}")
            # The old metadata no longer describes the document on disk
            try:
                self.metadata_path.unlink(missing_ok=True)
            except OSError as unlink_error:
                logger.warning(f"Failed to remove stale cache metadata: {unlink_error}")
            raise CacheIOError(f"Cannot write cache metadata: {e}") from e

        with self._memo_lock:
            self._memo_key = self._key(metadata)
            # Own copy, decoded from the bytes on disk
            self._memo_document = orjson.loads(content)

        return metadata

    def invalidate(self) -> None:
        """Remove the cached manifest and its metadata.

        Safe to call when nothing is cached.

        Raises:
            CacheIOError: If an existing cache file cannot be removed
        """
        with self._memo_lock:
            self._memo_key = None
            self._memo_document = None

        # Metadata first so a concurrent reader sees a cache miss, not a dangling record
        for path in (self.metadata_path, self.document_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise CacheIOError(f"Cannot remove cache file {path}: {e}") from e
