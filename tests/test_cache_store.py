"""Unit tests for the on-disk cache store."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import orjson
import pytest

from d2manifest.cache.metadata import CacheMetadata
from d2manifest.cache.store import DOCUMENT_FILE, METADATA_FILE, CacheStore
from d2manifest.errors import CacheIOError, TableNotFound

DOCUMENT = {
    "DestinyClassDefinition": {"671679327": {"classType": 1}},
    "DestinyInventoryItemDefinition": {"123": {"name": "Gjallarhorn"}},
}


@pytest.fixture
def temp_cache_dir():
    """Create temporary cache directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_cache_dir):
    return CacheStore(temp_cache_dir)


def make_metadata(version="v1"):
    return CacheMetadata(
        version=version,
        fetched_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
        source_path=f"/common/{version}.json",
    )


class TestEmptyStore:
    """Test reads against a store with nothing cached."""

    def test_read_metadata_returns_none(self, store):
        assert store.read_metadata() is None

    def test_read_document_returns_none(self, store):
        assert store.read_document() is None
        assert store.read_document("DestinyClassDefinition") is None

    def test_list_tables_returns_none(self, store):
        assert store.list_tables() is None

    def test_invalidate_is_idempotent(self, store):
        """Test that invalidating an empty cache is not an error."""
        store.invalidate()
        store.invalidate()
        assert store.read_metadata() is None


class TestWriteAndRead:
    """Test writing a manifest and reading it back."""

    def test_write_then_read(self, store):
        written = store.write(make_metadata(), DOCUMENT)

        assert store.read_metadata() == written
        assert dict(store.read_document()) == DOCUMENT
        assert store.list_tables() == sorted(DOCUMENT)

    def test_write_sets_size(self, store):
        written = store.write(make_metadata(), DOCUMENT)
        assert written.size_bytes == store.document_path.stat().st_size
        assert written.size_bytes > 0

    def test_files_on_disk(self, store, temp_cache_dir):
        store.write(make_metadata(), DOCUMENT)
        assert (temp_cache_dir / DOCUMENT_FILE).exists()
        assert (temp_cache_dir / METADATA_FILE).exists()
        assert not list(temp_cache_dir.glob("*.tmp"))

    def test_read_table(self, store):
        store.write(make_metadata(), DOCUMENT)
        table = store.read_document("DestinyInventoryItemDefinition")
        assert dict(table) == DOCUMENT["DestinyInventoryItemDefinition"]

    def test_missing_table_raises(self, store):
        """Test that a missing table is distinct from a missing cache."""
        store.write(make_metadata(), DOCUMENT)
        with pytest.raises(TableNotFound) as exc_info:
            store.read_document("DestinyNothingDefinition")
        assert exc_info.value.table == "DestinyNothingDefinition"

    def test_document_is_read_only(self, store):
        store.write(make_metadata(), DOCUMENT)
        document = store.read_document()
        with pytest.raises(TypeError):
            document["Injected"] = {}

    def test_nested_values_are_read_only(self, store):
        store.write(make_metadata(), DOCUMENT)
        table = store.read_document("DestinyInventoryItemDefinition")
        with pytest.raises(TypeError):
            table["123"]["name"] = "changed"
        assert store.read_document("DestinyInventoryItemDefinition")["123"]["name"] == "Gjallarhorn"

    def test_second_store_reads_from_disk(self, store, temp_cache_dir):
        """Test that a fresh store instance sees the persisted manifest."""
        store.write(make_metadata(), DOCUMENT)

        other = CacheStore(temp_cache_dir)
        assert other.read_metadata().version == "v1"
        assert dict(other.read_document()) == DOCUMENT

    def test_write_replaces_previous(self, store):
        store.write(make_metadata("v1"), DOCUMENT)
        store.write(make_metadata("v2"), {"Other": {"1": 1}})

        assert store.read_metadata().version == "v2"
        assert dict(store.read_document()) == {"Other": {"1": 1}}

    def test_invalidate_removes_everything(self, store, temp_cache_dir):
        store.write(make_metadata(), DOCUMENT)

        store.invalidate()

        assert store.read_metadata() is None
        assert store.read_document() is None
        assert not (temp_cache_dir / DOCUMENT_FILE).exists()
        assert not (temp_cache_dir / METADATA_FILE).exists()
        store.invalidate()


class TestCorruptCache:
    """Test that inconsistent cache state reads as a cache miss."""

    def test_metadata_without_document(self, store):
        store.write(make_metadata(), DOCUMENT)
        store.document_path.unlink()

        assert store.read_metadata() is None
        assert store.read_document() is None

    def test_document_without_metadata(self, store):
        store.write(make_metadata(), DOCUMENT)
        store.metadata_path.unlink()

        assert store.read_metadata() is None
        assert store.read_document() is None

    def test_unparseable_metadata(self, store):
        store.write(make_metadata(), DOCUMENT)
        store.metadata_path.write_text("{not json")

        assert store.read_metadata() is None

    def test_metadata_missing_fields(self, store):
        store.write(make_metadata(), DOCUMENT)
        store.metadata_path.write_bytes(orjson.dumps({"version": "v1"}))

        assert store.read_metadata() is None

    def test_unparseable_document(self, temp_cache_dir):
        store = CacheStore(temp_cache_dir)
        store.write(make_metadata(), DOCUMENT)
        store.document_path.write_text("truncated {")

        # A new instance has no parsed copy in memory
        fresh = CacheStore(temp_cache_dir)
        assert fresh.read_document() is None


class TestWriteFailures:
    """Test that failed writes never leave metadata pointing at a bad document."""

    def test_document_write_failure_keeps_old_metadata(self, store):
        """Test that a failed document write leaves the previous metadata."""
        previous = store.write(make_metadata("v1"), DOCUMENT)
        real_write = store._atomic_write

        def failing_write(path, content):
            if path == store.document_path:
                raise OSError(28, "No space left on device")
            return real_write(path, content)

        with patch.object(store, "_atomic_write", side_effect=failing_write):
            with pytest.raises(CacheIOError):
                store.write(make_metadata("v2"), {"Other": {}})

        assert store.read_metadata() == previous
        assert dict(store.read_document()) == DOCUMENT

    def test_document_write_failure_on_empty_cache(self, store):
        with patch.object(store, "_atomic_write", side_effect=OSError("disk error")):
            with pytest.raises(CacheIOError):
                store.write(make_metadata("v1"), DOCUMENT)

        assert store.read_metadata() is None

    def test_metadata_write_failure_reads_as_miss(self, store):
        """Test that a failed metadata write leaves no version claim behind."""
        store.write(make_metadata("v1"), DOCUMENT)
        real_write = store._atomic_write

        def failing_write(path, content):
            if path == store.metadata_path:
                raise OSError("disk error")
            return real_write(path, content)

        with patch.object(store, "_atomic_write", side_effect=failing_write):
            with pytest.raises(CacheIOError):
                store.write(make_metadata("v2"), {"Other": {}})

        assert store.read_metadata() is None

    def test_failed_temp_file_is_cleaned_up(self, store, temp_cache_dir):
        store.write(make_metadata("v1"), DOCUMENT)

        with patch("d2manifest.cache.store.os.replace", side_effect=OSError("boom")):
            with pytest.raises(CacheIOError):
                store.write(make_metadata("v2"), DOCUMENT)

        assert not list(temp_cache_dir.glob("*.tmp"))
        assert store.read_metadata().version == "v1"
