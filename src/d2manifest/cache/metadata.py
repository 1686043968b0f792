"""Cache metadata record."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SCHEMA_VERSION = "1.0"


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Handle timezone-naive datetimes
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class CacheMetadata:
    """Describes the manifest currently held in the cache.

    The metadata file (manifest_info.json) tracks:
    - The remote manifest version that was downloaded
    - When it was downloaded
    - Which content path it came from, and for which locale
    - The size of the cached document in bytes

    Attributes:
        version: Remote manifest version identifier
        fetched_at: UTC time the download completed
        source_path: Content path the document was downloaded from
        size_bytes: Size of the cached document file
        locale: Locale of the cached content
    """

    version: str
    fetched_at: datetime
    source_path: str
    size_bytes: int = 0
    locale: str = "en"

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Return seconds elapsed since the manifest was fetched."""
        now = now or utc_now()
        return (now - self.fetched_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        data = asdict(self)
        data["fetched_at"] = self.fetched_at.isoformat()
        data["schema_version"] = SCHEMA_VERSION
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheMetadata":
        """Build metadata from a dict produced by :meth:`to_dict`.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has the wrong format
        """
        return cls(
            version=str(data["version"]),
            fetched_at=_parse_timestamp(data["fetched_at"]),
            source_path=str(data["source_path"]),
            size_bytes=int(data.get("size_bytes", 0)),
            locale=str(data.get("locale", "en")),
        )
