"""Download the full manifest document."""

import logging
from typing import Any, Dict, Optional

import orjson
import requests

from d2manifest.cache.config import CacheConfig
from d2manifest.errors import DecodeError, DownloadError
from d2manifest.remote.session import build_session

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ManifestFetcher:
    """Downloads a manifest document from a content location.

    The manifest runs to tens of megabytes, so the download uses
    ``config.download_timeout`` rather than the ordinary request timeout.
    """

    def __init__(
        self, config: CacheConfig, session: Optional[requests.Session] = None
    ):
        self.config = config
        self.session = session or build_session(config)

    def resolve_url(self, location: str) -> str:
        """Turn a content path into an absolute URL.

        Examples:
            >>> fetcher.resolve_url('/common/destiny2_content/json/en/a.json')
            'https://www.bungie.net/common/destiny2_content/json/en/a.json'
        """
        if location.startswith(("http://", "https://")):
            return location
        return self.config.content_base_url.rstrip("/") + "/" + location.lstrip("/")

    def _download(self, url: str) -> bytes:
        buffer = bytearray()
        with self.session.get(
            url, stream=True, timeout=self.config.download_timeout
        ) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                buffer.extend(chunk)
                if len(buffer) > self.config.max_download_size:
                    raise DownloadError(
                        f"Manifest exceeds max_download_size "
                        f"({self.config.max_download_size} bytes)"
                    )
        return bytes(buffer)

    def fetch(self, location: str) -> Dict[str, Any]:
        """Download and decode the manifest at a content location.

        Args:
            location: Content path from ManifestVersionInfo, or an absolute URL

        Returns:
            Manifest document mapping table names to definition tables

        Raises:
            DownloadError: On network, timeout or HTTP status failures
            DecodeError: If the payload is not a JSON object of tables
        """
        url = self.resolve_url(location)
        logger.info(f"Downloading manifest from {url}")

        try:
            content = self._download(url)
        except requests.RequestException as e:
            logger.error(f"Manifest download failed: {e}")
            raise DownloadError(f"Failed to download manifest from {url}: {e}") from e

        try:
            document = orjson.loads(content)
        except orjson.JSONDecodeError as e:
            raise DecodeError(f"Manifest at {url} is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise DecodeError(f"Manifest at {url} is not a JSON object")
        for table, body in document.items():
            if not isinstance(body, dict):
                raise DecodeError(f"Manifest table '{table}' is not a JSON object")

        logger.info(
            f"Downloaded manifest: {len(document)} tables, "
            f"{len(content) / (1024 * 1024):.2f} MB"
        )
        return document
