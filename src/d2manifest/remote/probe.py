"""Query Bungie.net for the current manifest version."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import requests

from d2manifest.cache.config import CacheConfig
from d2manifest.errors import UpstreamProtocolError, UpstreamUnavailable
from d2manifest.remote.session import build_session

logger = logging.getLogger(__name__)

MANIFEST_ENDPOINT = "/Destiny2/Manifest/"

# Bungie wraps every response in an envelope; ErrorCode 1 means success
BUNGIE_SUCCESS = 1


@dataclass(frozen=True)
class ManifestVersionInfo:
    """Current manifest version and content locations as reported upstream.

    Only ``version`` and ``json_world_content_paths`` are interpreted; the
    remaining fields are passed through as received.
    """

    version: str
    json_world_content_paths: Mapping[str, str]
    json_world_component_content_paths: Mapping[str, Any] = field(default_factory=dict)
    mobile_asset_content_path: Optional[str] = None
    mobile_world_content_paths: Mapping[str, str] = field(default_factory=dict)
    mobile_gear_asset_data_bases: Any = None
    mobile_clan_banner_database_path: Optional[str] = None
    mobile_gear_cdn: Mapping[str, str] = field(default_factory=dict)
    icon_image_pyramid_info: Any = None

    def content_path(self, locale: str = "en") -> str:
        """Get the JSON content path for a locale.

        Raises:
            UpstreamProtocolError: If the manifest has no content for the locale
        """
        path = self.json_world_content_paths.get(locale)
        if not path:
            available = ", ".join(sorted(self.json_world_content_paths))
            raise UpstreamProtocolError(
                f"Manifest has no content path for locale '{locale}' (available: {available})"
            )
        return path

    @classmethod
    def from_response(cls, response: Mapping[str, Any]) -> "ManifestVersionInfo":
        """Build from the ``Response`` member of the manifest endpoint.

        Raises:
            UpstreamProtocolError: If required fields are missing or malformed
        """
        if not isinstance(response, Mapping):
            raise UpstreamProtocolError("Manifest response is not an object")

        version = response.get("version")
        if not isinstance(version, str) or not version:
            raise UpstreamProtocolError("Manifest response has no version")

        paths = response.get("jsonWorldContentPaths")
        if not isinstance(paths, Mapping) or not paths.get("en"):
            raise UpstreamProtocolError(
                "Manifest response has no English jsonWorldContentPaths entry"
            )

        return cls(
            version=version,
            json_world_content_paths=dict(paths),
            json_world_component_content_paths=response.get(
                "jsonWorldComponentContentPaths"
            )
            or {},
            mobile_asset_content_path=response.get("mobileAssetContentPath"),
            mobile_world_content_paths=response.get("mobileWorldContentPaths") or {},
            mobile_gear_asset_data_bases=response.get("mobileGearAssetDataBases"),
            mobile_clan_banner_database_path=response.get(
                "mobileClanBannerDatabasePath"
            ),
            mobile_gear_cdn=response.get("mobileGearCDN") or {},
            icon_image_pyramid_info=response.get("iconImagePyramidInfo"),
        )


class VersionProbe:
    """Fetches the manifest version descriptor. Every call hits the network."""

    def __init__(
        self, config: CacheConfig, session: Optional[requests.Session] = None
    ):
        self.config = config
        self.session = session or build_session(config)

    @property
    def url(self) -> str:
        return self.config.api_base_url.rstrip("/") + MANIFEST_ENDPOINT

    def current_version(self) -> ManifestVersionInfo:
        """Get the current manifest version and content paths.

        Returns:
            ManifestVersionInfo

        Raises:
            UpstreamUnavailable: If the request fails or Bungie reports an error
            UpstreamProtocolError: If the response is malformed
        """
        try:
            response = self.session.get(self.url, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            logger.error(f"Manifest version request failed: {e}")
            raise UpstreamUnavailable(f"Cannot reach Bungie API: {e}") from e

        if not response.ok:
            raise UpstreamUnavailable(
                f"Bungie API returned HTTP {response.status_code} for {MANIFEST_ENDPOINT}"
            )

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as e:
            raise UpstreamProtocolError(f"Bungie API returned invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise UpstreamProtocolError("Bungie API response is not an object")

        error_code = payload.get("ErrorCode")
        if error_code != BUNGIE_SUCCESS:
            raise UpstreamUnavailable(
                f"Bungie API error: {payload.get('ErrorStatus', error_code)} - "
                f"{payload.get('Message', 'Unknown error')}"
            )

        info = ManifestVersionInfo.from_response(payload.get("Response"))
        logger.debug(f"Remote manifest version is {info.version}")
        return info
