"""Cache configuration management."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from d2manifest.errors import ConfigurationError

DEFAULT_CACHE_DIR = Path.home() / ".d2manifest_cache"


@dataclass
class CacheConfig:
    """Configuration for the manifest cache.

    Attributes:
        api_key: Bungie.net API key sent as ``X-API-Key`` on every request
        cache_dir: Directory holding the cached manifest and its metadata
        max_age: Time-to-live of a cached manifest in seconds (24 hours).
            None means the cache never expires on its own.
        api_base_url: Base URL of the Bungie.net platform API
        content_base_url: Host prefix for relative manifest content paths
        locale: Locale of the manifest content to cache
        request_timeout: Timeout for ordinary API calls in seconds
        download_timeout: Timeout for the full manifest download in seconds
        lock_timeout: How long to wait for another process's refill in seconds
        max_download_size: Largest manifest payload accepted, in bytes
        user_agent: User-Agent header sent upstream
    """

    api_key: Optional[str] = None
    cache_dir: Path = DEFAULT_CACHE_DIR
    max_age: Optional[int] = 86400  # 24 hours
    api_base_url: str = "https://www.bungie.net/Platform"
    content_base_url: str = "https://www.bungie.net"
    locale: str = "en"
    request_timeout: float = 30.0
    download_timeout: float = 120.0
    lock_timeout: float = 300.0
    max_download_size: int = 512 * 1024 * 1024  # 512 MB
    user_agent: str = "d2manifest/0.1.0"

    def __post_init__(self):
        """Ensure cache_dir is an expanded Path object."""
        if self.cache_dir is None:
            self.cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(self.cache_dir).expanduser()

    def validate(self) -> None:
        """Check that the configuration can be used to talk to the API.

        Raises:
            ConfigurationError: If the API key is missing or a setting is invalid
        """
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError(
                "Bungie API key not configured (set BUNGIE_API_KEY)"
            )
        if self.max_age is not None and self.max_age <= 0:
            raise ConfigurationError(f"max_age must be positive, got {self.max_age}")
        if not self.locale:
            raise ConfigurationError("locale cannot be empty")
        for name in ("request_timeout", "download_timeout", "lock_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"{name} must be positive, got {getattr(self, name)}"
                )

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from a JSON file.

        The API key is still taken from ``BUNGIE_API_KEY`` when the file
        does not provide one.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            CacheConfig instance
        """
        if config_path is None:
            config_path = DEFAULT_CACHE_DIR / "config.json"
        config_path = Path(config_path)

        if not config_path.exists():
            return cls.from_env()

        with open(config_path, "r") as f:
            data = json.load(f)

        if "cache_dir" in data:
            data["cache_dir"] = Path(data["cache_dir"])
        if not data.get("api_key"):
            data["api_key"] = os.getenv("BUNGIE_API_KEY")

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to a JSON file.

        The API key is a credential and is never written out.

        Args:
            config_path: Path to config file. If None, uses default location.
        """
        if config_path is None:
            config_path = self.cache_dir / "config.json"
        config_path = Path(config_path)

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache_dir": str(self.cache_dir),
            "max_age": self.max_age,
            "api_base_url": self.api_base_url,
            "content_base_url": self.content_base_url,
            "locale": self.locale,
            "request_timeout": self.request_timeout,
            "download_timeout": self.download_timeout,
            "lock_timeout": self.lock_timeout,
            "max_download_size": self.max_download_size,
            "user_agent": self.user_agent,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            BUNGIE_API_KEY: Bungie.net API key
            D2MANIFEST_CACHE_DIR: Cache directory path
            D2MANIFEST_MAX_AGE: Cache time-to-live in seconds
            D2MANIFEST_LOCALE: Manifest locale (default: en)

        Returns:
            CacheConfig instance
        """
        config = cls()

        config.api_key = os.getenv("BUNGIE_API_KEY")

        if os.getenv("D2MANIFEST_CACHE_DIR"):
            config.cache_dir = Path(os.getenv("D2MANIFEST_CACHE_DIR")).expanduser()

        if os.getenv("D2MANIFEST_MAX_AGE"):
            try:
                config.max_age = int(os.getenv("D2MANIFEST_MAX_AGE"))
            except ValueError as e:
                raise ConfigurationError(
                    f"D2MANIFEST_MAX_AGE must be an integer number of seconds: {e}"
                ) from e

        if os.getenv("D2MANIFEST_LOCALE"):
            config.locale = os.getenv("D2MANIFEST_LOCALE")

        return config
