"""HTTP session for talking to Bungie.net."""

import requests

from d2manifest.cache.config import CacheConfig


def build_session(config: CacheConfig) -> requests.Session:
    """Create a requests session carrying the API key and client headers.

    Args:
        config: Cache configuration holding the API key

    Returns:
        Configured requests.Session
    """
    session = requests.Session()
    session.headers.update(
        {
            "X-API-Key": config.api_key or "",
            "User-Agent": config.user_agent,
            "Accept": "application/json",
        }
    )
    return session
