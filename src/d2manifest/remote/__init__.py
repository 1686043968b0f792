"""Clients for the Bungie.net manifest endpoints."""

from d2manifest.remote.fetcher import ManifestFetcher
from d2manifest.remote.probe import ManifestVersionInfo, VersionProbe
from d2manifest.remote.session import build_session

__all__ = [
    "ManifestFetcher",
    "ManifestVersionInfo",
    "VersionProbe",
    "build_session",
]
