"""Tests for the Bungie.net version probe and manifest fetcher."""

from unittest.mock import MagicMock

import orjson
import pytest
import requests

from d2manifest.cache.config import CacheConfig
from d2manifest.errors import (
    DecodeError,
    DownloadError,
    UpstreamProtocolError,
    UpstreamUnavailable,
)
from d2manifest.remote import ManifestFetcher, VersionProbe, build_session
from d2manifest.remote.probe import ManifestVersionInfo

MANIFEST_RESPONSE = {
    "version": "228301.24.05.01.1730-1-bnet.55530",
    "mobileAssetContentPath": "/common/destiny2_content/sqlite/asset/asset.content",
    "jsonWorldContentPaths": {
        "en": "/common/destiny2_content/json/en/aggregate-abc.json",
        "fr": "/common/destiny2_content/json/fr/aggregate-abc.json",
    },
    "jsonWorldComponentContentPaths": {"en": {"DestinyClassDefinition": "/x.json"}},
    "mobileGearCDN": {"Geometry": "/common/destiny2_content/geometry"},
}


@pytest.fixture
def config():
    return CacheConfig(api_key="test-key", max_download_size=1024)


def fake_json_response(payload, status_code=200):
    """Create a mock response for a JSON API call."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.json = MagicMock(return_value=payload)
    return resp


def fake_stream_response(chunks, status_code=200):
    """Create a mock streaming response usable as a context manager."""
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    resp.iter_content = MagicMock(return_value=iter(chunks))
    return resp


class TestSession:
    def test_session_carries_api_key(self, config):
        session = build_session(config)
        assert session.headers["X-API-Key"] == "test-key"
        assert session.headers["User-Agent"] == config.user_agent


class TestVersionProbe:
    """Test VersionProbe.current_version()."""

    def test_success(self, config):
        session = MagicMock()
        session.get.return_value = fake_json_response(
            {"ErrorCode": 1, "ErrorStatus": "Success", "Response": MANIFEST_RESPONSE}
        )

        info = VersionProbe(config, session).current_version()

        assert info.version == MANIFEST_RESPONSE["version"]
        assert info.content_path("en") == MANIFEST_RESPONSE["jsonWorldContentPaths"]["en"]
        assert info.mobile_gear_cdn == MANIFEST_RESPONSE["mobileGearCDN"]
        session.get.assert_called_once_with(
            "https://www.bungie.net/Platform/Destiny2/Manifest/",
            timeout=config.request_timeout,
        )

    def test_every_call_hits_network(self, config):
        session = MagicMock()
        session.get.return_value = fake_json_response(
            {"ErrorCode": 1, "Response": MANIFEST_RESPONSE}
        )
        probe = VersionProbe(config, session)

        probe.current_version()
        probe.current_version()

        assert session.get.call_count == 2

    def test_network_error(self, config):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(UpstreamUnavailable):
            VersionProbe(config, session).current_version()

    def test_timeout(self, config):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("timed out")

        with pytest.raises(UpstreamUnavailable):
            VersionProbe(config, session).current_version()

    def test_http_error_status(self, config):
        session = MagicMock()
        session.get.return_value = fake_json_response({}, status_code=503)

        with pytest.raises(UpstreamUnavailable, match="503"):
            VersionProbe(config, session).current_version()

    def test_bungie_error_code(self, config):
        session = MagicMock()
        session.get.return_value = fake_json_response(
            {"ErrorCode": 5, "ErrorStatus": "SystemDisabled", "Message": "Maintenance"}
        )

        with pytest.raises(UpstreamUnavailable, match="SystemDisabled"):
            VersionProbe(config, session).current_version()

    def test_invalid_json(self, config):
        session = MagicMock()
        resp = fake_json_response(None)
        resp.json.side_effect = ValueError("Expecting value")
        session.get.return_value = resp

        with pytest.raises(UpstreamProtocolError):
            VersionProbe(config, session).current_version()

    @pytest.mark.parametrize(
        "response",
        [
            None,
            {},
            {"jsonWorldContentPaths": {"en": "/p1"}},
            {"version": "v1"},
            {"version": "v1", "jsonWorldContentPaths": {"fr": "/p1"}},
            {"version": "v1", "jsonWorldContentPaths": {"en": ""}},
        ],
    )
    def test_malformed_response(self, config, response):
        session = MagicMock()
        session.get.return_value = fake_json_response(
            {"ErrorCode": 1, "Response": response}
        )

        with pytest.raises(UpstreamProtocolError):
            VersionProbe(config, session).current_version()


class TestManifestVersionInfo:
    def test_missing_locale(self):
        info = ManifestVersionInfo.from_response(MANIFEST_RESPONSE)
        with pytest.raises(UpstreamProtocolError, match="ko"):
            info.content_path("ko")

    def test_optional_fields_default(self):
        info = ManifestVersionInfo.from_response(
            {"version": "v1", "jsonWorldContentPaths": {"en": "/p1"}}
        )
        assert info.mobile_asset_content_path is None
        assert info.mobile_world_content_paths == {}


class TestManifestFetcher:
    """Test ManifestFetcher.fetch()."""

    def test_fetch_relative_path(self, config):
        document = {"DestinyClassDefinition": {"1": {"classType": 0}}}
        session = MagicMock()
        session.get.return_value = fake_stream_response([orjson.dumps(document)])

        result = ManifestFetcher(config, session).fetch("/common/en/a.json")

        assert result == document
        session.get.assert_called_once_with(
            "https://www.bungie.net/common/en/a.json",
            stream=True,
            timeout=config.download_timeout,
        )

    def test_fetch_absolute_url(self, config):
        session = MagicMock()
        session.get.return_value = fake_stream_response([b'{"T": {}}'])

        ManifestFetcher(config, session).fetch("https://cdn.example.com/m.json")

        assert session.get.call_args[0][0] == "https://cdn.example.com/m.json"

    def test_fetch_reassembles_chunks(self, config):
        payload = orjson.dumps({"Tables": {"x": 1}})
        session = MagicMock()
        session.get.return_value = fake_stream_response(
            [payload[:5], payload[5:11], payload[11:]]
        )

        assert ManifestFetcher(config, session).fetch("/p1") == {"Tables": {"x": 1}}

    def test_network_error(self, config):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("reset")

        with pytest.raises(DownloadError):
            ManifestFetcher(config, session).fetch("/p1")

    def test_timeout(self, config):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(DownloadError):
            ManifestFetcher(config, session).fetch("/p1")

    def test_http_error(self, config):
        session = MagicMock()
        session.get.return_value = fake_stream_response([], status_code=404)

        with pytest.raises(DownloadError):
            ManifestFetcher(config, session).fetch("/p1")

    def test_too_large(self, config):
        session = MagicMock()
        session.get.return_value = fake_stream_response([b"x" * 600, b"x" * 600])

        with pytest.raises(DownloadError, match="max_download_size"):
            ManifestFetcher(config, session).fetch("/p1")

    def test_invalid_json(self, config):
        session = MagicMock()
        session.get.return_value = fake_stream_response([b"<html>oops</html>"])

        with pytest.raises(DecodeError):
            ManifestFetcher(config, session).fetch("/p1")

    @pytest.mark.parametrize("payload", [b"[1, 2]", b'{"Table": [1]}', b'"text"'])
    def test_wrong_shape(self, config, payload):
        session = MagicMock()
        session.get.return_value = fake_stream_response([payload])

        with pytest.raises(DecodeError):
            ManifestFetcher(config, session).fetch("/p1")
