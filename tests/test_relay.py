"""
Tests for the ntfy relay client (urllib mocked, no network).
"""

from __future__ import annotations

import http.client
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from shareinbox.errors import RelayError, RelayFetchFailed
from shareinbox.relay import NtfyRelay, parse_ndjson

TOPIC = "acbc9dd34781c8264d36e5754f663a64"


def fake_response(body: str) -> MagicMock:
    """urlopen() return value usable as a context manager."""
    resp = MagicMock()
    resp.read.return_value = body.encode("utf-8")
    cm = MagicMock()
    cm.__enter__.return_value = resp
    cm.__exit__.return_value = False
    return cm


def http_error(code: int, reason: str = "Error") -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://ntfy.sh", code, reason, hdrs=None, fp=None)


NDJSON = "\n".join([
    json.dumps({"id": "open1", "event": "open", "time": 1}),
    json.dumps({"id": "m1", "event": "message", "time": 2, "message": "hello"}),
    "{not json",
    "",
    json.dumps({"id": "k1", "event": "keepalive", "time": 3}),
    json.dumps({"id": "m2", "event": "message", "time": 4, "message": "world"}),
])


class TestParseNdjson:

    def test_only_message_events(self):
        assert [m["id"] for m in parse_ndjson(NDJSON)] == ["m1", "m2"]

    def test_empty_body(self):
        assert parse_ndjson("") == []

    def test_non_object_lines_skipped(self):
        assert parse_ndjson('[1, 2]\n"text"\n') == []


class TestNtfyRelay:

    def test_server_must_be_http(self):
        with pytest.raises(ValueError):
            NtfyRelay("ntfy.sh")

    def test_trailing_slash_trimmed(self):
        assert NtfyRelay("https://ntfy.sh/").server == "https://ntfy.sh"

    @patch("urllib.request.urlopen")
    def test_fetch_url(self, mock_urlopen):
        mock_urlopen.return_value = fake_response(NDJSON)
        messages = NtfyRelay("https://ntfy.sh", timeout=3).fetch(TOPIC, since="24h")

        req = mock_urlopen.call_args[0][0]
        assert req.full_url == f"https://ntfy.sh/{TOPIC}/json?poll=1&since=24h"
        assert req.get_method() == "GET"
        assert mock_urlopen.call_args[1]["timeout"] == 3
        assert [m["id"] for m in messages] == ["m1", "m2"]

    @patch("urllib.request.urlopen")
    def test_fetch_404_is_empty(self, mock_urlopen):
        mock_urlopen.side_effect = http_error(404, "Not Found")
        assert NtfyRelay("https://ntfy.sh").fetch(TOPIC) == []

    @patch("urllib.request.urlopen")
    def test_fetch_server_error(self, mock_urlopen):
        mock_urlopen.side_effect = http_error(500, "Internal Server Error")
        with pytest.raises(RelayFetchFailed, match="500"):
            NtfyRelay("https://ntfy.sh").fetch(TOPIC)

    @patch("urllib.request.urlopen")
    def test_fetch_connection_error(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("refused")
        with pytest.raises(RelayFetchFailed, match="Connection failed"):
            NtfyRelay("https://ntfy.sh").fetch(TOPIC)

    @patch("urllib.request.urlopen")
    def test_fetch_socket_timeout(self, mock_urlopen):
        mock_urlopen.side_effect = TimeoutError("timed out")
        with pytest.raises(RelayFetchFailed):
            NtfyRelay("https://ntfy.sh").fetch(TOPIC)

    @pytest.mark.parametrize("topic", ["", "ABC", "../admin", "a" * 65, None])
    def test_bad_topic(self, topic):
        with pytest.raises(ValueError):
            NtfyRelay("https://ntfy.sh").fetch(topic)

    @pytest.mark.parametrize("since", ["24h", "30m", "all", "latest", "1700000000"])
    @patch("urllib.request.urlopen")
    def test_since_values(self, mock_urlopen, since):
        mock_urlopen.return_value = fake_response("")
        NtfyRelay("https://ntfy.sh").fetch(TOPIC, since=since)
        assert mock_urlopen.call_args[0][0].full_url.endswith(f"since={since}")

    def test_bad_since(self):
        with pytest.raises(ValueError):
            NtfyRelay("https://ntfy.sh").fetch(TOPIC, since="yesterday&x=1")

    @patch("urllib.request.urlopen")
    def test_publish(self, mock_urlopen):
        mock_urlopen.return_value = fake_response('{"id": "abc", "event": "message"}')
        reply = NtfyRelay("https://ntfy.sh").publish(TOPIC, "hello", title="Note")

        req = mock_urlopen.call_args[0][0]
        assert req.full_url == f"https://ntfy.sh/{TOPIC}"
        assert req.get_method() == "POST"
        assert req.data == b"hello"
        assert req.get_header("Title") == "Note"
        assert reply["id"] == "abc"

    @patch("urllib.request.urlopen")
    def test_publish_without_title(self, mock_urlopen):
        mock_urlopen.return_value = fake_response("")
        assert NtfyRelay("https://ntfy.sh").publish(TOPIC, "hello") == {}
        assert mock_urlopen.call_args[0][0].get_header("Title") is None

    @patch("urllib.request.urlopen")
    def test_publish_http_error(self, mock_urlopen):
        mock_urlopen.side_effect = http_error(429, "Too Many Requests")
        with pytest.raises(RelayError, match="429"):
            NtfyRelay("https://ntfy.sh").publish(TOPIC, "hello")

    @patch("urllib.request.urlopen")
    def test_publish_connection_error(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("unreachable")
        with pytest.raises(RelayError):
            NtfyRelay("https://ntfy.sh").publish(TOPIC, "hello")

    def test_publish_error_is_not_fetch_failure(self):
        assert not issubclass(RelayError, RelayFetchFailed)

    @patch("urllib.request.urlopen")
    def test_fetch_truncated_body(self, mock_urlopen):
        cm = fake_response("")
        cm.__enter__.return_value.read.side_effect = http.client.IncompleteRead(b"partial")
        mock_urlopen.return_value = cm
        with pytest.raises(RelayFetchFailed, match="IncompleteRead"):
            NtfyRelay("https://ntfy.sh").fetch(TOPIC)

    @patch("urllib.request.urlopen")
    def test_fetch_bad_status_line(self, mock_urlopen):
        mock_urlopen.side_effect = http.client.BadStatusLine("garbage")
        with pytest.raises(RelayFetchFailed):
            NtfyRelay("https://ntfy.sh").fetch(TOPIC)

    @patch("urllib.request.urlopen")
    def test_publish_bad_response(self, mock_urlopen):
        mock_urlopen.side_effect = http.client.RemoteDisconnected("closed")
        with pytest.raises(RelayError, match="RemoteDisconnected"):
            NtfyRelay("https://ntfy.sh").publish(TOPIC, "hello")
