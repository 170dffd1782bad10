"""
Minimal ntfy-compatible relay client using stdlib urllib.

    publish:  POST {server}/{topic}                           body = text
    fetch:    GET  {server}/{topic}/json?poll=1&since={since}  NDJSON response

The relay only ever sees topics, never the secret. Topics are not logged.
"""

from __future__ import annotations

import http.client
import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from shareinbox import DEFAULT_FETCH_SINCE, DEFAULT_FETCH_TIMEOUT
from shareinbox.errors import RelayError, RelayFetchFailed

log = logging.getLogger(__name__)

_TOPIC_RE = re.compile(r"^[0-9a-f]{1,64}$")
_SINCE_RE = re.compile(r"^(all|latest|\d+|\d+[smhd])$")


def check_since(since: str) -> None:
    """Relay look-back: all, latest, a unix timestamp, or a duration like 12h."""
    if not isinstance(since, str) or not _SINCE_RE.match(since):
        raise ValueError(f"Invalid since value: {since!r}")


def _check_topic(topic: str) -> None:
    """Topics are lowercase hex, which also keeps them from injecting path segments."""
    if not isinstance(topic, str) or not _TOPIC_RE.match(topic):
        raise ValueError("Topic must be 1-64 lowercase hex characters")


def parse_ndjson(body: str) -> list[dict[str, Any]]:
    """Parse a newline-delimited JSON body, keeping only ``message`` events.

    Malformed lines are skipped.
    """
    messages = []
    for line in body.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(msg, dict) and msg.get("event") == "message":
            messages.append(msg)
    return messages


class NtfyRelay:
    """HTTP client for one relay server.

    Usage:
        relay = NtfyRelay("https://ntfy.sh")
        relay.publish(topic, "hello")
        messages = relay.fetch(topic, since="24h")
    """

    def __init__(self, server: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> None:
        if not isinstance(server, str) or not server.startswith(("http://", "https://")):
            raise ValueError(f"Relay server must be an http(s) URL, got {server!r}")
        self.server = server.rstrip("/")
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"NtfyRelay({self.server!r})"

    def publish(self, topic: str, content: str, title: str | None = None) -> dict[str, Any]:
        """Publish text to a topic. Returns the relay's JSON reply (or {}).

        Raises RelayError on transport or HTTP errors.
        """
        _check_topic(topic)
        req = urllib.request.Request(
            f"{self.server}/{topic}",
            data=content.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
            method="POST",
        )
        if title:
            req.add_header("Title", title)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raise RelayError(f"HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise RelayError(f"Connection failed: {e.reason}") from e
        except http.client.HTTPException as e:
            raise RelayError(f"Bad response: {type(e).__name__}") from e
        except (OSError, ValueError) as e:
            raise RelayError(f"Publish failed: {e}") from e

        log.debug("Published %d bytes to %s", len(content), self.server)
        try:
            reply = json.loads(body)
        except json.JSONDecodeError:
            return {}
        return reply if isinstance(reply, dict) else {}

    def fetch(self, topic: str, since: str = DEFAULT_FETCH_SINCE) -> list[dict[str, Any]]:
        """Poll cached messages for a topic.

        A 404 means the topic has no messages and returns []. Every other
        failure raises RelayFetchFailed.
        """
        _check_topic(topic)
        check_since(since)

        query = urllib.parse.urlencode({"poll": "1", "since": since})
        req = urllib.request.Request(
            f"{self.server}/{topic}/json?{query}",
            headers={"Accept": "application/json"},
            method="GET",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            if e.code == 404:
                return []
            raise RelayFetchFailed(f"HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise RelayFetchFailed(f"Connection failed: {e.reason}") from e
        except http.client.HTTPException as e:
            raise RelayFetchFailed(f"Bad response: {type(e).__name__}") from e
        except (OSError, ValueError) as e:
            raise RelayFetchFailed(f"Fetch failed: {e}") from e

        return parse_ndjson(body)
