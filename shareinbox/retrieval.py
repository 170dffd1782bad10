"""
Inbox retrieval — query the current and previous window, merge, dedupe.

The receiver never knows exactly how far the sender's clock is off, so it
asks the relay for both the current window's topic and the one before it.
That tolerates up to one full window of skew with no coordination.

Near a window boundary the same message can come back under both topics;
``merge_and_dedupe`` keeps one copy per message id, newest first.

A failed or timed-out window is an empty window, never an error: one bad
request must not hide the other window's messages. There is no retry here.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from shareinbox import (
    DEFAULT_FETCH_SINCE,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_TOPIC_LENGTH,
    DEFAULT_WINDOW_SECONDS,
)
from shareinbox.errors import RelayFetchFailed
from shareinbox.relay import NtfyRelay, check_since
from shareinbox.store import Channel
from shareinbox.totp import derive_topic, now_millis, window_expiry, window_index

log = logging.getLogger(__name__)

_WINDOW_LABELS = ("current", "previous")


def retrieval_topics(
    secret_hex: str,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    now_ms: int | None = None,
    topic_length: int = DEFAULT_TOPIC_LENGTH,
) -> list[str]:
    """Topics to query right now: ``[current, previous]``.

    At window index 0 there is no previous window and only the current
    topic is returned.
    """
    current = window_index(window_seconds, now_ms)
    topics = [derive_topic(secret_hex, current, topic_length)]
    if current > 0:
        topics.append(derive_topic(secret_hex, current - 1, topic_length))
    return topics


def _message_time(msg: dict[str, Any]) -> float:
    value = msg.get("time")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return 0


def _dedupe_key(msg: dict[str, Any]) -> tuple[Any, ...]:
    msg_id = msg.get("id")
    if msg_id is not None:
        return ("id", str(msg_id))
    return ("content", _message_time(msg), str(msg.get("message", "")))


def merge_and_dedupe(result_sets: Iterable[Iterable[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Flatten per-topic results, drop repeated ids, sort newest first.

    The first copy of a duplicated id wins. Messages without an id are
    keyed by their time and text instead. Ties keep their fetch order.
    """
    seen: set[tuple[Any, ...]] = set()
    merged = []
    for results in result_sets:
        for msg in results:
            key = _dedupe_key(msg)
            if key in seen:
                continue
            seen.add(key)
            merged.append(msg)
    merged.sort(key=_message_time, reverse=True)
    return merged


async def fetch_inbox(
    channel: Channel,
    *,
    relay: NtfyRelay | None = None,
    since: str = DEFAULT_FETCH_SINCE,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    topic_length: int = DEFAULT_TOPIC_LENGTH,
    now_ms: int | None = None,
) -> list[dict[str, Any]]:
    """Fetch a channel's inbox from the relay.

    One request per window, issued concurrently, each bounded by
    ``timeout``. Returns merged, deduplicated messages, newest first.
    An expired channel yields no messages.

    Raises:
        ValueError: ``since`` is not a valid look-back value.
    """
    check_since(since)
    now = now_millis() if now_ms is None else now_ms
    if channel.is_expired(now):
        log.warning("Channel %r has expired, not fetching", channel.name)
        return []

    relay = relay or NtfyRelay(channel.server, timeout=timeout)

    async def _fetch_window(label: str, topic: str) -> list[dict[str, Any]]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(relay.fetch, topic, since),
                timeout=timeout,
            )
        except RelayFetchFailed as e:
            log.warning("Fetching %s window of %r failed: %s", label, channel.name, e)
        except asyncio.TimeoutError:
            log.warning(
                "Fetching %s window of %r timed out after %.1fs",
                label, channel.name, timeout,
            )
        return []

    tasks = [
        _fetch_window(label, topic)
        for label, topic in zip(
            _WINDOW_LABELS,
            retrieval_topics(channel.secret, channel.window_seconds, now, topic_length),
        )
    ]
    results = []
    for label, result in zip(_WINDOW_LABELS, await asyncio.gather(*tasks, return_exceptions=True)):
        if isinstance(result, BaseException):
            log.warning(
                "Fetching %s window of %r failed: %s",
                label, channel.name, type(result).__name__,
            )
            result = []
        results.append(result)

    messages = merge_and_dedupe(results)
    log.info("Fetched %d message(s) for %r", len(messages), channel.name)
    return messages


def fetch_inbox_sync(channel: Channel, **kwargs: Any) -> list[dict[str, Any]]:
    """Blocking wrapper around ``fetch_inbox`` for non-async callers."""
    return asyncio.run(fetch_inbox(channel, **kwargs))


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------

def _iso_seconds(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def format_message(msg: dict[str, Any]) -> dict[str, Any]:
    """Normalize a relay message for display."""
    timestamp = _message_time(msg)
    attachment = msg.get("attachment")
    return {
        "id": msg.get("id"),
        "time": _iso_seconds(timestamp),
        "timestamp": timestamp,
        "content": msg.get("message", ""),
        "title": msg.get("title"),
        "tags": msg.get("tags") or [],
        "priority": msg.get("priority") or 3,
        "attachment_url": attachment.get("url") if isinstance(attachment, dict) else None,
    }


def format_inbox(messages: list[dict[str, Any]]) -> dict[str, Any]:
    """Summary + formatted messages, e.g. for JSON output."""
    if not messages:
        return {"count": 0, "summary": "No messages in inbox.", "messages": []}
    count = len(messages)
    return {
        "count": count,
        "summary": f"{count} message{'' if count == 1 else 's'} in inbox.",
        "messages": [format_message(m) for m in messages],
    }


def inbox_status(channel: Channel, now_ms: int | None = None) -> dict[str, Any]:
    """Pairing status of a channel: expiry, days left, next topic rotation."""
    now = now_millis() if now_ms is None else now_ms
    return {
        "paired": True,
        "name": channel.name,
        "expired": channel.is_expired(now),
        "expires_at": _iso_seconds(channel.expires_at / 1000),
        "days_remaining": channel.days_remaining(now),
        "window_expiry": _iso_seconds(window_expiry(channel.window_seconds, now) / 1000),
        "server": channel.server,
        "window_hours": channel.window_seconds / 3600,
    }
