"""
Send content to a paired inbox.

The topic is derived for the current window, used for exactly one publish,
and dropped. No topic history is kept anywhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shareinbox import DEFAULT_FETCH_TIMEOUT, DEFAULT_TOPIC_LENGTH
from shareinbox.errors import RelayError
from shareinbox.relay import NtfyRelay
from shareinbox.store import Channel
from shareinbox.totp import current_topic, now_millis

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: str = ""


def send(
    content: str,
    channel: Channel,
    *,
    relay: NtfyRelay | None = None,
    title: str | None = None,
    topic_length: int = DEFAULT_TOPIC_LENGTH,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    now_ms: int | None = None,
) -> SendResult:
    """Publish ``content`` to the channel's current topic.

    Relay failures come back as ``SendResult(ok=False, error=...)``;
    sending through an expired channel is refused the same way.

    Raises:
        ValueError: content is empty.
    """
    if not content:
        raise ValueError("Nothing to send")

    now = now_millis() if now_ms is None else now_ms
    if channel.is_expired(now):
        return SendResult(ok=False, error=f"Channel {channel.name!r} has expired")

    relay = relay or NtfyRelay(channel.server, timeout=timeout)
    try:
        relay.publish(
            current_topic(channel.secret, channel.window_seconds, topic_length, now),
            content,
            title=title,
        )
    except RelayError as e:
        log.warning("Send via %r failed: %s", channel.name, e)
        return SendResult(ok=False, error=str(e))

    log.info("Sent %d characters via %r", len(content), channel.name)
    return SendResult(ok=True)
