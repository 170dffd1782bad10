"""
TOTP-style topic derivation.

    window_index = floor(floor(now_ms / 1000) / window_seconds)
    topic        = HMAC-SHA256(secret, uint64_be(window_index)).hex()[:topic_length]

Every implementation of the inbox (phone, desktop, plugin) must produce the
same topic for the same inputs. ``TEST_VECTORS`` pins that contract; any
deviation is a release blocker.

Nothing in this module caches, stores, or logs a secret or a topic.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import struct
import time

from shareinbox import (
    DEFAULT_TOPIC_LENGTH,
    DEFAULT_WINDOW_SECONDS,
    MAX_WINDOW_INDEX,
)
from shareinbox.errors import MalformedSecret

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

# Cross-implementation fixtures: (secret, window_index, expected topic)
TEST_VECTORS = (
    (
        "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef",
        0,
        "acbc9dd34781c8264d36e5754f663a64",
    ),
    (
        "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef",
        1000000,
        "d298ee8d38cd98a093dbf71b8950d095",
    ),
    (
        "ffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff",
        12345,
        "e3c1b82ce9caccc56cb932877b100cb9",
    ),
)


def now_millis() -> int:
    """Current wall-clock time as unix milliseconds."""
    return time.time_ns() // 1_000_000


def _check_window_seconds(window_seconds: int) -> None:
    if not isinstance(window_seconds, int) or isinstance(window_seconds, bool):
        raise ValueError(f"window_seconds must be an int, got {window_seconds!r}")
    if window_seconds <= 0:
        raise ValueError(f"window_seconds must be positive, got {window_seconds}")


def window_index(
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    now_ms: int | None = None,
) -> int:
    """Compute the window index for a timestamp in milliseconds.

    Floor division on both steps, never rounding, so that every platform
    agrees on the boundary.
    """
    _check_window_seconds(window_seconds)
    if now_ms is None:
        now_ms = now_millis()
    unix_seconds = now_ms // 1000
    return unix_seconds // window_seconds


def window_expiry(
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    now_ms: int | None = None,
) -> int:
    """Start of the next window, in milliseconds."""
    current = window_index(window_seconds, now_ms)
    return (current + 1) * window_seconds * 1000


def secret_bytes(secret_hex: str) -> bytes:
    """Decode a hex secret. Raises MalformedSecret on anything but even-length hex."""
    if not isinstance(secret_hex, str) or not _HEX_RE.match(secret_hex):
        raise MalformedSecret("Secret must be a non-empty hex string")
    if len(secret_hex) % 2:
        raise MalformedSecret(f"Secret hex has odd length ({len(secret_hex)})")
    return bytes.fromhex(secret_hex)


def derive_topic(
    secret_hex: str,
    window_index: int,
    topic_length: int = DEFAULT_TOPIC_LENGTH,
) -> str:
    """Derive the topic for one window.

    Args:
        secret_hex: Shared secret as hex (64 chars for a 256-bit secret).
        window_index: Window index, must fit in an unsigned 64-bit integer.
        topic_length: Number of hex characters to keep (1..64).

    Returns:
        Lowercase hex topic, no prefix.

    Raises:
        MalformedSecret: secret is not valid hex.
        ValueError: window index or topic length out of range.
    """
    if not isinstance(topic_length, int) or not 1 <= topic_length <= 64:
        raise ValueError(f"topic_length must be between 1 and 64, got {topic_length!r}")
    if not isinstance(window_index, int) or not 0 <= window_index <= MAX_WINDOW_INDEX:
        raise ValueError(f"window_index out of 64-bit range: {window_index!r}")

    key = secret_bytes(secret_hex)
    message = struct.pack(">Q", window_index)
    digest = hmac.new(key, message, hashlib.sha256).hexdigest()
    return digest[:topic_length]


def current_topic(
    secret_hex: str,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    topic_length: int = DEFAULT_TOPIC_LENGTH,
    now_ms: int | None = None,
) -> str:
    """Topic for the window containing ``now_ms``. Used by the sending side."""
    return derive_topic(secret_hex, window_index(window_seconds, now_ms), topic_length)


def verify_test_vectors() -> bool:
    """Check this implementation against the pinned cross-platform vectors."""
    for secret, index, expected in TEST_VECTORS:
        if not hmac.compare_digest(derive_topic(secret, index), expected):
            return False
    return True
