"""
Hardware-bound secret generation.

    secret = HMAC-SHA256(key=fingerprint, msg=random(32) || str(created_at_ms))

The fingerprint keys the HMAC so the secret is bound to the generating
machine; 32 bytes of fresh entropy make every pairing unique even on the
same machine. Nothing here persists — hand the result to a ChannelStore.
"""

from __future__ import annotations

import hashlib
import hmac
import math
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from shareinbox import (
    DEFAULT_EXPIRATION_DAYS,
    DEFAULT_SERVER,
    DEFAULT_WINDOW_SECONDS,
    MS_PER_DAY,
)
from shareinbox.errors import MalformedSecret
from shareinbox.hardware import fingerprint, hardware_fingerprint
from shareinbox.totp import now_millis

_FINGERPRINT_RE = re.compile(r"^[0-9a-fA-F]{64}$")

_ENTROPY_BYTES = 32


@dataclass(frozen=True)
class ForgedSecret:
    """A freshly generated secret and its pairing parameters.

    All timestamps are unix milliseconds.
    """

    secret: str = field(repr=False)
    hardware_fingerprint: str = field(repr=False)
    created_at: int
    expires_at: int
    expiration_days: int
    window_seconds: int
    server: str

    def to_pairing_payload(self) -> dict[str, Any]:
        """Compact payload for the other device (QR or manual entry).

        ``e`` is in unix seconds to keep the payload short.
        """
        return {
            "s": self.secret,
            "e": self.expires_at // 1000,
            "w": self.window_seconds,
            "u": self.server,
        }

    def to_config(self) -> dict[str, Any]:
        """Human-readable record of the pairing for local display."""
        return {
            "secret": self.secret,
            "hardwareFingerprint": self.hardware_fingerprint,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
            "expiresAtTimestamp": self.expires_at,
            "windowSeconds": self.window_seconds,
            "server": self.server,
        }


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def generate_secret(
    hardware_fingerprint: str,
    expiration_days: int = DEFAULT_EXPIRATION_DAYS,
    *,
    server: str = DEFAULT_SERVER,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    now_ms: int | None = None,
) -> ForgedSecret:
    """Generate a new hardware-bound secret.

    Args:
        hardware_fingerprint: 64-char hex digest from ``hardware.fingerprint``.
        expiration_days: Days until the pairing expires (>= 1).
        server: Relay base URL to pair against.
        window_seconds: Topic rotation period.
        now_ms: Creation time override (unix ms).

    Raises:
        MalformedSecret: fingerprint is not a 64-char hex digest.
        ValueError: expiration_days or window_seconds is not positive.
    """
    if not isinstance(hardware_fingerprint, str) or not _FINGERPRINT_RE.match(hardware_fingerprint):
        raise MalformedSecret("Hardware fingerprint must be 64 hex characters")
    if expiration_days < 1:
        raise ValueError(f"expiration_days must be at least 1, got {expiration_days}")
    if window_seconds <= 0:
        raise ValueError(f"window_seconds must be positive, got {window_seconds}")

    created_at = now_millis() if now_ms is None else now_ms
    entropy = secrets.token_bytes(_ENTROPY_BYTES)

    mac = hmac.new(bytes.fromhex(hardware_fingerprint), digestmod=hashlib.sha256)
    mac.update(entropy)
    mac.update(str(created_at).encode("ascii"))

    return ForgedSecret(
        secret=mac.hexdigest(),
        hardware_fingerprint=hardware_fingerprint.lower(),
        created_at=created_at,
        expires_at=created_at + expiration_days * MS_PER_DAY,
        expiration_days=expiration_days,
        window_seconds=window_seconds,
        server=server,
    )


def forge_secret(
    components: Iterable[str | None] | None = None,
    expiration_days: int = DEFAULT_EXPIRATION_DAYS,
    **kwargs: Any,
) -> ForgedSecret:
    """Fingerprint this host (or the given components) and generate a secret.

    Propagates InsufficientHardwareEvidence from the fingerprint step.
    """
    digest = hardware_fingerprint() if components is None else fingerprint(components)
    return generate_secret(digest, expiration_days, **kwargs)


def is_expired(expires_at: int, now_ms: int | None = None) -> bool:
    now = now_millis() if now_ms is None else now_ms
    return now >= expires_at


def days_remaining(expires_at: int, now_ms: int | None = None) -> int:
    """Whole days left before expiry, rounded up. 0 once expired."""
    now = now_millis() if now_ms is None else now_ms
    remaining = expires_at - now
    if remaining <= 0:
        return 0
    return math.ceil(remaining / MS_PER_DAY)


def mask_secret(secret: str | None) -> str:
    """Mask a secret for display: first and last 4 characters only."""
    if not secret or len(secret) < 12:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"
