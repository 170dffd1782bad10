"""
Typed failures raised by share-to-inbox.

Derivation and storage errors reach the immediate caller so the
presentation layer decides what to tell the user. ``RelayFetchFailed`` is
the exception: retrieval recovers it per window and never re-raises it.
"""

from __future__ import annotations


class ShareInboxError(Exception):
    """Base class for share-to-inbox errors."""


class MalformedSecret(ShareInboxError, ValueError):
    """Secret (or fingerprint) is not valid hex of the expected shape."""


class InsufficientHardwareEvidence(ShareInboxError):
    """Fewer than the minimum number of hardware identifiers were available."""

    def __init__(self, found: int, required: int) -> None:
        super().__init__(
            f"Insufficient hardware identifiers. Found: {found}, need at least {required}"
        )
        self.found = found
        self.required = required


class InvalidPairingPayload(ShareInboxError, ValueError):
    """Pairing payload could not be parsed or is missing required fields."""


class InvalidSecretLength(InvalidPairingPayload):
    """Pairing secret is not exactly 64 hex characters."""


class AlreadyExpired(InvalidPairingPayload):
    """Pairing expiration is not in the future."""


class NameConflict(ShareInboxError):
    """No unique channel name could be found."""


class ChannelStoreError(ShareInboxError):
    """Channel store could not be read or written."""


class VaultError(ShareInboxError):
    """Sealed channel file could not be opened (wrong key or tampered)."""


class RelayError(ShareInboxError):
    """Error communicating with the relay."""


class RelayFetchFailed(RelayError):
    """Fetching one topic from the relay failed (network or HTTP error)."""
