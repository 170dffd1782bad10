"""
Channel store — the device's named pairings.

Storage layout:
    <home>/channels.vault   — AES-256-GCM sealed JSON document (default)
    <home>/channels.json    — plain JSON document (vault disabled)
    <home>/.channels.lock   — advisory lock for single-writer access

Document shape (preference-style key/value object):
    {"channels": [{"name", "secret", "server", "windowSeconds", "expiresAt"}, ...]}

Older single-pairing documents keep ``secret``, ``expires_at``,
``window_seconds`` and ``server`` at the top level instead;
``migrate_legacy_pairing`` upgrades them once, at construction.

Expired channels are swept lazily: every read drops them and rewrites the
document, so an expired secret never leaves this module again.
All writes are atomic (temp file + os.replace), mode 600.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
import secrets
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

from shareinbox import (
    DEFAULT_HOME_DIRNAME,
    DEFAULT_SERVER,
    DEFAULT_WINDOW_SECONDS,
    SECRET_HEX_LENGTH,
)
from shareinbox.errors import (
    AlreadyExpired,
    ChannelStoreError,
    InvalidPairingPayload,
    InvalidSecretLength,
    MalformedSecret,
    NameConflict,
)
from shareinbox.secret import days_remaining
from shareinbox.totp import now_millis
from shareinbox.vault import Vault

try:
    import fcntl
except ImportError:  # Windows: thread lock only
    fcntl = None

log = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

# Pairing payload "e" values at or above this are milliseconds, below are seconds
_MS_THRESHOLD = 10**12

_NAME_ATTEMPTS = 100

_DEFAULT_ROOT = Path.home() / DEFAULT_HOME_DIRNAME

KEY_CHANNELS = "channels"

# Legacy single-pairing keys
KEY_SECRET = "secret"
KEY_EXPIRES_AT = "expires_at"
KEY_WINDOW_SECONDS = "window_seconds"
KEY_SERVER = "server"
_LEGACY_KEYS = (KEY_SECRET, KEY_EXPIRES_AT, KEY_WINDOW_SECONDS, KEY_SERVER)

ADJECTIVES = (
    "swift", "bright", "calm", "bold", "warm", "cool", "quick", "soft",
    "keen", "pure", "wild", "free", "fair", "kind", "wise", "brave",
    "crisp", "fresh", "clear", "sharp", "smooth", "steady", "golden", "silver",
    "cosmic", "fuzzy", "happy", "quiet", "sunny", "misty", "snowy", "starry",
)

NOUNS = (
    "falcon", "penguin", "dolphin", "tiger", "eagle", "wolf", "bear", "fox",
    "hawk", "owl", "raven", "sparrow", "otter", "seal", "whale", "shark",
    "comet", "nova", "nebula", "quasar", "photon", "prism", "crystal", "ember",
    "breeze", "storm", "river", "mountain", "forest", "meadow", "canyon", "glacier",
)


def generate_channel_name() -> str:
    """Random two-word channel name, e.g. ``misty-otter``."""
    return f"{secrets.choice(ADJECTIVES)}-{secrets.choice(NOUNS)}"


@dataclass(frozen=True)
class Channel:
    """A single pairing. ``expires_at`` is unix milliseconds."""

    name: str
    secret: str = field(repr=False)
    server: str
    window_seconds: int
    expires_at: int

    def is_expired(self, now_ms: int | None = None) -> bool:
        now = now_millis() if now_ms is None else now_ms
        return now >= self.expires_at

    def days_remaining(self, now_ms: int | None = None) -> int:
        return days_remaining(self.expires_at, now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "secret": self.secret,
            "server": self.server,
            "windowSeconds": self.window_seconds,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Channel:
        name = d["name"]
        secret = d["secret"]
        expires_at = d["expiresAt"]
        window_seconds = d.get("windowSeconds", DEFAULT_WINDOW_SECONDS)
        server = d.get("server", DEFAULT_SERVER)
        if not isinstance(name, str) or not isinstance(secret, str):
            raise TypeError("name and secret must be strings")
        if not _is_int(expires_at) or not _is_int(window_seconds):
            raise TypeError("expiresAt and windowSeconds must be integers")
        if not isinstance(server, str) or not server.startswith(("http://", "https://")):
            raise ValueError("server must be an http(s) URL")
        if window_seconds <= 0:
            raise ValueError("windowSeconds must be positive")
        if not _valid_secret(secret):
            raise ValueError("secret must be 64 hex characters")
        return cls(
            name=name,
            secret=secret,
            server=server,
            window_seconds=window_seconds,
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class PairingPayload:
    """Decoded pairing payload. ``expires_at`` is unix milliseconds."""

    secret: str = field(repr=False)
    expires_at: int
    window_seconds: int
    server: str


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _valid_secret(secret: Any) -> bool:
    return (
        isinstance(secret, str)
        and len(secret) == SECRET_HEX_LENGTH
        and bool(_HEX_RE.match(secret))
    )


def parse_pairing_payload(payload: str | bytes | Mapping[str, Any]) -> PairingPayload:
    """Decode a pairing payload ``{"s", "e", "w", "u"}``.

    ``e`` is unix seconds; values of 10**12 and above are read as
    milliseconds so payloads from millisecond-emitting senders still pair.

    Raises:
        InvalidPairingPayload: not JSON, not an object, or bad field types.
        InvalidSecretLength: ``s`` is not exactly 64 characters.
        MalformedSecret: ``s`` is 64 characters but not hex.
    """
    if isinstance(payload, (str, bytes, bytearray)):
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidPairingPayload(f"Pairing payload is not valid JSON: {e}") from e
    else:
        data = payload

    if not isinstance(data, Mapping):
        raise InvalidPairingPayload("Pairing payload must be a JSON object")

    secret = data.get("s")
    if not isinstance(secret, str):
        raise InvalidPairingPayload("Pairing payload is missing the secret ('s')")
    if len(secret) != SECRET_HEX_LENGTH:
        raise InvalidSecretLength(
            f"Secret must be {SECRET_HEX_LENGTH} hex characters, got {len(secret)}"
        )
    if not _HEX_RE.match(secret):
        raise MalformedSecret("Secret must be hex")

    expires = data.get("e")
    if not _is_int(expires) or expires <= 0:
        raise InvalidPairingPayload("Pairing payload needs a positive integer expiry ('e')")
    expires_at = expires if expires >= _MS_THRESHOLD else expires * 1000

    window_seconds = data.get("w", DEFAULT_WINDOW_SECONDS)
    if not _is_int(window_seconds) or window_seconds <= 0:
        raise InvalidPairingPayload("Window ('w') must be a positive integer")

    server = data.get("u", DEFAULT_SERVER)
    if not isinstance(server, str) or not server.startswith(("http://", "https://")):
        raise InvalidPairingPayload("Server ('u') must be an http(s) URL")

    return PairingPayload(
        secret=secret.lower(),
        expires_at=expires_at,
        window_seconds=window_seconds,
        server=server.rstrip("/"),
    )


class ChannelStore:
    """File-backed set of channels for one device.

    Thread-safe; on POSIX hosts an advisory file lock also serializes
    writers from other processes on the same device.

    Usage:
        store = ChannelStore(vault=Vault.from_key_file(home / "device_key"))
        channel = store.add_channel('{"s": "...", "e": 1767225600, "w": 21600, "u": "https://ntfy.sh"}')
        for channel in store.get_channels():
            ...
    """

    CHANNELS_FILE = "channels.json"
    VAULT_FILE = "channels.vault"
    LOCK_FILE = ".channels.lock"

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        vault: Vault | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.root = Path(root) if root else _DEFAULT_ROOT
        self.path = self.root / (self.VAULT_FILE if vault else self.CHANNELS_FILE)
        self._vault = vault
        self._clock = clock or now_millis
        self._lock = threading.RLock()
        self.migrate_legacy_pairing()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the thread lock and, where available, the cross-process file lock."""
        with self._lock:
            if fcntl is None:
                yield
                return
            self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
            with open(self.root / self.LOCK_FILE, "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read_document(self) -> dict[str, Any]:
        """Read the document. Missing or corrupt files read as empty.

        A vault that cannot open the file raises VaultError rather than
        reading as empty, so a wrong key never wipes the store.
        """
        if not self.path.is_file():
            return {}
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise ChannelStoreError(f"Cannot read {self.path}: {e}") from e

        if self._vault is not None:
            raw = self._vault.open(raw)

        try:
            document = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.warning("Channel store %s is corrupt, treating as empty", self.path)
            return {}
        if not isinstance(document, dict):
            log.warning("Channel store %s has unexpected shape, treating as empty", self.path)
            return {}
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        """Atomically write the document (temp + fsync + rename)."""
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
        data = json.dumps(document, separators=(",", ":")).encode("utf-8")
        if self._vault is not None:
            data = self._vault.seal(data)

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.root), suffix=".tmp", prefix=".channels_"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, str(self.path))
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise ChannelStoreError(f"Cannot write {self.path}: {e}") from e

    @staticmethod
    def _parse_channels(document: Mapping[str, Any]) -> list[Channel]:
        entries = document.get(KEY_CHANNELS) or []
        if not isinstance(entries, list):
            log.warning("Channel list has unexpected shape, ignoring it")
            return []
        channels = []
        names = set()
        for i, entry in enumerate(entries):
            try:
                channel = Channel.from_dict(entry)
            except (KeyError, TypeError, ValueError, AttributeError):
                log.warning("Dropping malformed channel entry #%d", i)
                continue
            if channel.name in names:
                log.warning("Dropping duplicate channel entry #%d (%r)", i, channel.name)
                continue
            names.add(channel.name)
            channels.append(channel)
        return channels

    def _load_live(self) -> tuple[dict[str, Any], list[Channel]]:
        """Read the document and sweep expired channels. Caller holds the lock.

        Rewrites the document when anything was dropped.
        """
        document = self._read_document()
        stored = self._parse_channels(document)
        now = self._clock()
        live = [c for c in stored if not c.is_expired(now)]

        entries = document.get(KEY_CHANNELS)
        if isinstance(entries, list) and len(entries) != len(live):
            expired = len(stored) - len(live)
            if expired:
                log.info("Wiped %d expired channel(s)", expired)
            self._save(document, live)
        return document, live

    def _save(self, document: dict[str, Any], channels: list[Channel]) -> None:
        document[KEY_CHANNELS] = [c.to_dict() for c in channels]
        self._write_document(document)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_channels(self) -> list[Channel]:
        """All live channels, in insertion order. Expired ones are wiped."""
        with self._locked():
            _document, live = self._load_live()
        return live

    def get_channel(self, name: str) -> Channel | None:
        for channel in self.get_channels():
            if channel.name == name:
                return channel
        return None

    def has_channels(self) -> bool:
        return bool(self.get_channels())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_channel(
        self,
        payload: str | bytes | Mapping[str, Any],
        name: str | None = None,
    ) -> Channel:
        """Add a channel from a pairing payload.

        A missing or already-taken name is replaced with a generated one.

        Raises:
            InvalidPairingPayload, InvalidSecretLength, MalformedSecret:
                payload rejected (see ``parse_pairing_payload``).
            AlreadyExpired: the pairing's expiry is not in the future.
            NameConflict: no free generated name after 100 attempts.
        """
        pairing = parse_pairing_payload(payload)

        with self._locked():
            if pairing.expires_at <= self._clock():
                raise AlreadyExpired("Pairing has already expired")

            document, live = self._load_live()
            taken = {c.name for c in live}

            wanted = name.strip() if name else ""
            if wanted and wanted not in taken:
                channel_name = wanted
            else:
                channel_name = self._unique_name(taken)
                if wanted:
                    log.info("Channel name %r is taken, using %r", wanted, channel_name)

            channel = Channel(
                name=channel_name,
                secret=pairing.secret,
                server=pairing.server,
                window_seconds=pairing.window_seconds,
                expires_at=pairing.expires_at,
            )
            live.append(channel)
            self._save(document, live)

        log.info("Added channel %r", channel.name)
        return channel

    @staticmethod
    def _unique_name(taken: set[str]) -> str:
        for _ in range(_NAME_ATTEMPTS):
            candidate = generate_channel_name()
            if candidate not in taken:
                return candidate
        raise NameConflict(f"No free channel name after {_NAME_ATTEMPTS} attempts")

    def rename_channel(self, old_name: str, new_name: str) -> bool:
        """Rename a channel. False if it does not exist or the name is taken."""
        new_name = (new_name or "").strip()
        if not new_name:
            return False

        with self._locked():
            document, live = self._load_live()
            index = next((i for i, c in enumerate(live) if c.name == old_name), None)
            if index is None:
                return False
            if any(c.name == new_name for i, c in enumerate(live) if i != index):
                return False
            if live[index].name == new_name:
                return True
            live[index] = dataclasses.replace(live[index], name=new_name)
            self._save(document, live)

        log.info("Renamed channel %r to %r", old_name, new_name)
        return True

    def remove_channel(self, name: str) -> bool:
        """Remove a channel and its secret. False if not found."""
        with self._locked():
            document, live = self._load_live()
            remaining = [c for c in live if c.name != name]
            if len(remaining) == len(live):
                return False
            self._save(document, remaining)

        log.info("Removed channel %r", name)
        return True

    def clear(self) -> None:
        """Wipe every channel, including any legacy single-pairing fields."""
        with self._locked():
            self._write_document({KEY_CHANNELS: []})
        log.info("Cleared all channels")

    def migrate_legacy_pairing(self) -> Channel | None:
        """Upgrade a legacy single-pairing document to the channel list.

        Runs only when legacy fields exist and no channel list does. A live
        legacy secret becomes one generated-name channel; an expired or
        invalid one is dropped. Legacy fields are removed in the same write.
        Returns the migrated channel, or None when nothing was migrated.
        """
        with self._locked():
            document = self._read_document()
            if KEY_SECRET not in document or KEY_CHANNELS in document:
                return None

            secret = document.get(KEY_SECRET)
            expires_at = document.get(KEY_EXPIRES_AT, 0)
            window_seconds = document.get(KEY_WINDOW_SECONDS, DEFAULT_WINDOW_SECONDS)
            server = document.get(KEY_SERVER) or DEFAULT_SERVER

            channel = None
            if (
                _valid_secret(secret)
                and _is_int(expires_at)
                and expires_at > self._clock()
                and _is_int(window_seconds)
                and window_seconds > 0
                and isinstance(server, str)
            ):
                channel = Channel(
                    name=generate_channel_name(),
                    secret=secret.lower(),
                    server=server.rstrip("/"),
                    window_seconds=window_seconds,
                    expires_at=expires_at,
                )

            for key in _LEGACY_KEYS:
                document.pop(key, None)
            self._save(document, [channel] if channel else [])

        if channel:
            log.info("Migrated legacy pairing to channel %r", channel.name)
        else:
            log.info("Dropped expired or invalid legacy pairing")
        return channel
