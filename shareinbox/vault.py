"""
At-rest sealing for the channel file.

- Device key: 32 random bytes, stored hex at ``<home>/device_key`` with mode 600
- Sealing: AES-256-GCM (``cryptography`` package), layout nonce(12) || ciphertext+tag

The associated data binds a sealed blob to its purpose, so a blob sealed for
one file cannot be swapped in for another.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shareinbox import VAULT_KEY_SIZE, VAULT_NONCE_SIZE
from shareinbox.errors import VaultError

log = logging.getLogger(__name__)

CHANNELS_AAD = b"shareinbox/channels/v1"

_KEY_RE = re.compile(rf"^[0-9a-f]{{{VAULT_KEY_SIZE * 2}}}$")


def load_or_create_key(key_path: Path) -> bytes:
    """Load the device key, generating it on first use.

    Raises VaultError if an existing key file is unreadable or malformed;
    silently replacing it would make every sealed file unreadable.
    """
    path = Path(key_path)

    if path.is_file():
        try:
            hex_key = path.read_text(encoding="ascii").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise VaultError(f"Cannot read device key {path}: {e}") from e
        if not _KEY_RE.match(hex_key):
            raise VaultError(f"Device key {path} is malformed")
        return bytes.fromhex(hex_key)

    key = AESGCM.generate_key(bit_length=VAULT_KEY_SIZE * 8)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        os.write(fd, key.hex().encode("ascii"))
    finally:
        os.close(fd)
    log.info("Created device key at %s", path)
    return key


class Vault:
    """Seal and open byte blobs with the device key.

    Usage:
        vault = Vault.from_key_file(home / "device_key")
        blob = vault.seal(b"...")
        data = vault.open(blob)
    """

    def __init__(self, key: bytes, aad: bytes = CHANNELS_AAD) -> None:
        if len(key) != VAULT_KEY_SIZE:
            raise ValueError(f"Key must be {VAULT_KEY_SIZE} bytes")
        self._aesgcm = AESGCM(key)
        self._aad = aad

    @classmethod
    def from_key_file(cls, key_path: Path, aad: bytes = CHANNELS_AAD) -> Vault:
        return cls(load_or_create_key(key_path), aad)

    def __repr__(self) -> str:
        return "Vault(<sealed>)"

    def seal(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(VAULT_NONCE_SIZE)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, self._aad)

    def open(self, blob: bytes) -> bytes:
        """Decrypt a sealed blob. Raises VaultError on a wrong key or tampering."""
        if len(blob) < VAULT_NONCE_SIZE + 16:
            raise VaultError("Sealed data too short")
        nonce, ciphertext = blob[:VAULT_NONCE_SIZE], blob[VAULT_NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, ciphertext, self._aad)
        except InvalidTag:
            raise VaultError("Cannot open sealed data: wrong device key or tampered file")
