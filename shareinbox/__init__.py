"""
share-to-inbox — time-windowed shared-secret topics for a pub/sub inbox.

Architecture:
    Pairing:   hardware fingerprint + entropy -> 256-bit secret, handed over once
    Topics:    HMAC-SHA256(secret, window_index) -> 32 hex chars, rotated every window
    Storage:   ~/.share-to-inbox/channels.vault (AES-256-GCM sealed channel list)
    Relay:     ntfy-compatible HTTP pub/sub, never sees the secret
"""

__version__ = "0.1.0"

# Topic derivation constants
DEFAULT_WINDOW_SECONDS = 21600  # 6 hours
DEFAULT_TOPIC_LENGTH = 32  # 128 bits of the HMAC output
SECRET_HEX_LENGTH = 64  # 256-bit secret
MAX_WINDOW_INDEX = 2**64 - 1

# Pairing constants
DEFAULT_SERVER = "https://ntfy.sh"
DEFAULT_EXPIRATION_DAYS = 90
MIN_HARDWARE_COMPONENTS = 2
MS_PER_DAY = 24 * 60 * 60 * 1000

# Relay constants
DEFAULT_FETCH_SINCE = "24h"
DEFAULT_FETCH_TIMEOUT = 10.0  # seconds, per topic request

# Storage constants
DEFAULT_HOME_DIRNAME = ".share-to-inbox"
VAULT_KEY_SIZE = 32  # AES-256
VAULT_NONCE_SIZE = 12  # AES-GCM standard nonce
