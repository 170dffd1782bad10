"""
Relay transport — publish and poll an ntfy-compatible pub/sub server.

Stdlib only (urllib). The relay is an external collaborator: it stores
messages under opaque topics and never sees the shared secret.
"""

from shareinbox.relay.client import NtfyRelay, check_since, parse_ndjson

__all__ = ["NtfyRelay", "check_since", "parse_ndjson"]
