"""
Configuration — defaults, ``<home>/config.toml``, then environment.

Environment overrides:
    SHAREINBOX_HOME            — data directory (default ~/.share-to-inbox)
    SHAREINBOX_SERVER          — relay base URL for new pairings
    SHAREINBOX_WINDOW_SECONDS  — topic rotation period for new pairings
    SHAREINBOX_FETCH_TIMEOUT   — per-window fetch timeout in seconds
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from shareinbox import (
    DEFAULT_EXPIRATION_DAYS,
    DEFAULT_FETCH_SINCE,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_HOME_DIRNAME,
    DEFAULT_SERVER,
    DEFAULT_TOPIC_LENGTH,
    DEFAULT_WINDOW_SECONDS,
)
from shareinbox.store import ChannelStore
from shareinbox.vault import Vault

log = logging.getLogger(__name__)

CONFIG_FILE = "config.toml"
DEVICE_KEY_FILE = "device_key"

DEFAULT_CONFIG: dict[str, Any] = {
    "home": str(Path.home() / DEFAULT_HOME_DIRNAME),
    "server": DEFAULT_SERVER,
    "window_seconds": DEFAULT_WINDOW_SECONDS,
    "topic_length": DEFAULT_TOPIC_LENGTH,
    "expiration_days": DEFAULT_EXPIRATION_DAYS,
    "fetch_since": DEFAULT_FETCH_SINCE,
    "fetch_timeout": DEFAULT_FETCH_TIMEOUT,
    "encrypt_store": True,
}

_ENV_OVERRIDES = {
    "SHAREINBOX_SERVER": ("server", str),
    "SHAREINBOX_WINDOW_SECONDS": ("window_seconds", int),
    "SHAREINBOX_FETCH_TIMEOUT": ("fetch_timeout", float),
}


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def load_config(
    config_path: Path | None = None,
    home: str | Path | None = None,
) -> dict[str, Any]:
    """Load config, falling back to defaults.

    ``home`` (e.g. from ``--home``) wins over SHAREINBOX_HOME, which wins
    over the default. A broken config file is logged and ignored.
    """
    config = dict(DEFAULT_CONFIG)

    env_home = os.environ.get("SHAREINBOX_HOME")
    if home:
        config["home"] = str(home)
    elif env_home:
        config["home"] = env_home

    path = Path(config_path) if config_path else Path(config["home"]) / CONFIG_FILE
    if path.is_file():
        try:
            file_config = _read_toml(path)
        except Exception as e:
            log.warning("Failed to load config from %s: %s", path, e)
        else:
            for key, value in file_config.items():
                if key == "home":
                    continue  # the file lives in home; it cannot move it
                if key in DEFAULT_CONFIG:
                    config[key] = value
                else:
                    log.warning("Ignoring unknown config key %r in %s", key, path)

    for env_name, (key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            config[key] = cast(raw)
        except ValueError:
            log.warning("Ignoring invalid %s=%r", env_name, raw)

    return config


def open_store(config: dict[str, Any]) -> ChannelStore:
    """Build the ChannelStore described by ``config``."""
    home = Path(config["home"]).expanduser()
    vault = Vault.from_key_file(home / DEVICE_KEY_FILE) if config["encrypt_store"] else None
    return ChannelStore(home, vault=vault)
