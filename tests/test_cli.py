"""
Tests for configuration loading and the share-inbox CLI.
"""

from __future__ import annotations

import io
import json
import time
from unittest.mock import MagicMock, patch

import pytest

from shareinbox.cli import main
from shareinbox.config import DEFAULT_CONFIG, load_config, open_store
from shareinbox.store import ChannelStore
from shareinbox.totp import TEST_VECTORS

SECRET = "0123456789abcdef" * 4
OTHER_SECRET = "a" * 64


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "SHAREINBOX_HOME",
        "SHAREINBOX_SERVER",
        "SHAREINBOX_WINDOW_SECONDS",
        "SHAREINBOX_FETCH_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


def payload(secret: str = SECRET, days: int = 30) -> str:
    return json.dumps({
        "s": secret,
        "e": int(time.time()) + days * 86400,
        "w": 21600,
        "u": "https://ntfy.sh",
    })


def run(home, *argv):
    main(["--home", str(home), *argv])


# ---------------------------------------------------------------------------
# TestConfig
# ---------------------------------------------------------------------------

class TestConfig:

    def test_defaults(self, tmp_path):
        config = load_config(home=tmp_path)
        assert config["home"] == str(tmp_path)
        assert config["server"] == "https://ntfy.sh"
        assert config["window_seconds"] == 21600
        assert config["topic_length"] == 32
        assert config["expiration_days"] == 90
        assert config["fetch_since"] == "24h"
        assert config["encrypt_store"] is True

    def test_defaults_not_mutated(self, tmp_path):
        config = load_config(home=tmp_path)
        config["server"] = "https://changed.example"
        assert DEFAULT_CONFIG["server"] == "https://ntfy.sh"

    def test_toml_overrides(self, tmp_path):
        (tmp_path / "config.toml").write_text(
            'server = "https://relay.example"\n'
            "window_seconds = 3600\n"
            "encrypt_store = false\n"
        )
        config = load_config(home=tmp_path)
        assert config["server"] == "https://relay.example"
        assert config["window_seconds"] == 3600
        assert config["encrypt_store"] is False

    def test_explicit_config_path(self, tmp_path):
        path = tmp_path / "elsewhere.toml"
        path.write_text("expiration_days = 7\n")
        assert load_config(path, home=tmp_path)["expiration_days"] == 7

    def test_broken_toml_ignored(self, tmp_path, caplog):
        (tmp_path / "config.toml").write_text("server = [unterminated\n")
        with caplog.at_level("WARNING", logger="shareinbox.config"):
            config = load_config(home=tmp_path)
        assert config["server"] == "https://ntfy.sh"
        assert "Failed to load config" in caplog.text

    def test_unknown_key_ignored(self, tmp_path, caplog):
        (tmp_path / "config.toml").write_text('colour = "blue"\n')
        with caplog.at_level("WARNING", logger="shareinbox.config"):
            config = load_config(home=tmp_path)
        assert "colour" not in config
        assert "colour" in caplog.text

    def test_file_cannot_move_home(self, tmp_path):
        (tmp_path / "config.toml").write_text('home = "/somewhere/else"\n')
        assert load_config(home=tmp_path)["home"] == str(tmp_path)

    def test_env_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHAREINBOX_HOME", str(tmp_path / "env-home"))
        assert load_config()["home"] == str(tmp_path / "env-home")

    def test_argument_home_beats_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHAREINBOX_HOME", str(tmp_path / "env-home"))
        assert load_config(home=tmp_path)["home"] == str(tmp_path)

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        (tmp_path / "config.toml").write_text('server = "https://relay.example"\n')
        monkeypatch.setenv("SHAREINBOX_SERVER", "https://env.example")
        monkeypatch.setenv("SHAREINBOX_WINDOW_SECONDS", "600")
        monkeypatch.setenv("SHAREINBOX_FETCH_TIMEOUT", "2.5")
        config = load_config(home=tmp_path)
        assert config["server"] == "https://env.example"
        assert config["window_seconds"] == 600
        assert config["fetch_timeout"] == 2.5

    def test_invalid_env_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHAREINBOX_WINDOW_SECONDS", "six hours")
        assert load_config(home=tmp_path)["window_seconds"] == 21600

    def test_open_store_sealed(self, tmp_path):
        store = open_store(load_config(home=tmp_path))
        assert store.path.name == ChannelStore.VAULT_FILE
        assert (tmp_path / "device_key").is_file()

    def test_open_store_plain(self, tmp_path):
        (tmp_path / "config.toml").write_text("encrypt_store = false\n")
        store = open_store(load_config(home=tmp_path))
        assert store.path.name == ChannelStore.CHANNELS_FILE
        assert not (tmp_path / "device_key").exists()


# ---------------------------------------------------------------------------
# TestCli
# ---------------------------------------------------------------------------

class TestCli:

    def test_no_command_prints_usage(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run(tmp_path)
        assert exc_info.value.code == 0
        assert "Usage:" in capsys.readouterr().out

    def test_vectors(self, tmp_path, capsys):
        run(tmp_path, "vectors")
        out = capsys.readouterr().out
        assert out.count("OK") == len(TEST_VECTORS)
        assert "All test vectors passed." in out

    def test_channels_add_and_list(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload(), "--name", "laptop")
        run(tmp_path, "channels", "list")
        out = capsys.readouterr().out
        assert "Added channel 'laptop'" in out
        assert "laptop" in out.splitlines()[-1]
        assert SECRET not in out

    def test_channels_add_from_stdin(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(payload() + "\n"))
        run(tmp_path, "channels", "add", "-", "--name", "phone")
        assert "Added channel 'phone'" in capsys.readouterr().out

    def test_channels_add_expired(self, tmp_path, capsys):
        expired = json.dumps({"s": SECRET, "e": int(time.time()) - 60})
        with pytest.raises(SystemExit) as exc_info:
            run(tmp_path, "channels", "add", expired)
        assert exc_info.value.code == 1
        assert "already expired" in capsys.readouterr().err

    def test_channels_add_invalid(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run(tmp_path, "channels", "add", '{"s": "abc", "e": 1}')
        assert exc_info.value.code == 1
        assert "Invalid pairing payload" in capsys.readouterr().err

    def test_channels_list_empty(self, tmp_path, capsys):
        run(tmp_path, "channels", "list")
        assert "No channels." in capsys.readouterr().out

    def test_channels_rename_and_remove(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload(), "--name", "old")
        run(tmp_path, "channels", "rename", "old", "new")
        run(tmp_path, "channels", "remove", "new")
        out = capsys.readouterr().out
        assert "Renamed 'old' -> 'new'" in out
        assert "Removed 'new'" in out
        assert open_store(load_config(home=tmp_path)).get_channels() == []

    def test_channels_remove_missing(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            run(tmp_path, "channels", "remove", "ghost")
        assert exc_info.value.code == 1

    def test_channels_wipe_requires_yes(self, tmp_path):
        run(tmp_path, "channels", "add", payload())
        with pytest.raises(SystemExit):
            run(tmp_path, "channels", "wipe")
        assert open_store(load_config(home=tmp_path)).has_channels()
        run(tmp_path, "channels", "wipe", "--yes")
        assert not open_store(load_config(home=tmp_path)).has_channels()

    def test_pair_saves_channel(self, tmp_path, capsys):
        with patch(
            "shareinbox.hardware.collect_hardware_ids",
            return_value={"cpu": "c1", "disk": "d1", "platform": "linux"},
        ):
            run(tmp_path, "pair", "--name", "desk", "--days", "7")
        out = capsys.readouterr().out
        pairing = json.loads(next(line for line in out.splitlines() if line.startswith("{")))
        assert set(pairing) == {"s", "e", "w", "u"}
        channel = open_store(load_config(home=tmp_path)).get_channel("desk")
        assert channel.secret == pairing["s"]
        assert "(7 days)" in out

    def test_pair_no_save(self, tmp_path, capsys):
        with patch(
            "shareinbox.hardware.collect_hardware_ids",
            return_value={"cpu": "c1", "disk": "d1"},
        ):
            run(tmp_path, "pair", "--no-save")
        assert not open_store(load_config(home=tmp_path)).has_channels()

    def test_pair_insufficient_hardware(self, tmp_path, capsys):
        with patch(
            "shareinbox.hardware.collect_hardware_ids",
            return_value={"cpu": "c1", "platform": ""},
        ):
            with pytest.raises(SystemExit) as exc_info:
                run(tmp_path, "pair")
        assert exc_info.value.code == 1
        assert "Insufficient hardware identifiers" in capsys.readouterr().err

    def test_send_not_paired(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run(tmp_path, "send", "hello")
        assert exc_info.value.code == 1
        assert "Not paired" in capsys.readouterr().err

    def test_send(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload(), "--name", "laptop")
        relay = MagicMock()
        with patch("shareinbox.sender.NtfyRelay", return_value=relay):
            run(tmp_path, "send", "hello", "--title", "Note")
        topic, content = relay.publish.call_args[0]
        assert content == "hello"
        assert len(topic) == 32
        assert "Sent via 'laptop'" in capsys.readouterr().out

    def test_fetch_json(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload())
        capsys.readouterr()
        relay = MagicMock()
        relay.fetch.return_value = [{"id": "m1", "time": 1_700_000_000, "message": "hi"}]
        with patch("shareinbox.retrieval.NtfyRelay", return_value=relay):
            run(tmp_path, "fetch", "--json", "--since", "1h")
        result = json.loads(capsys.readouterr().out)
        assert result["count"] == 1
        assert result["messages"][0]["content"] == "hi"
        assert {c[0][1] for c in relay.fetch.call_args_list} == {"1h"}

    def test_status(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload(days=10), "--name", "laptop")
        run(tmp_path, "status")
        out = capsys.readouterr().out
        assert "Channel 'laptop'" in out
        assert "(10 days)" in out

    def test_unknown_channel(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload())
        with pytest.raises(SystemExit):
            run(tmp_path, "status", "-c", "ghost")
        assert "No channel named 'ghost'" in capsys.readouterr().err

    def test_fetch_invalid_since(self, tmp_path, capsys):
        run(tmp_path, "channels", "add", payload())
        relay = MagicMock()
        with patch("shareinbox.retrieval.NtfyRelay", return_value=relay):
            with pytest.raises(SystemExit) as exc_info:
                run(tmp_path, "fetch", "--since", "yesterday")
        assert exc_info.value.code == 1
        assert "Invalid since value" in capsys.readouterr().err
        relay.fetch.assert_not_called()

    def test_pair_zero_days_rejected(self, tmp_path, capsys):
        with patch(
            "shareinbox.hardware.collect_hardware_ids",
            return_value={"cpu": "c1", "disk": "d1"},
        ):
            with pytest.raises(SystemExit) as exc_info:
                run(tmp_path, "pair", "--days", "0")
        assert exc_info.value.code == 1
        assert "expiration_days" in capsys.readouterr().err
        assert not open_store(load_config(home=tmp_path)).has_channels()
