"""Tests for configuration loading: env-only mode, file precedence, env path override."""

import json
import os
from pathlib import Path
from unittest.mock import patch

from rtchat.config.loader import get_config_path, load_config, save_config
from rtchat.config.schema import Config


class TestGetConfigPath:
    """Tests for get_config_path()."""

    def test_default_path(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("RTCHAT_CONFIG_PATH", None)
            assert get_config_path() == Path.home() / ".rtchat" / "config.json"

    def test_env_override(self):
        with patch.dict(os.environ, {"RTCHAT_CONFIG_PATH": "/tmp/custom.json"}):
            assert get_config_path() == Path("/tmp/custom.json")


class TestLoadConfig:
    """Tests for load_config()."""

    def test_env_only_loading(self, tmp_path):
        """When no config file exists, RTCHAT_* nested env vars populate config."""
        missing = tmp_path / "does_not_exist.json"
        env = {
            "RTCHAT_BUS__PORT": "9999",
            "RTCHAT_BUS__TOPIC": "team_room",
        }
        with patch.dict(os.environ, env, clear=False):
            config = load_config(config_path=missing)
        assert config.bus.port == 9999
        assert config.bus.topic == "team_room"

    def test_env_map_fills_missing_values(self, tmp_path):
        missing = tmp_path / "nope.json"
        env = {"RTCHAT_DIRECTORY_TIMEOUT": "2.5", "RTCHAT_STORE_PATH": str(tmp_path / "s.json")}
        with patch.dict(os.environ, env, clear=False):
            config = load_config(config_path=missing)
        assert config.directory.timeout == 2.5
        assert config.store_path == tmp_path / "s.json"

    def test_file_takes_precedence(self, tmp_path):
        """Values in config file win over env vars."""
        cfg_file = tmp_path / "config.json"
        cfg_file.write_text(json.dumps({"bus": {"port": 1234}}))
        env = {"RTCHAT_BUS_PORT": "9999"}
        with patch.dict(os.environ, env, clear=False):
            config = load_config(config_path=cfg_file)
        assert config.bus.port == 1234

    def test_empty_defaults(self, tmp_path):
        """With no file and no env vars, defaults apply."""
        missing = tmp_path / "nope.json"
        config = load_config(config_path=missing)
        assert config.bus.port == 47474
        assert config.store.key == "rtchat_v4_channels"
        assert config.directory.timeout == 5.0

    def test_env_path_override(self, tmp_path):
        """RTCHAT_CONFIG_PATH directs load_config to a custom file."""
        cfg_file = tmp_path / "alt.json"
        cfg_file.write_text(json.dumps({"bus": {"topic": "alt"}}))
        with patch.dict(os.environ, {"RTCHAT_CONFIG_PATH": str(cfg_file)}):
            config = load_config()
        assert config.bus.topic == "alt"

    def test_camel_case_keys(self, tmp_path):
        cfg_file = tmp_path / "config.json"
        cfg_file.write_text(json.dumps({"store": {"path": "/x/s.json", "key": "k"}, "log_level": "DEBUG"}))
        config = load_config(config_path=cfg_file)
        assert config.store.key == "k"
        assert config.log_level == "DEBUG"

    def test_corrupt_file_falls_back(self, tmp_path):
        """Corrupt JSON falls back to env / defaults."""
        cfg_file = tmp_path / "bad.json"
        cfg_file.write_text("NOT JSON!!!")
        config = load_config(config_path=cfg_file)
        assert config.bus.port == 47474


class TestSaveConfig:
    def test_save_then_load(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = Config()
        config.bus.topic = "saved"
        save_config(config, path)
        assert path.exists()
        assert load_config(path).bus.topic == "saved"
