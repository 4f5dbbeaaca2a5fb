"""
Unit tests for the user configuration.
"""

import logging
from pathlib import Path

import yaml

from tracksync.utils import config as config_module
from tracksync.utils.config import Config, get_config


class TestConfig:
    def test_defaults_when_file_missing(self, tmp_path: Path) -> None:
        config = Config(tmp_path / "missing.yaml")

        assert config.get("log_level") == "INFO"
        assert config.get_max_workers() == 4
        assert config.get_debounce_seconds() == 1.0
        assert config.get("embed_artwork") is True

    def test_file_values_override_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"max_workers": 8, "log_level": "debug"}))

        config = Config(path)

        assert config.get_max_workers() == 8
        assert config.get_log_level() == logging.DEBUG
        assert config.get("watch_debounce_seconds") == 1.0

    def test_paths_expand_home(self, tmp_path: Path) -> None:
        config = Config(tmp_path / "missing.yaml")

        assert config.get_database_path() == Path.home() / ".local/share/tracksync/catalog.db"
        assert config.get_settings_path() == Path.home() / ".config/tracksync/settings.yaml"

    def test_invalid_values_fall_back(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {"max_workers": "lots", "watch_debounce_seconds": "soon", "log_level": "LOUD"}
            )
        )

        config = Config(path)

        assert config.get_max_workers() == 4
        assert config.get_debounce_seconds() == 1.0
        assert config.get_log_level() == logging.INFO

    def test_corrupt_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("max_workers: [unclosed")

        assert Config(path).get_max_workers() == 4

    def test_get_config_returns_shared_instance(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(config_module, "_config", None)
        monkeypatch.setattr(Config, "DEFAULT_CONFIG_PATH", tmp_path / "config.yaml")

        first = get_config()

        assert first is get_config()
        assert first.config_path == tmp_path / "config.yaml"
