"""
Tests for store configuration.
"""

import tomllib

import pytest

from odinsource.config import (
    CONFIG_FILENAME,
    CONFIG_VERSION,
    StoreConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


class TestConfig:

    def test_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path / "store")
        assert config.config_path.exists()
        assert config.auto_create_tags is True
        assert config.copy_files is True
        assert config.extensions == ["pdf"]
        assert config.viewer_command

        with open(config.config_path, "rb") as f:
            data = tomllib.load(f)
        assert data["store"]["version"] == CONFIG_VERSION
        assert data["tags"]["auto_create"] is True

    def test_round_trip(self, tmp_path):
        config = StoreConfig(
            path=tmp_path,
            auto_create_tags=False,
            copy_files=False,
            extensions=["pdf", "djvu"],
            viewer_command="zathura --fork",
        )
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.auto_create_tags is False
        assert loaded.copy_files is False
        assert loaded.extensions == ["pdf", "djvu"]
        assert loaded.viewer_command == "zathura --fork"
        assert loaded.created == config.created

    def test_existing_config_is_kept(self, tmp_path):
        save_config(StoreConfig(path=tmp_path, auto_create_tags=False))
        assert load_or_create_config(tmp_path).auto_create_tags is False

    def test_partial_config_gets_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[documents]\nextensions = [".PDF", "epub"]\n')
        config = load_config(tmp_path)
        assert config.extensions == ["pdf", "epub"]
        assert config.auto_create_tags is True

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(f"[store]\nversion = {CONFIG_VERSION + 1}\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_bad_extensions(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[documents]\nextensions = "pdf"\n')
        with pytest.raises(ValueError, match="extensions"):
            load_config(tmp_path)

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_default_store_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ODINSOURCE_STORE_PATH", str(tmp_path / "elsewhere"))
        assert get_default_store_path() == (tmp_path / "elsewhere").resolve()

    def test_default_store_path_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("ODINSOURCE_STORE_PATH")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_default_store_path() == tmp_path / ".odinsource"
