"""
Tests for appliance_installer.config.settings module.

This test suite covers:
- Settings loading and saving
- Default settings initialization
- Settings persistence to JSON file
- Integer conversion helper (get_int)
- Error handling for corrupted settings files
"""

import json

from appliance_installer.config import settings


class TestLoadSettings:
    """Tests for load_settings() function."""

    def test_load_defaults_when_no_file(self, tmp_path, monkeypatch):
        """Test that default settings are loaded when file doesn't exist."""
        monkeypatch.setattr(settings, "SETTINGS_PATH", tmp_path / "missing" / "settings.json")

        settings.settings_store.values = {}
        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_load_merges_with_defaults(self, temp_settings_file):
        """Test that loaded settings merge with defaults."""
        temp_settings_file.write_text(json.dumps({"min_disk_size": 4 * 1024**3}))

        settings.settings_store.values = {}
        settings.load_settings()

        assert settings.get_setting("min_disk_size") == 4 * 1024**3
        assert settings.get_setting("install_media_label") == "INSTALLER"

    def test_load_handles_corrupted_json(self, temp_settings_file):
        """Test handling of corrupted JSON file."""
        temp_settings_file.write_text("{invalid json")

        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_load_ignores_non_object(self, temp_settings_file):
        temp_settings_file.write_text(json.dumps(["not", "a", "dict"]))

        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS


class TestSaveSettings:
    def test_set_setting_persists(self, temp_settings_file):
        settings.set_setting("system_image", "/srv/images/system.img")

        data = json.loads(temp_settings_file.read_text())
        assert data["system_image"] == "/srv/images/system.img"

    def test_save_creates_parent_directory(self, tmp_path, monkeypatch):
        settings_file = tmp_path / "new" / "dir" / "settings.json"
        monkeypatch.setattr(settings, "SETTINGS_PATH", settings_file)

        settings.save_settings()

        assert settings_file.exists()


class TestGetInt:
    def test_returns_stored_integer(self):
        settings.settings_store.values["copy_chunk_size"] = 65536
        assert settings.get_int("copy_chunk_size", 1) == 65536

    def test_converts_string(self):
        settings.settings_store.values["min_disk_size"] = "1024"
        assert settings.get_int("min_disk_size", 1) == 1024

    def test_falls_back_on_garbage(self):
        settings.settings_store.values["min_disk_size"] = "eight gigs"
        assert settings.get_int("min_disk_size", 42) == 42

    def test_falls_back_on_none(self):
        settings.settings_store.values["min_disk_size"] = None
        assert settings.get_int("min_disk_size", 42) == 42

    def test_missing_key_uses_default(self):
        assert settings.get_int("no_such_key", 7) == 7
