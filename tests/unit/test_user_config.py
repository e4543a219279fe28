"""
Unit tests for user_config.py - Configuration management
"""
import pytest
import json
from pathlib import Path

from flingit.common.user_config import FlingConfig, ConfigManager, coerce_value


class TestFlingConfigValidation:
    """Tests for FlingConfig validation"""

    def test_default_config_is_valid(self):
        config = FlingConfig()
        errors = config.validate()
        assert errors == []

    def test_zero_chunk_size_invalid(self):
        errors = FlingConfig(chunk_size_kb=0).validate()
        assert any("chunk_size_kb" in e for e in errors)

    def test_chunk_size_over_frame_limit(self):
        errors = FlingConfig(chunk_size_kb=2048).validate()
        assert any("chunk_size_kb" in e for e in errors)

    def test_negative_file_pause_invalid(self):
        errors = FlingConfig(file_pause_ms=-1).validate()
        assert any("file_pause_ms" in e for e in errors)

    def test_room_size_of_one_invalid(self):
        errors = FlingConfig(max_room_size=1).validate()
        assert any("max_room_size" in e for e in errors)

    @pytest.mark.parametrize("size", [0, 2, 5])
    def test_room_sizes_valid(self, size):
        assert FlingConfig(max_room_size=size).validate() == []

    def test_negative_read_timeout_invalid(self):
        errors = FlingConfig(read_timeout=-1.0).validate()
        assert any("read_timeout" in e for e in errors)

    def test_empty_download_dir_invalid(self):
        errors = FlingConfig(download_dir="").validate()
        assert any("download_dir" in e for e in errors)


class TestFlingConfigSerialization:
    """Tests for FlingConfig serialization"""

    def test_to_dict(self):
        data = FlingConfig(chunk_size_kb=32, advertise=False).to_dict()
        assert data["chunk_size_kb"] == 32
        assert data["advertise"] is False

    def test_from_dict(self):
        config = FlingConfig.from_dict({"max_room_size": 0, "file_pause_ms": 250})
        assert config.max_room_size == 0
        assert config.file_pause_ms == 250
        # Default values preserved for missing keys
        assert config.auto_discovery is True

    def test_from_dict_ignores_unknown_keys(self):
        config = FlingConfig.from_dict({"advertise": False, "unknown_key": 1})
        assert config.advertise is False
        assert not hasattr(config, "unknown_key")

    def test_from_dict_ignores_computed_properties(self):
        config = FlingConfig.from_dict({"chunk_size": 1})
        assert config.chunk_size == FlingConfig().chunk_size


class TestFlingConfigProperties:
    """Tests for FlingConfig computed properties"""

    def test_chunk_size_bytes(self):
        assert FlingConfig(chunk_size_kb=16).chunk_size == 16 * 1024

    def test_file_pause_seconds(self):
        assert FlingConfig(file_pause_ms=250).file_pause == 0.25


class TestCoerceValue:
    """Tests for converting CLI strings"""

    @pytest.mark.parametrize("raw,expected", [("on", True), ("FALSE", False), ("1", True), ("no", False)])
    def test_booleans(self, raw, expected):
        assert coerce_value(True, raw) is expected

    def test_bad_boolean(self):
        with pytest.raises(ValueError):
            coerce_value(False, "maybe")

    def test_numbers(self):
        assert coerce_value(2, "0") == 0
        assert coerce_value(0.0, "2.5") == 2.5

    def test_bad_number(self):
        with pytest.raises(ValueError):
            coerce_value(2, "two")

    def test_strings_unchanged(self):
        assert coerce_value("/tmp", "/data") == "/data"


class TestConfigManager:
    """Tests for ConfigManager"""

    def test_load_defaults_if_missing(self, temp_dir):
        config_path = temp_dir / "config.json"

        manager = ConfigManager()
        manager._config = None  # Reset singleton state
        config = manager.load(config_path)

        assert config == FlingConfig()
        assert not config_path.exists()

    def test_load_existing_config(self, temp_dir):
        config_path = temp_dir / "config.json"
        config_path.write_text(json.dumps({"max_room_size": 0, "chunk_size_kb": 64}))

        manager = ConfigManager()
        manager._config = None
        config = manager.load(config_path)

        assert config.max_room_size == 0
        assert config.chunk_size_kb == 64

    def test_load_fixes_invalid_values(self, temp_dir):
        config_path = temp_dir / "config.json"
        config_path.write_text(json.dumps({"chunk_size_kb": -10}))

        manager = ConfigManager()
        manager._config = None
        config = manager.load(config_path)

        assert config.chunk_size_kb == FlingConfig().chunk_size_kb

    def test_load_corrupt_file(self, temp_dir):
        config_path = temp_dir / "config.json"
        config_path.write_text("{not json")

        manager = ConfigManager()
        manager._config = None
        assert manager.load(config_path) == FlingConfig()

    def test_save_and_load_roundtrip(self, temp_dir):
        config_path = temp_dir / "nested" / "config.json"

        manager = ConfigManager()
        manager._config = FlingConfig(advertise=False, file_pause_ms=0)
        assert manager.save(config_path) is True

        manager2 = ConfigManager()
        manager2._config = None
        config = manager2.load(config_path)

        assert config.advertise is False
        assert config.file_pause_ms == 0

    def test_set_coerces_string_value(self, temp_dir):
        config_path = temp_dir / "config.json"
        manager = ConfigManager()
        manager._config = FlingConfig()

        assert manager.set("max_room_size", "0", config_path) is True
        assert manager.get().max_room_size == 0
        assert json.loads(config_path.read_text())["max_room_size"] == 0

    def test_set_rejects_invalid_value(self, temp_dir):
        config_path = temp_dir / "config.json"
        manager = ConfigManager()
        manager._config = FlingConfig()

        assert manager.set("max_room_size", "1", config_path) is False
        assert manager.get().max_room_size == 2
        assert not config_path.exists()

    def test_set_unknown_key(self, temp_dir):
        manager = ConfigManager()
        manager._config = FlingConfig()

        result = manager.set("unknown_key", "value", temp_dir / "config.json")
        assert result is False

    def test_reset(self, temp_dir):
        config_path = temp_dir / "config.json"
        manager = ConfigManager()
        manager._config = FlingConfig(max_room_size=0)

        config = manager.reset(config_path)
        assert config == FlingConfig()
        assert config_path.exists()

    def test_singleton(self):
        assert ConfigManager() is ConfigManager()
