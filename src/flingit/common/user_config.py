"""
User Configuration Management

Manages user-editable settings stored in a JSON file.
Settings can be changed with 'flingit config --set KEY VALUE'.
"""
import json
import logging
from pathlib import Path
from typing import Any, Optional, List
from dataclasses import dataclass, asdict, field

from flingit import config

logger = logging.getLogger(__name__)

CONFIG_FILE = config.DATA_DIR / "config.json"

KB = 1024


@dataclass
class FlingConfig:
    """User configuration for FlingIt"""

    # Where received files are written
    download_dir: str = field(default_factory=lambda: str(config.get_download_dir()))

    # Sending
    chunk_size_kb: int = config.CHUNK_SIZE // KB
    file_pause_ms: int = int(config.FILE_PAUSE_SECONDS * 1000)

    # Relay server
    max_room_size: int = config.MAX_ROOM_SIZE  # 0 = unbounded
    read_timeout: float = 0.0  # seconds, 0 = no timeout
    advertise: bool = True  # announce the relay over mDNS

    # Client
    auto_discovery: bool = True  # locate the relay over mDNS

    @property
    def chunk_size(self) -> int:
        return self.chunk_size_kb * KB

    @property
    def file_pause(self) -> float:
        return self.file_pause_ms / 1000.0

    def validate(self) -> List[str]:
        """Return a list of problems; empty if valid"""
        errors = []
        if not isinstance(self.chunk_size_kb, int) or self.chunk_size_kb < 1:
            errors.append("chunk_size_kb must be a positive integer")
        elif self.chunk_size_kb > 512:
            errors.append("chunk_size_kb must not exceed 512 (relay frame limit)")
        if not isinstance(self.file_pause_ms, int) or self.file_pause_ms < 0:
            errors.append("file_pause_ms must be a non-negative integer")
        elif self.file_pause_ms > 10000:
            errors.append("file_pause_ms must not exceed 10000")
        if not isinstance(self.max_room_size, int) or self.max_room_size < 0 or self.max_room_size == 1:
            errors.append("max_room_size must be 0 (unbounded) or at least 2")
        if not isinstance(self.read_timeout, (int, float)) or self.read_timeout < 0:
            errors.append("read_timeout must be a non-negative number")
        if not isinstance(self.download_dir, str) or not self.download_dir:
            errors.append("download_dir must be a non-empty path")
        return errors

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'FlingConfig':
        """Create config from dict, using defaults for missing keys"""
        defaults = cls()
        for key, value in data.items():
            if hasattr(defaults, key) and not isinstance(getattr(type(defaults), key, None), property):
                setattr(defaults, key, value)
        return defaults


def coerce_value(current: Any, raw: str) -> Any:
    """Convert a CLI string to the type of the current value"""
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ('1', 'true', 'yes', 'on'):
            return True
        if lowered in ('0', 'false', 'no', 'off'):
            return False
        raise ValueError(f"Expected a boolean, got {raw!r}")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


class ConfigManager:
    """Manages loading, saving, and accessing user configuration"""

    _instance: Optional['ConfigManager'] = None
    _config: Optional[FlingConfig] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load()

    def load(self, config_path: Path = None) -> FlingConfig:
        """Load configuration from file"""
        path = config_path or CONFIG_FILE

        if path.exists():
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
                loaded = FlingConfig.from_dict(data)
                errors = loaded.validate()
                if errors:
                    logger.warning(f"Invalid config ({'; '.join(errors)}), using defaults")
                    loaded = FlingConfig()
                self._config = loaded
                logger.info(f"Loaded config from {path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
                self._config = FlingConfig()
        else:
            logger.info("No config file found, using defaults")
            self._config = FlingConfig()

        return self._config

    def save(self, config_path: Path = None) -> bool:
        """Save configuration to file"""
        path = config_path or CONFIG_FILE

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                json.dump(self._config.to_dict(), f, indent=2)
            logger.info(f"Saved config to {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get(self) -> FlingConfig:
        """Get current configuration"""
        if self._config is None:
            self.load()
        return self._config

    def set(self, key: str, value: Any, config_path: Path = None) -> bool:
        """Set a configuration value, rejecting values that fail validation"""
        if key not in self._config.to_dict():
            logger.error(f"Unknown config key: {key}")
            return False

        if isinstance(value, str):
            try:
                value = coerce_value(getattr(self._config, key), value)
            except ValueError as e:
                logger.error(f"Invalid value for {key}: {e}")
                return False

        candidate = FlingConfig.from_dict({**self._config.to_dict(), key: value})
        errors = candidate.validate()
        if errors:
            logger.error(f"Invalid value for {key}: {'; '.join(errors)}")
            return False

        self._config = candidate
        return self.save(config_path)

    def reset(self, config_path: Path = None) -> FlingConfig:
        """Reset to default configuration"""
        self._config = FlingConfig()
        self.save(config_path)
        return self._config


def get_config() -> FlingConfig:
    """Get the current user configuration"""
    return ConfigManager().get()


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance"""
    return ConfigManager()


def print_config():
    """Print current configuration in a readable format"""
    cfg = get_config()

    print("\n" + "=" * 50)
    print("  FlingIt - Configuration")
    print("=" * 50)

    print("\n  Transfer:")
    print(f"    Download Dir:   {cfg.download_dir}")
    print(f"    Chunk Size:     {cfg.chunk_size_kb} KB")
    print(f"    File Pause:     {cfg.file_pause_ms} ms")

    print("\n  Relay Server:")
    print(f"    Max Room Size:  {cfg.max_room_size or 'unbounded'}")
    print(f"    Read Timeout:   {cfg.read_timeout or 'none'}")
    print(f"    Advertise:      {'ON' if cfg.advertise else 'OFF'}")

    print("\n  Client:")
    print(f"    Auto-Discovery: {'ON' if cfg.auto_discovery else 'OFF'}")

    print(f"\n  Config File: {CONFIG_FILE}")
    print("=" * 50 + "\n")
