"""
Configuration for FlingIt zero-click file relay
"""
import os
import sys
from pathlib import Path

# Network Settings
HOST = "0.0.0.0"
PORT = int(os.environ.get("PORT", 3000))
BUFFER_SIZE = 65536  # socket recv size
CONNECT_TIMEOUT = 10.0  # seconds for client connect
READ_TIMEOUT = None  # server-side idle read timeout (None = wait forever)

# Transfer Settings
CHUNK_SIZE = 16 * 1024  # 16KB per file-chunk frame
FILE_PAUSE_SECONDS = 0.1  # idle pause between files of a batch

# Rooms
MAX_ROOM_SIZE = 2  # 0 = unbounded fan-out
ROOM_PREFIX = "network-"

# Relay Discovery
SERVICE_TYPE = "_flingit._tcp.local."
SERVER_ENV_VAR = "FLINGIT_SERVER"


def _data_dir_path() -> Path:
    if sys.platform == 'win32':
        base = Path(os.environ.get('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Application Support'
    else:
        base = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))
    return base / 'FlingIt'


def get_data_dir() -> Path:
    """Platform-specific directory for user data (config, logs)."""
    d = _data_dir_path()
    d.mkdir(parents=True, exist_ok=True)
    return d


def get_download_dir() -> Path:
    """Default directory received files are saved to"""
    return Path.home() / 'Downloads' / 'FlingIt'


DATA_DIR = _data_dir_path()

# Logging
LOG_LEVEL = "INFO"
LOG_FILE = DATA_DIR / "flingit.log"
