"""Environment-driven settings, resolved once at import time."""

import os
from pathlib import Path


def string_to_bool(value: str) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes", "on", "y")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Library
LIBRARY_DIR = Path(os.getenv("LIBRARY_DIR", "./downloads"))
METADATA_FILENAME = os.getenv("METADATA_FILENAME", "metadata.json")

# External downloader
YTDLP_BINARY = os.getenv("YTDLP_BINARY", "yt-dlp")
METADATA_TIMEOUT = _env_int("METADATA_TIMEOUT", 120)
DOWNLOAD_TIMEOUT = _env_int("DOWNLOAD_TIMEOUT", 30 * 60)
EMBED_METADATA = string_to_bool(os.getenv("EMBED_METADATA", "true"))
STDERR_TAIL_LINES = _env_int("STDERR_TAIL_LINES", 50)

# Download scheduling
MAX_CONCURRENT_DOWNLOADS = max(1, _env_int("MAX_CONCURRENT_DOWNLOADS", 3))
MAX_PENDING_DOWNLOADS = max(1, _env_int("MAX_PENDING_DOWNLOADS", 20))
PROGRESS_BUFFER_SIZE = max(1, _env_int("PROGRESS_BUFFER_SIZE", 256))
FINISHED_TASK_HISTORY = max(0, _env_int("FINISHED_TASK_HISTORY", 100))

# File discovery
RECENT_FILE_WINDOW = _env_int("RECENT_FILE_WINDOW", 10 * 60)

# Logging
LOG_ROOT = Path(os.getenv("LOG_ROOT", "/var/log"))
LOG_DIR = LOG_ROOT / "vidshelf"
LOG_FILE = LOG_DIR / "vidshelf.log"
ENABLE_LOGGING = string_to_bool(os.getenv("ENABLE_LOGGING", "true"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Web server
FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = _env_int("FLASK_PORT", 8080)
DEBUG = string_to_bool(os.getenv("DEBUG", "false"))
