"""Filesystem helpers for crash-safe writes and tolerant removal."""

import os
import tempfile
from pathlib import Path

from vidshelf.core.logger import setup_logger

logger = setup_logger(__name__)


def atomic_write_text(dest_path: Path, text: str, encoding: str = "utf-8") -> Path:
    """Replace ``dest_path`` with ``text`` without ever exposing a partial file.

    The data goes to a temp file in the destination directory (same
    filesystem), is flushed and fsync'd, then ``os.replace``d over the target.
    The temp file is removed on any failure.

    Raises:
        OSError: if the temp file cannot be written or renamed
    """
    dest_path = Path(dest_path)
    fd, temp_name = tempfile.mkstemp(
        dir=str(dest_path.parent),
        prefix=f".{dest_path.name}.",
        suffix=".tmp",
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, dest_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return dest_path


def remove_file(path: Path, missing_ok: bool = True) -> bool:
    """Remove a single file. Returns True if something was deleted.

    Raises:
        FileNotFoundError: if the file is missing and ``missing_ok`` is False
        OSError: for any other failure (permissions, path is a directory, ...)
    """
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        if not missing_ok:
            raise
        logger.debug(f"Nothing to remove at {path}")
        return False


def ensure_directory(path: Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
