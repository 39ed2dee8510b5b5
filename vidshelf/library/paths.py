"""Path safety and file naming rules for the library root.

``resolve_within`` is the single trust boundary between caller-supplied path
segments and the filesystem: every read, listing, download-to-client and
delete goes through it.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable

from vidshelf.core.errors import PathTraversalError, ValidationError

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".webm", ".avi", ".mov", ".flv", ".m4v")
THUMBNAIL_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

# yt-dlp leaves these behind while a download is still in flight
PARTIAL_MARKERS = (".part", ".ytdl", ".temp.", ".tmp")

_RESERVED_CHARS = '/\\:*?"<>|'
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def _contains(root: Path, path: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def resolve_within(root: str | os.PathLike, requested: str | os.PathLike) -> str:
    """Resolve ``requested`` against ``root`` and return the absolute path.

    The requested path is cleaned before joining, and an absolute request is
    treated as relative to the root. Raises PathTraversalError when the result
    (or its symlink-resolved form) is neither the root itself nor below it.
    """
    requested_str = os.fspath(requested)
    if "\x00" in requested_str:
        raise ValidationError("Path contains a NUL byte")

    root_path = Path(os.path.abspath(os.fspath(root)))
    cleaned = os.path.normpath(requested_str or ".")
    cleaned = cleaned.lstrip("/\\") or "."
    full_path = Path(os.path.abspath(root_path / cleaned))

    if not _contains(root_path, full_path):
        raise PathTraversalError(f"Path traversal attempt detected: {requested_str}")

    # A symlink inside the library must not lead out of it either
    if not _contains(root_path.resolve(), full_path.resolve()):
        raise PathTraversalError(f"Path resolves outside the library: {requested_str}")

    return str(full_path)


def is_within(root: str | os.PathLike, path: str | os.PathLike) -> bool:
    """True if the absolute ``path`` lies inside ``root``, symlinks included."""
    path_str = os.fspath(path)
    if not path_str or "\x00" in path_str:
        return False
    root_path = Path(os.path.abspath(os.fspath(root)))
    full_path = Path(os.path.abspath(path_str))
    return _contains(root_path, full_path) and _contains(root_path.resolve(), full_path.resolve())


def sanitize_filename(name: str) -> str:
    """Make ``name`` safe to use as a single file name in the library root.

    Path separators, reserved characters, control characters and ``..``
    sequences are replaced with ``_``.
    """
    result = _CONTROL_CHARS_RE.sub("_", name or "")
    for char in _RESERVED_CHARS:
        result = result.replace(char, "_")
    while ".." in result:
        result = result.replace("..", "_")
    return result.strip()


def has_extension(filename: str, extensions: Iterable[str]) -> bool:
    ext = os.path.splitext(filename)[1].lower()
    return ext in extensions


def is_partial_file(filename: str) -> bool:
    lowered = filename.lower()
    return any(marker in lowered for marker in PARTIAL_MARKERS)


def is_media_file(filename: str) -> bool:
    return has_extension(filename, MEDIA_EXTENSIONS) and not is_partial_file(filename)
