"""Heuristic discovery of the files yt-dlp produced.

yt-dlp applies its own filename sanitisation, so the exact output name cannot
always be predicted. Resolution order, first hit wins:

1. ``<title><ext>``
2. ``<sanitized title><ext>``
3. ``<id><ext>``
4. any file whose name contains the title or id (case-insensitive)
5. media only: the newest file modified within ``recent_window`` seconds

Step 5 can match an unrelated file that happened to land at the same time; it
only runs when no name-based match exists.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Iterator, Optional, Sequence

from vidshelf.core.errors import PathTraversalError, ValidationError
from vidshelf.core.logger import setup_logger
from vidshelf.library.paths import (
    MEDIA_EXTENSIONS,
    THUMBNAIL_EXTENSIONS,
    has_extension,
    is_partial_file,
    is_within,
    resolve_within,
    sanitize_filename,
)

logger = setup_logger(__name__)

DEFAULT_RECENT_WINDOW = 10 * 60


class FileLocator:
    """Finds media and thumbnail files for a title/id pair under a library root."""

    def __init__(
        self,
        library_dir: str | os.PathLike,
        media_extensions: Sequence[str] = MEDIA_EXTENSIONS,
        thumbnail_extensions: Sequence[str] = THUMBNAIL_EXTENSIONS,
        recent_window: float = DEFAULT_RECENT_WINDOW,
    ):
        self.library_dir = os.path.abspath(os.fspath(library_dir))
        self.media_extensions = tuple(ext.lower() for ext in media_extensions)
        self.thumbnail_extensions = tuple(ext.lower() for ext in thumbnail_extensions)
        self.recent_window = recent_window

    def locate_media(self, title: str, video_id: str) -> Optional[str]:
        """Absolute path of the media file, or None when nothing plausible exists."""
        found = self._locate(title, video_id, self.media_extensions)
        if found:
            return found

        found = self._find_recent(self.media_extensions)
        if found:
            logger.warning(
                f"No name match for '{title}' ({video_id}); falling back to recent file {os.path.basename(found)}"
            )
        return found

    def locate_thumbnail(self, title: str, video_id: str) -> str:
        """Absolute path of the thumbnail, or "" when there is none."""
        return self._locate(title, video_id, self.thumbnail_extensions) or ""

    def _locate(self, title: str, video_id: str, extensions: Sequence[str]) -> Optional[str]:
        for stem in (title, sanitize_filename(title), video_id):
            found = self._find_exact(stem, extensions)
            if found:
                return found
        return self._find_by_name(title, video_id, extensions)

    def _find_exact(self, stem: str, extensions: Sequence[str]) -> Optional[str]:
        if not stem:
            return None
        for ext in extensions:
            try:
                candidate = resolve_within(self.library_dir, stem + ext)
            except (PathTraversalError, ValidationError):
                return None
            if os.path.isfile(candidate):
                return candidate
        return None

    def _find_by_name(self, title: str, video_id: str, extensions: Sequence[str]) -> Optional[str]:
        needles = [needle.lower() for needle in (title, video_id) if needle]
        if not needles:
            return None
        for path, filename in self._walk(extensions):
            lowered = filename.lower()
            if any(needle in lowered for needle in needles):
                return path
        return None

    def _find_recent(self, extensions: Sequence[str]) -> Optional[str]:
        if self.recent_window <= 0:
            return None
        cutoff = time.time() - self.recent_window
        newest: Optional[str] = None
        newest_mtime = cutoff
        for path, _ in self._walk(extensions):
            try:
                mtime = Path(path).stat().st_mtime
            except OSError:
                continue
            if mtime >= newest_mtime:
                newest, newest_mtime = path, mtime
        return newest

    def _walk(self, extensions: Sequence[str]) -> Iterator[tuple[str, str]]:
        """Yield (absolute path, filename) of qualifying files in a stable order."""
        root = Path(self.library_dir)
        for path in sorted(root.rglob("*")):
            if is_partial_file(path.name) or not has_extension(path.name, extensions):
                continue
            if not path.is_file():
                continue
            if path.is_symlink() and not is_within(root, path):
                continue
            yield str(path), path.name
