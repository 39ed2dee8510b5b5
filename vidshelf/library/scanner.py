"""Discovery of media files that exist in the library but are not indexed."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Collection, List, Optional

from vidshelf.core.logger import setup_logger
from vidshelf.core.models import LibraryEntry
from vidshelf.library.locator import FileLocator
from vidshelf.library.paths import is_media_file, is_within

logger = setup_logger(__name__)

EXISTING_DESCRIPTION = "Existing video file"


def _entry_id(stem: str, mtime: float, ext: str, taken: Collection[str]) -> str:
    entry_id = f"existing_{stem}_{int(mtime)}"
    if entry_id in taken:
        entry_id = f"{entry_id}_{ext.lstrip('.').lower()}"
    return entry_id


def scan_library(
    root: str | os.PathLike,
    known_paths: Collection[str],
    locator: FileLocator,
    metadata_filename: str = "metadata.json",
    known_ids: Optional[Collection[str]] = None,
) -> List[LibraryEntry]:
    """Build entries for every unindexed media file under ``root``.

    Files already listed in ``known_paths`` (absolute paths), the metadata
    file itself and partial downloads are skipped. The result is
    deterministic for an unchanged tree, so running the scan again after
    registering its output yields nothing.
    """
    root_path = Path(os.path.abspath(os.fspath(root)))
    known = set(known_paths)
    taken = set(known_ids or ())
    found: List[LibraryEntry] = []

    for path in sorted(root_path.rglob("*")):
        if path.name == metadata_filename or not is_media_file(path.name):
            continue
        if str(path) in known or not path.is_file():
            continue
        if path.is_symlink() and not is_within(root_path, path):
            logger.warning(f"Skipping symlink that leads outside the library: {path}")
            continue

        try:
            stat = path.stat()
        except OSError as e:
            logger.warning(f"Skipping unreadable file {path}: {e}")
            continue

        entry_id = _entry_id(path.stem, stat.st_mtime, path.suffix, taken)
        taken.add(entry_id)

        found.append(LibraryEntry(
            id=entry_id,
            title=path.stem,
            filename=path.name,
            file_path=str(path),
            file_size=stat.st_size,
            thumbnail_path=locator.locate_thumbnail(path.stem, entry_id),
            description=EXISTING_DESCRIPTION,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        ))

    if found:
        logger.info(f"Found {len(found)} unindexed video file(s) in {root_path}")
    return found
