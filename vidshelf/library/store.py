"""Persistent index of library entries.

The in-memory map is authoritative while the process runs; the JSON file at
the library root is rewritten (atomically) after every mutation so the two
never disagree once a call returns.
"""

from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional

from vidshelf.core.errors import (
    EntryNotFoundError,
    FileSystemError,
    MetadataDecodeError,
    PathTraversalError,
    PersistError,
)
from vidshelf.core.logger import setup_logger
from vidshelf.core.models import LibraryEntry
from vidshelf.library.fs import atomic_write_text, remove_file
from vidshelf.library.paths import is_within

logger = setup_logger(__name__)


def _absolute_paths(entry: LibraryEntry) -> LibraryEntry:
    # Older files store paths relative to the working directory
    changes = {}
    if entry.file_path and not os.path.isabs(entry.file_path):
        changes["file_path"] = os.path.abspath(entry.file_path)
    if entry.thumbnail_path and not os.path.isabs(entry.thumbnail_path):
        changes["thumbnail_path"] = os.path.abspath(entry.thumbnail_path)
    return replace(entry, **changes) if changes else entry


class MetadataStore:
    """Thread-safe id -> LibraryEntry index backed by one JSON file.

    A single lock serialises every public method: mutations exclude each
    other and readers never observe a half-applied change.
    """

    def __init__(self, library_dir: str | os.PathLike, filename: str = "metadata.json"):
        self.library_dir = Path(os.path.abspath(os.fspath(library_dir)))
        self.path = self.library_dir / filename
        self._entries: Dict[str, LibraryEntry] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace in-memory contents with the file's. Returns the entry count.

        A missing file means an empty store. On error the previous contents
        are kept.
        """
        with self._lock:
            if not self.path.exists():
                self._entries = {}
                logger.info(f"No metadata file at {self.path}, starting with an empty library")
                return 0

            try:
                raw = self.path.read_text(encoding="utf-8")
            except OSError as e:
                raise FileSystemError(f"Failed to read metadata file {self.path.name}", detail=str(e)) from e

            entries = self._decode(raw)
            self._entries = entries
            logger.info(f"Loaded {len(entries)} entries from {self.path}")
            return len(entries)

    def _decode(self, raw: str) -> Dict[str, LibraryEntry]:
        if not raw.strip():
            return {}
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MetadataDecodeError(f"Metadata file {self.path.name} is not valid JSON", detail=str(e)) from e

        if records is None:
            return {}
        if not isinstance(records, list):
            raise MetadataDecodeError(
                f"Metadata file {self.path.name} must hold a list of entries",
                detail=f"found {type(records).__name__}",
            )

        entries: Dict[str, LibraryEntry] = {}
        for index, record in enumerate(records):
            try:
                entry = LibraryEntry.from_dict(record)
            except (TypeError, ValueError) as e:
                raise MetadataDecodeError(
                    f"Metadata file {self.path.name} has an invalid entry at position {index}",
                    detail=str(e),
                ) from e
            entries[entry.id] = _absolute_paths(entry)
        return entries

    def save(self) -> None:
        """Write every entry to disk, replacing the file atomically."""
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        records = [self._entries[key].to_dict() for key in sorted(self._entries)]
        try:
            payload = json.dumps(records, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistError("Failed to encode library metadata", detail=str(e)) from e

        try:
            atomic_write_text(self.path, payload + "\n")
        except OSError as e:
            logger.error(f"Failed to save metadata to {self.path}: {e}")
            raise PersistError("Failed to save library metadata", detail=str(e)) from e
        logger.debug(f"Saved {len(records)} entries to {self.path}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_entries(self) -> List[LibraryEntry]:
        with self._lock:
            return list(self._entries.values())

    def search(self, query: str) -> List[LibraryEntry]:
        """Case-insensitive substring match on title, uploader and description."""
        needle = (query or "").casefold()
        with self._lock:
            if not needle:
                return list(self._entries.values())
            return [
                entry for entry in self._entries.values()
                if needle in entry.title.casefold()
                or needle in entry.uploader.casefold()
                or needle in entry.description.casefold()
            ]

    def get(self, entry_id: str) -> Optional[LibraryEntry]:
        with self._lock:
            return self._entries.get(entry_id)

    def file_paths(self) -> set[str]:
        with self._lock:
            return {entry.file_path for entry in self._entries.values()}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def put(self, entry: LibraryEntry) -> None:
        """Insert or replace by id and persist. Rolled back if the save fails."""
        self.put_many([entry])

    def put_many(self, entries: Iterable[LibraryEntry]) -> None:
        entries = list(entries)
        if not entries:
            return
        with self._lock:
            previous = dict(self._entries)
            for entry in entries:
                self._entries[entry.id] = entry
            try:
                self._save_locked()
            except PersistError:
                self._entries = previous
                raise
        logger.debug(f"Stored {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")

    def delete(self, entry_id: str) -> LibraryEntry:
        """Remove an entry, persist, then remove its media file and thumbnail.

        Nothing on disk is touched unless the save succeeds. A media file that
        is already gone is tolerated; any other removal failure restores the
        entry and is raised. Thumbnail removal is best effort.
        """
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise EntryNotFoundError(f"Video not found: {entry_id}")

            if not is_within(self.library_dir, entry.file_path):
                raise PathTraversalError(f"Refusing to delete a file outside the library: {entry.filename}")

            del self._entries[entry_id]
            try:
                self._save_locked()
            except PersistError:
                self._entries[entry_id] = entry
                raise

            try:
                remove_file(Path(entry.file_path), missing_ok=True)
            except OSError as e:
                self._entries[entry_id] = entry
                self._save_locked()
                raise FileSystemError(f"Failed to remove video file {entry.filename}", detail=str(e)) from e

            if entry.thumbnail_path:
                self._remove_thumbnail(entry)

        logger.info(f"Deleted video {entry_id} ({entry.filename})")
        return entry

    def _remove_thumbnail(self, entry: LibraryEntry) -> None:
        if not is_within(self.library_dir, entry.thumbnail_path):
            logger.warning(f"Skipping thumbnail outside the library for {entry.id}: {entry.thumbnail_path}")
            return
        try:
            remove_file(Path(entry.thumbnail_path), missing_ok=True)
        except OSError as e:
            logger.debug(f"Ignoring thumbnail removal failure for {entry.id}: {e}")
