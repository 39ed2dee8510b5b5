"""Inbound operations on the video library.

``LibraryService`` wires the store, scanner, locator and download
orchestrator together and is the only object the serving layer talks to.
"""

from __future__ import annotations

import os
from typing import List, Optional

from vidshelf.config import env
from vidshelf.core.errors import (
    EntryNotFoundError,
    FileSystemError,
    PathTraversalError,
    ValidationError,
)
from vidshelf.core.logger import setup_logger
from vidshelf.core.models import LibraryEntry, sort_entries
from vidshelf.download.orchestrator import DownloadOrchestrator, DownloadTask
from vidshelf.download.process import YtDlpRunner
from vidshelf.library.fs import ensure_directory
from vidshelf.library.locator import FileLocator
from vidshelf.library.paths import is_within, resolve_within
from vidshelf.library.scanner import scan_library
from vidshelf.library.store import MetadataStore

logger = setup_logger(__name__)


class LibraryService:

    def __init__(
        self,
        library_dir: str | os.PathLike,
        store: Optional[MetadataStore] = None,
        locator: Optional[FileLocator] = None,
        runner: Optional[YtDlpRunner] = None,
        orchestrator: Optional[DownloadOrchestrator] = None,
        metadata_filename: str = env.METADATA_FILENAME,
    ):
        self.library_dir = os.path.abspath(os.fspath(library_dir))
        self.metadata_filename = metadata_filename
        self.store = store if store is not None else MetadataStore(self.library_dir, metadata_filename)
        self.locator = locator if locator is not None else FileLocator(
            self.library_dir, recent_window=env.RECENT_FILE_WINDOW
        )
        self.runner = runner if runner is not None else YtDlpRunner(
            binary=env.YTDLP_BINARY,
            metadata_timeout=env.METADATA_TIMEOUT,
            download_timeout=env.DOWNLOAD_TIMEOUT,
            embed_metadata=env.EMBED_METADATA,
            stderr_tail_lines=env.STDERR_TAIL_LINES,
        )
        self.orchestrator = orchestrator if orchestrator is not None else DownloadOrchestrator(
            self.store,
            self.locator,
            self.runner,
            self.library_dir,
            max_workers=env.MAX_CONCURRENT_DOWNLOADS,
            max_pending=env.MAX_PENDING_DOWNLOADS,
            progress_buffer_size=env.PROGRESS_BUFFER_SIZE,
            finished_history=env.FINISHED_TASK_HISTORY,
        )

    @classmethod
    def from_env(cls) -> "LibraryService":
        return cls(env.LIBRARY_DIR)

    def start(self) -> int:
        """Create the library root, load the index and register unindexed files.

        Returns the number of newly registered files.
        """
        try:
            ensure_directory(self.library_dir)
        except OSError as e:
            raise FileSystemError(f"Cannot create library directory {self.library_dir}", detail=str(e)) from e

        self.store.load()
        discovered = scan_library(
            self.library_dir,
            self.store.file_paths(),
            self.locator,
            self.metadata_filename,
            known_ids={entry.id for entry in self.store.list_entries()},
        )
        self.store.put_many(discovered)
        logger.info(f"Library ready at {self.library_dir}: {len(self.store)} videos ({len(discovered)} new)")
        return len(discovered)

    def shutdown(self, wait: bool = True) -> None:
        self.orchestrator.shutdown(wait=wait)

    # Library

    def list_entries(self, query: Optional[str] = None, sort: Optional[str] = None) -> List[LibraryEntry]:
        entries = self.store.search(query) if query else self.store.list_entries()
        return sort_entries(entries, sort)

    def get_entry(self, entry_id: str) -> Optional[LibraryEntry]:
        if not entry_id or not entry_id.strip():
            raise ValidationError("Video id is required")
        return self.store.get(entry_id)

    def delete_entry(self, entry_id: str) -> LibraryEntry:
        if not entry_id or not entry_id.strip():
            raise ValidationError("Video id is required")
        return self.store.delete(entry_id)

    def resolve_entry_file(self, entry_id: str, thumbnail: bool = False) -> str:
        """Absolute path of an entry's media file (or thumbnail) that is safe to serve."""
        entry = self.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Video not found: {entry_id}")

        path = entry.thumbnail_path if thumbnail else entry.file_path
        if not path:
            raise EntryNotFoundError(f"Thumbnail not found for video {entry_id}")
        if not is_within(self.library_dir, path):
            raise PathTraversalError(f"File for video {entry_id} is outside the library")
        if not os.path.isfile(path):
            what = "Thumbnail" if thumbnail else "Video file"
            raise EntryNotFoundError(f"{what} not found for video {entry_id}")
        return path

    def resolve_library_path(self, relative_path: str) -> str:
        return resolve_within(self.library_dir, relative_path or "")

    # Downloads

    def submit_download(self, url: str) -> DownloadTask:
        return self.orchestrator.submit(url)

    def get_download(self, task_id: str) -> Optional[DownloadTask]:
        return self.orchestrator.get_task(task_id)

    def list_downloads(self) -> List[DownloadTask]:
        return self.orchestrator.list_tasks()

    def cancel_download(self, task_id: str) -> bool:
        return self.orchestrator.cancel(task_id)
