"""Download orchestration: probe, fetch, locate, index.

Each download runs on a worker of a bounded ThreadPoolExecutor. A task owns a
ProgressStream that observers drain independently of the worker, and a
cancel flag that kills the yt-dlp process group when set.
"""

from __future__ import annotations

import os
import re
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from threading import Event, Lock
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from vidshelf.core.errors import (
    ArtifactNotFoundError,
    DownloadCancelledError,
    DownloadRejectedError,
    FileSystemError,
    LibraryError,
    ValidationError,
)
from vidshelf.core.logger import setup_logger
from vidshelf.core.models import LibraryEntry, utcnow
from vidshelf.download.process import YtDlpRunner, escape_output_template
from vidshelf.download.progress import ProgressStream
from vidshelf.library.fs import ensure_directory
from vidshelf.library.locator import FileLocator
from vidshelf.library.paths import sanitize_filename
from vidshelf.library.store import MetadataStore

logger = setup_logger(__name__)

MSG_EXTRACTING = "Extracting video information..."
MSG_STARTING = "Starting download: {title}"
MSG_PROCESSING = "Download completed, processing metadata..."
MSG_SUCCESS = "Video successfully downloaded and indexed!"

_PERCENT_RE = re.compile(r"^\[download\]\s+(\d{1,3}(?:\.\d+)?)%")

STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"
STATUS_CANCELLED = "cancelled"
ACTIVE_STATUSES = (STATUS_QUEUED, STATUS_RUNNING)


def validate_url(url: str) -> str:
    """Return the stripped URL or raise ValidationError."""
    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("URL is required")
    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValidationError("URL must use http or https", detail=candidate)
    if not parsed.netloc:
        raise ValidationError("URL has no host", detail=candidate)
    return candidate


@dataclass
class DownloadTask:
    task_id: str
    url: str
    progress: ProgressStream
    cancel_flag: Event = field(default_factory=Event)
    status: str = STATUS_QUEUED
    entry: Optional[LibraryEntry] = None
    error: Optional[LibraryError] = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    future: Optional[Future] = field(default=None, repr=False, compare=False)
    done: Event = field(default_factory=Event, repr=False, compare=False)

    @property
    def active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task has reached a final status."""
        return self.done.wait(timeout)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "download_id": self.task_id,
            "url": self.url,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "dropped_events": self.progress.dropped,
        }
        if self.entry is not None:
            data["video"] = self.entry.to_api_dict()
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


class DownloadOrchestrator:
    """Runs downloads end to end and registers the results in the store."""

    def __init__(
        self,
        store: MetadataStore,
        locator: FileLocator,
        runner: YtDlpRunner,
        library_dir: str | os.PathLike,
        max_workers: int = 3,
        max_pending: int = 20,
        progress_buffer_size: int = 256,
        finished_history: int = 100,
    ):
        self.store = store
        self.locator = locator
        self.runner = runner
        self.library_dir = os.path.abspath(os.fspath(library_dir))
        self.max_workers = max(1, max_workers)
        self.max_pending = max(1, max_pending)
        self.progress_buffer_size = progress_buffer_size
        self.finished_history = max(0, finished_history)

        self._tasks: "OrderedDict[str, DownloadTask]" = OrderedDict()
        self._lock = Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._shutdown = False

    # ------------------------------------------------------------------
    # Single download
    # ------------------------------------------------------------------

    def download_video(
        self,
        url: str,
        progress: ProgressStream,
        cancel_flag: Optional[Event] = None,
    ) -> LibraryEntry:
        """Download ``url`` into the library and index it.

        The stream always ends with a terminal event: ``complete`` carrying
        the new entry, or ``error`` carrying the failure. Nothing is written
        to the store unless every step succeeds.
        """
        try:
            entry = self._run_download(url, progress, cancel_flag)
        except LibraryError as e:
            progress.fail(e)
            raise
        except Exception as e:
            logger.error_trace(f"Unexpected error downloading {url}: {e}")
            wrapped = LibraryError(f"Download failed: {type(e).__name__}", detail=str(e))
            progress.fail(wrapped)
            raise wrapped from e

        progress.emit(MSG_SUCCESS)
        progress.complete(entry)
        return entry

    def _run_download(
        self,
        url: str,
        progress: ProgressStream,
        cancel_flag: Optional[Event],
    ) -> LibraryEntry:
        url = validate_url(url)
        self._check_cancelled(cancel_flag)

        progress.emit(MSG_EXTRACTING)
        metadata = self.runner.extract_metadata(url)
        self._check_cancelled(cancel_flag)

        title = metadata.title or metadata.id
        name_hint = sanitize_filename(title) or sanitize_filename(metadata.id) or "video"
        progress.emit(MSG_STARTING.format(title=title))

        try:
            ensure_directory(self.library_dir)
        except OSError as e:
            raise FileSystemError(f"Cannot create library directory {self.library_dir}", detail=str(e)) from e

        def on_line(line: str) -> None:
            match = _PERCENT_RE.match(line)
            if match:
                progress.emit(line, percent=min(float(match.group(1)), 100.0))
            else:
                progress.emit(line)

        self.runner.download(
            url,
            self.library_dir,
            f"{escape_output_template(name_hint)}.%(ext)s",
            on_line=on_line,
            cancel_flag=cancel_flag,
        )
        self._check_cancelled(cancel_flag)

        progress.emit(MSG_PROCESSING)
        media_path = self.locator.locate_media(metadata.title, metadata.id)
        if not media_path:
            raise ArtifactNotFoundError(
                f"Downloaded file for '{title}' could not be found",
                detail=f"id={metadata.id} directory={self.library_dir}",
            )
        thumbnail_path = self.locator.locate_thumbnail(metadata.title, metadata.id)

        try:
            file_size = os.path.getsize(media_path)
        except OSError as e:
            raise FileSystemError(f"Cannot read downloaded file {os.path.basename(media_path)}", detail=str(e)) from e

        entry = LibraryEntry(
            id=metadata.id,
            title=metadata.title,
            filename=os.path.basename(media_path),
            file_path=media_path,
            file_size=file_size,
            duration=metadata.duration,
            thumbnail_path=thumbnail_path,
            upload_date=metadata.upload_date,
            uploader=metadata.uploader,
            description=metadata.description,
            source_url=url,
            created_at=utcnow(),
        )
        self.store.put(entry)
        logger.info(f"Indexed {entry.id}: {entry.filename} ({entry.format_file_size()})")
        return entry

    @staticmethod
    def _check_cancelled(cancel_flag: Optional[Event]) -> None:
        if cancel_flag is not None and cancel_flag.is_set():
            raise DownloadCancelledError("Download cancelled")

    # ------------------------------------------------------------------
    # Task queue
    # ------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="Download")
            logger.info(f"Download pool started with {self.max_workers} workers")
        return self._executor

    def submit(self, url: str) -> DownloadTask:
        """Validate ``url`` and queue it. Raises DownloadRejectedError when full."""
        url = validate_url(url)
        with self._lock:
            if self._shutdown:
                raise DownloadRejectedError("Downloads are shutting down")
            active = sum(1 for task in self._tasks.values() if task.active)
            if active >= self.max_pending:
                raise DownloadRejectedError(
                    f"Too many downloads in progress ({active}), try again later"
                )

            task = DownloadTask(
                task_id=uuid.uuid4().hex,
                url=url,
                progress=ProgressStream(self.progress_buffer_size),
            )
            self._tasks[task.task_id] = task
            task.future = self._get_executor().submit(self._process_task, task)

        logger.info(f"Queued download {task.task_id}: {url}")
        return task

    def _process_task(self, task: DownloadTask) -> None:
        if task.cancel_flag.is_set():
            self._finish(task, STATUS_CANCELLED, error=DownloadCancelledError("Download cancelled"))
            task.progress.fail(task.error)
            return

        with self._lock:
            task.status = STATUS_RUNNING

        try:
            entry = self.download_video(task.url, task.progress, task.cancel_flag)
        except DownloadCancelledError as e:
            logger.info(f"Download cancelled: {task.task_id}")
            self._finish(task, STATUS_CANCELLED, error=e)
        except LibraryError as e:
            logger.warning(f"Download {task.task_id} failed ({e.kind}): {e.message}")
            self._finish(task, STATUS_ERROR, error=e)
        else:
            self._finish(task, STATUS_COMPLETE, entry=entry)

    def _finish(
        self,
        task: DownloadTask,
        status: str,
        entry: Optional[LibraryEntry] = None,
        error: Optional[LibraryError] = None,
    ) -> None:
        with self._lock:
            task.status = status
            task.entry = entry
            task.error = error
            task.finished_at = utcnow()
            self._prune_finished()
        task.done.set()

    def _prune_finished(self) -> None:
        finished = [task_id for task_id, task in self._tasks.items() if not task.active]
        excess = len(finished) - self.finished_history
        for task_id in finished[:max(0, excess)]:
            del self._tasks[task_id]

    def get_task(self, task_id: str) -> Optional[DownloadTask]:
        with self._lock:
            return self._tasks.get(task_id)

    def list_tasks(self) -> List[DownloadTask]:
        with self._lock:
            return list(self._tasks.values())

    def cancel(self, task_id: str) -> bool:
        """Request cancellation. Returns False for unknown or finished tasks."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or not task.active:
                return False
            task.cancel_flag.set()
            future = task.future

        # A queued task that never started is closed here
        if future is not None and future.cancel():
            self._finish(task, STATUS_CANCELLED, error=DownloadCancelledError("Download cancelled"))
            task.progress.fail(task.error)
        logger.info(f"Cancellation requested for download {task_id}")
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._shutdown = True
            tasks = [task for task in self._tasks.values() if task.active]
            executor = self._executor
        for task in tasks:
            task.cancel_flag.set()
            if task.future is not None and task.future.cancel():
                self._finish(task, STATUS_CANCELLED, error=DownloadCancelledError("Download cancelled"))
                task.progress.fail(task.error)
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("Download pool stopped")
