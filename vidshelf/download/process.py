"""yt-dlp subprocess invocation: metadata probe, download run, failure triage."""

from __future__ import annotations

import json
import os
import signal
import subprocess
import threading
import time
from collections import deque
from typing import IO, Callable, Deque, Iterable, List, Optional

from vidshelf.core.errors import (
    AccessDeniedError,
    ContentUnavailableError,
    DownloadCancelledError,
    DownloadTimeoutError,
    MetadataExtractionError,
    NetworkError,
    ProcessError,
    UnknownProcessError,
    UnsupportedSourceError,
)
from vidshelf.core.logger import setup_logger
from vidshelf.core.models import VideoMetadata

logger = setup_logger(__name__)

LineCallback = Callable[[str], None]

# Checked in order; the first class with a matching marker wins.
_STDERR_SIGNAL_MAP: tuple[tuple[type[ProcessError], str, tuple[str, ...]], ...] = (
    (
        UnsupportedSourceError,
        "the URL is not supported",
        (
            "unsupported url",
            "no suitable extractor",
            "is not a valid url",
        ),
    ),
    (
        AccessDeniedError,
        "access to the video was denied",
        (
            "http error 403",
            "private video",
            "this video is private",
            "sign in to confirm",
            "login required",
            "members-only",
            "members only",
            "join this channel",
            "access denied",
        ),
    ),
    (
        ContentUnavailableError,
        "the video is unavailable or has been removed",
        (
            "http error 404",
            "video unavailable",
            "this video is unavailable",
            "has been removed",
            "not available in your country",
            "does not exist",
        ),
    ),
    (
        NetworkError,
        "a network error occurred",
        (
            "timed out",
            "connection reset",
            "connection refused",
            "temporary failure",
            "network is unreachable",
            "name or service not known",
            "getaddrinfo failed",
            "unable to download webpage",
            "http error 5",
            "ssl:",
        ),
    ),
)


def classify_process_failure(
    stderr_lines: Iterable[str],
    returncode: Optional[int],
    prefix: str = "Download failed",
) -> ProcessError:
    """Map a failed run's stderr to the most specific ProcessError subclass."""
    lines = [line for line in stderr_lines if line]
    detail = "\n".join(lines) or None
    haystack = "\n".join(lines).lower()

    for error_class, reason, markers in _STDERR_SIGNAL_MAP:
        if any(marker in haystack for marker in markers):
            return error_class(f"{prefix}: {reason}", detail=detail, returncode=returncode)

    return UnknownProcessError(
        f"{prefix}: yt-dlp exited with code {returncode}",
        detail=detail,
        returncode=returncode,
    )


def escape_output_template(name: str) -> str:
    """Escape a literal file name for use in a yt-dlp output template."""
    return name.replace("%", "%%")


def _split_lines(chunk: str) -> List[str]:
    return [part.strip() for part in chunk.replace("\r", "\n").split("\n") if part.strip()]


class YtDlpRunner:
    """Runs the yt-dlp binary with a wall-clock budget per invocation."""

    def __init__(
        self,
        binary: str = "yt-dlp",
        metadata_timeout: float = 120,
        download_timeout: float = 1800,
        embed_metadata: bool = True,
        stderr_tail_lines: int = 50,
        poll_interval: float = 0.2,
    ):
        self.binary = binary
        self.metadata_timeout = metadata_timeout
        self.download_timeout = download_timeout
        self.embed_metadata = embed_metadata
        self.stderr_tail_lines = max(1, stderr_tail_lines)
        self.poll_interval = poll_interval

    # ------------------------------------------------------------------
    # Metadata probe
    # ------------------------------------------------------------------

    def build_metadata_command(self, url: str) -> List[str]:
        return [self.binary, "--dump-json", "--no-download", "--no-playlist", url]

    def extract_metadata(self, url: str) -> VideoMetadata:
        """Run yt-dlp without downloading and decode its JSON description.

        Raises:
            DownloadTimeoutError: the probe exceeded ``metadata_timeout``
            MetadataExtractionError: non-zero exit or undecodable output
            UnknownProcessError: the binary could not be started
        """
        command = self.build_metadata_command(url)
        logger.debug(f"Extracting metadata: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.metadata_timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Metadata extraction timed out after {self.metadata_timeout}s: {url}")
            raise DownloadTimeoutError(
                f"Metadata extraction timed out after {self.metadata_timeout}s"
            ) from e
        except OSError as e:
            raise UnknownProcessError(f"Could not run {self.binary}", detail=str(e)) from e

        stderr_lines = _split_lines(result.stderr or "")[-self.stderr_tail_lines:]
        if result.returncode != 0:
            failure = classify_process_failure(stderr_lines, result.returncode, "Metadata extraction failed")
            logger.warning(f"Metadata extraction failed for {url} ({failure.category}, exit {result.returncode})")
            raise MetadataExtractionError(
                failure.message,
                detail=failure.detail,
                returncode=result.returncode,
                category=failure.category,
            )

        info = self._decode_info(result.stdout or "")
        if info is None:
            raise MetadataExtractionError(
                "Metadata extraction failed: yt-dlp returned no readable JSON",
                detail="\n".join(stderr_lines) or (result.stdout or "")[:500] or None,
                returncode=result.returncode,
            )

        metadata = VideoMetadata.from_info_dict(info)
        if not metadata.id:
            raise MetadataExtractionError("Metadata extraction failed: yt-dlp reported no video id")
        return metadata

    @staticmethod
    def _decode_info(stdout: str) -> Optional[dict]:
        text = stdout.strip()
        if not text:
            return None
        try:
            info = json.loads(text)
        except json.JSONDecodeError:
            # Multiple records (one per line): keep the first
            try:
                info = json.loads(text.splitlines()[0])
            except json.JSONDecodeError:
                return None
        return info if isinstance(info, dict) else None

    # ------------------------------------------------------------------
    # Download run
    # ------------------------------------------------------------------

    def build_download_command(self, url: str, output_dir: str, output_template: str) -> List[str]:
        command = [
            self.binary,
            url,
            "-P", output_dir,
            "-o", output_template,
            "--write-thumbnail",
            "--newline",
            "--no-playlist",
        ]
        if self.embed_metadata:
            command.extend(["--embed-metadata", "--embed-thumbnail"])
        return command

    def download(
        self,
        url: str,
        output_dir: str,
        output_template: str,
        on_line: Optional[LineCallback] = None,
        cancel_flag: Optional[threading.Event] = None,
    ) -> None:
        """Run the download, streaming every output line to ``on_line``.

        Raises:
            DownloadTimeoutError: ``download_timeout`` elapsed; the process group was killed
            DownloadCancelledError: ``cancel_flag`` was set; the process group was killed
            ProcessError: non-zero exit, classified from the stderr tail
        """
        command = self.build_download_command(url, output_dir, output_template)
        logger.info(f"Starting yt-dlp: {' '.join(command)}")

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            raise UnknownProcessError(f"Could not run {self.binary}", detail=str(e)) from e

        stderr_tail: Deque[str] = deque(maxlen=self.stderr_tail_lines)
        readers = [
            self._start_reader(process.stdout, on_line, None, "stdout"),
            self._start_reader(process.stderr, on_line, stderr_tail, "stderr"),
        ]

        try:
            returncode = self._wait(process, cancel_flag)
        finally:
            for reader in readers:
                reader.join(timeout=5)

        if returncode != 0:
            failure = classify_process_failure(list(stderr_tail), returncode)
            logger.warning(f"yt-dlp failed for {url} ({failure.category}, exit {returncode})")
            raise failure

    def _wait(self, process: subprocess.Popen, cancel_flag: Optional[threading.Event]) -> int:
        deadline = time.monotonic() + self.download_timeout
        while True:
            try:
                return process.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                pass

            if cancel_flag is not None and cancel_flag.is_set():
                logger.info(f"Cancelling yt-dlp (pid {process.pid})")
                self._kill(process)
                raise DownloadCancelledError("Download cancelled")

            if time.monotonic() >= deadline:
                logger.warning(f"yt-dlp exceeded {self.download_timeout}s, killing pid {process.pid}")
                self._kill(process)
                raise DownloadTimeoutError(f"Download timed out after {self.download_timeout}s")

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except (ProcessLookupError, PermissionError):
            process.kill()
        except OSError as e:
            logger.warning(f"Failed to kill yt-dlp (pid {process.pid}): {e}")
        process.wait()

    @staticmethod
    def _start_reader(
        stream: Optional[IO[str]],
        on_line: Optional[LineCallback],
        tail: Optional[Deque[str]],
        name: str,
    ) -> threading.Thread:
        def pump() -> None:
            if stream is None:
                return
            try:
                for chunk in iter(stream.readline, ""):
                    for line in _split_lines(chunk):
                        if tail is not None:
                            tail.append(line)
                        if on_line is not None:
                            try:
                                on_line(line)
                            except Exception as e:
                                logger.debug(f"Progress callback failed: {e}")
            except (OSError, ValueError) as e:
                logger.debug(f"Stopped reading yt-dlp {name}: {e}")
            finally:
                stream.close()

        thread = threading.Thread(target=pump, daemon=True, name=f"yt-dlp-{name}")
        thread.start()
        return thread
