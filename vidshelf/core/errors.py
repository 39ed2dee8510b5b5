"""Error taxonomy for library and download operations.

Every error carries a human-readable ``message`` and a machine-readable
``kind``. Raw diagnostics (e.g. yt-dlp stderr) go into ``detail`` and are never
the primary message.
"""

from typing import Any, Dict, Optional


class LibraryError(Exception):
    """Base error for all library operations."""

    kind = "error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class ValidationError(LibraryError):
    """Malformed or missing caller input (URL, id, path)."""
    kind = "validation"


class PathTraversalError(LibraryError):
    """A path resolved outside the library root."""
    kind = "path_traversal"


class EntryNotFoundError(LibraryError):
    """No entry (or no servable file) for the requested id."""
    kind = "not_found"


class MetadataDecodeError(LibraryError):
    """The metadata file exists but cannot be decoded."""
    kind = "decode"


class FileSystemError(LibraryError):
    """Directory creation, stat, read or remove failure."""
    kind = "filesystem"


class PersistError(LibraryError):
    """The metadata file could not be written."""
    kind = "persist"


class ProcessError(LibraryError):
    """The external downloader exited unsuccessfully."""

    kind = "process"
    category = "unknown_process"

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message, detail)
        self.returncode = returncode

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["category"] = self.category
        if self.returncode is not None:
            data["returncode"] = self.returncode
        return data


class NetworkError(ProcessError):
    kind = category = "network"


class ContentUnavailableError(ProcessError):
    """Remote content is removed, missing or otherwise unavailable."""
    kind = category = "content_unavailable"


class AccessDeniedError(ProcessError):
    """Remote refused access (private, members-only, login required)."""
    kind = category = "access_denied"


class UnsupportedSourceError(ProcessError):
    """No extractor handles the URL."""
    kind = category = "unsupported_source"


class UnknownProcessError(ProcessError):
    kind = category = "unknown_process"


class MetadataExtractionError(ProcessError):
    """The metadata-only run failed or produced undecodable output.

    ``category`` carries the stderr classification of the failed run.
    """

    kind = "metadata_extraction"

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        returncode: Optional[int] = None,
        category: str = "unknown_process",
    ):
        super().__init__(message, detail, returncode)
        self.category = category


class DownloadTimeoutError(LibraryError):
    """The external process exceeded its wall-clock budget and was killed."""
    kind = "timeout"


class DownloadCancelledError(LibraryError):
    kind = "cancelled"


class ArtifactNotFoundError(LibraryError):
    """The downloader succeeded but the produced file could not be located."""
    kind = "file_not_found"


class DownloadRejectedError(LibraryError):
    """Admission control refused a new download."""
    kind = "busy"
