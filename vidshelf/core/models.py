"""Library data models."""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Nanosecond timestamps carry up to nine fractional digits; datetime takes six.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601/RFC3339 timestamp (or unix seconds) into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r"\1", text)
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number > 0 else 0.0


def _as_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


@dataclass(frozen=True)
class VideoMetadata:
    """Fields extracted from a metadata-only yt-dlp run."""
    id: str
    title: str = ""
    uploader: str = ""
    upload_date: str = ""
    description: str = ""
    thumbnail: str = ""
    duration: float = 0.0
    webpage_url: str = ""

    @classmethod
    def from_info_dict(cls, info: Dict[str, Any]) -> "VideoMetadata":
        """Build from a yt-dlp ``--dump-json`` record; nulls become empty values."""
        return cls(
            id=_as_str(info.get("id")).strip(),
            title=_as_str(info.get("title")),
            uploader=_as_str(info.get("uploader") or info.get("channel")),
            upload_date=_as_str(info.get("upload_date")),
            description=_as_str(info.get("description")),
            thumbnail=_as_str(info.get("thumbnail")),
            duration=_as_float(info.get("duration")),
            webpage_url=_as_str(info.get("webpage_url")),
        )


@dataclass(frozen=True)
class LibraryEntry:
    """One retrieved or discovered media file and its metadata.

    Entries are immutable; the store replaces or removes them whole.
    """
    id: str
    title: str
    filename: str
    file_path: str
    file_size: int = 0
    duration: float = 0.0
    thumbnail_path: str = ""
    upload_date: str = ""
    uploader: str = ""
    description: str = ""
    source_url: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the on-disk ``metadata.json`` field names."""
        data = asdict(self)
        return {
            "id": data["id"],
            "title": data["title"],
            "filename": data["filename"],
            "file_path": data["file_path"],
            "file_size": data["file_size"],
            "duration": data["duration"],
            "thumbnail": data["thumbnail_path"],
            "upload_date": data["upload_date"],
            "uploader": data["uploader"],
            "description": data["description"],
            "url": data["source_url"],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LibraryEntry":
        """Inverse of :meth:`to_dict`. Raises ValueError/TypeError on bad records."""
        if not isinstance(data, dict):
            raise TypeError(f"Entry must be an object, got {type(data).__name__}")
        entry_id = _as_str(data.get("id")).strip()
        if not entry_id:
            raise ValueError("Entry is missing an id")

        file_path = _as_str(data.get("file_path"))
        created_raw = data.get("created_at")
        return cls(
            id=entry_id,
            title=_as_str(data.get("title")),
            filename=_as_str(data.get("filename")) or os.path.basename(file_path),
            file_path=file_path,
            file_size=_as_int(data.get("file_size")),
            duration=_as_float(data.get("duration")),
            thumbnail_path=_as_str(data.get("thumbnail", data.get("thumbnail_path"))),
            upload_date=_as_str(data.get("upload_date")),
            uploader=_as_str(data.get("uploader")),
            description=_as_str(data.get("description")),
            source_url=_as_str(data.get("url", data.get("source_url"))),
            created_at=parse_timestamp(created_raw) if created_raw else utcnow(),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["has_thumbnail"] = bool(self.thumbnail_path)
        data["duration_display"] = self.format_duration()
        data["file_size_display"] = self.format_file_size()
        # Absolute server paths are not exposed to clients
        data.pop("file_path")
        data.pop("thumbnail")
        return data

    def format_duration(self) -> str:
        if self.duration <= 0:
            return "Unknown"
        total = int(self.duration)
        hours, remainder = divmod(total, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def format_file_size(self) -> str:
        if self.file_size <= 0:
            return "Unknown"
        if self.file_size < 1024:
            return f"{self.file_size} B"
        size = float(self.file_size)
        unit = 0
        while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
            size /= 1024
            unit += 1
        return f"{size:.1f} {_SIZE_UNITS[unit]}"

    def relative_path(self, library_dir: str) -> str:
        """Path of the media file relative to ``library_dir`` (basename on failure)."""
        try:
            return os.path.relpath(self.file_path, library_dir)
        except ValueError:
            return self.filename


def sort_entries(entries: list[LibraryEntry], sort: Optional[str] = None) -> list[LibraryEntry]:
    """Sort for display: title, date (default), size, duration."""
    mode = (sort or "date").strip().lower()
    if mode == "title":
        return sorted(entries, key=lambda e: e.title.casefold())
    if mode == "size":
        return sorted(entries, key=lambda e: e.file_size, reverse=True)
    if mode == "duration":
        return sorted(entries, key=lambda e: e.duration, reverse=True)
    return sorted(entries, key=lambda e: e.created_at, reverse=True)
