"""Core module - shared models, errors and logging."""

from vidshelf.core.errors import LibraryError
from vidshelf.core.logger import setup_logger
from vidshelf.core.models import LibraryEntry, VideoMetadata

__all__ = ["LibraryEntry", "LibraryError", "VideoMetadata", "setup_logger"]
