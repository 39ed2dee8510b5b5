"""vidshelf - a small self-hosted video library fed by yt-dlp."""

__version__ = "0.1.0"
