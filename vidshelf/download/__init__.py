"""yt-dlp driven downloads and their progress streams."""
