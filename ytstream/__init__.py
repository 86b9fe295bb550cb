"""ytstream: resolve remote videos with yt-dlp and remux them with ffmpeg."""

__version__ = "0.1.0"
