"""Configuration module for ytstream."""
import os
import shlex
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

VALID_QUALITIES = {"worst", "low", "medium", "high", "best"}
VALID_PLAYLIST_HANDLING = {"single", "keep_context", "entire"}


@dataclass(frozen=True)
class StreamConfig:
    """Runtime configuration with validation.

    All values are normally loaded from environment variables by
    load_config(). Validation happens at construction time so a bad
    setting fails fast with every problem listed at once.
    """

    # Tool locations (logical names are rewritten to these)
    YTDLP_PATH: str = "yt-dlp"
    FFMPEG_PATH: str = "ffmpeg"

    # Where transcoded files go
    OUTPUT_DIR: Optional[str] = None

    # Caches
    CONVERSION_CACHE_CAPACITY: int = 8
    METADATA_TTL_SECONDS: int = 4 * 60 * 60

    # Timeouts (seconds)
    EXTRACTOR_TIMEOUT: int = 60
    TRANSCODE_TIMEOUT: int = 600

    # Extractor options
    VIDEO_QUALITY: str = "best"
    AUDIO_QUALITY: str = "best"
    # Explicit yt-dlp selector; overrides both quality presets
    FORMAT_SELECTOR: Optional[str] = None
    EXTRACT_AUDIO_ONLY: bool = False
    COOKIES_FROM_BROWSER: Optional[str] = None
    PLAYLIST_HANDLING: str = "single"
    MAX_PLAYLIST_ITEMS: int = 0
    IGNORE_ERRORS: bool = False
    EXTRACTOR_EXTRA_ARGS: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        errors = []

        for name, value in (("YTDLP_PATH", self.YTDLP_PATH), ("FFMPEG_PATH", self.FFMPEG_PATH)):
            if not value or not value.strip():
                errors.append(f"{name} is required and cannot be empty")

        positive_fields = [
            ("CONVERSION_CACHE_CAPACITY", self.CONVERSION_CACHE_CAPACITY),
            ("METADATA_TTL_SECONDS", self.METADATA_TTL_SECONDS),
            ("EXTRACTOR_TIMEOUT", self.EXTRACTOR_TIMEOUT),
            ("TRANSCODE_TIMEOUT", self.TRANSCODE_TIMEOUT),
        ]
        for name, value in positive_fields:
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                errors.append(f"{name} must be a positive integer (got: {value})")

        if self.FORMAT_SELECTOR is not None and not self.FORMAT_SELECTOR.strip():
            errors.append("FORMAT_SELECTOR cannot be blank when set")

        for name, value in (("VIDEO_QUALITY", self.VIDEO_QUALITY), ("AUDIO_QUALITY", self.AUDIO_QUALITY)):
            if value not in VALID_QUALITIES:
                errors.append(f"{name} must be one of {sorted(VALID_QUALITIES)} (got: {value})")

        if self.PLAYLIST_HANDLING not in VALID_PLAYLIST_HANDLING:
            errors.append(
                f"PLAYLIST_HANDLING must be one of {sorted(VALID_PLAYLIST_HANDLING)} (got: {self.PLAYLIST_HANDLING})"
            )

        if not isinstance(self.MAX_PLAYLIST_ITEMS, int) or self.MAX_PLAYLIST_ITEMS < 0:
            errors.append(f"MAX_PLAYLIST_ITEMS must be a non-negative integer (got: {self.MAX_PLAYLIST_ITEMS})")

        try:
            shlex.split(self.EXTRACTOR_EXTRA_ARGS or "")
        except ValueError as e:
            errors.append(f"EXTRACTOR_EXTRA_ARGS cannot be parsed: {e}")

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.LOG_LEVEL not in valid_log_levels:
            errors.append(
                f"LOG_LEVEL must be one of {valid_log_levels} (got: {self.LOG_LEVEL})"
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

    @property
    def output_dir(self) -> Path:
        """Output directory, defaulting to a folder under the system temp dir."""
        if self.OUTPUT_DIR:
            return Path(self.OUTPUT_DIR)
        return Path(tempfile.gettempdir()) / "ytstream"

    @property
    def metadata_ttl(self) -> timedelta:
        return timedelta(seconds=self.METADATA_TTL_SECONDS)


def load_config() -> StreamConfig:
    """Load configuration from environment variables.

    Reads a .env file first (if present), then every setting from the
    environment with defaults for anything unset.

    Returns:
        StreamConfig instance with validated configuration values.

    Raises:
        ValueError: If any configuration validation fails.
    """
    load_dotenv()

    # Helper to parse int from env var
    def _int_env(name: str, default: int) -> int:
        value = os.getenv(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(
                f"{name} must be a valid integer (got: {value!r})"
            )

    # Helper to parse a boolean flag from env var
    def _bool_env(name: str, default: bool) -> bool:
        value = os.getenv(name)
        if value is None:
            return default
        return value.strip().lower() in ("1", "true", "yes", "on")

    return StreamConfig(
        YTDLP_PATH=os.getenv("YTDLP_PATH", "yt-dlp"),
        FFMPEG_PATH=os.getenv("FFMPEG_PATH", "ffmpeg"),
        OUTPUT_DIR=os.getenv("OUTPUT_DIR") or None,
        CONVERSION_CACHE_CAPACITY=_int_env("CONVERSION_CACHE_CAPACITY", 8),
        METADATA_TTL_SECONDS=_int_env("METADATA_TTL_SECONDS", 4 * 60 * 60),
        EXTRACTOR_TIMEOUT=_int_env("EXTRACTOR_TIMEOUT", 60),
        TRANSCODE_TIMEOUT=_int_env("TRANSCODE_TIMEOUT", 600),
        VIDEO_QUALITY=os.getenv("VIDEO_QUALITY", "best").lower(),
        AUDIO_QUALITY=os.getenv("AUDIO_QUALITY", "best").lower(),
        FORMAT_SELECTOR=os.getenv("FORMAT_SELECTOR") or None,
        EXTRACT_AUDIO_ONLY=_bool_env("EXTRACT_AUDIO_ONLY", False),
        COOKIES_FROM_BROWSER=os.getenv("COOKIES_FROM_BROWSER") or None,
        PLAYLIST_HANDLING=os.getenv("PLAYLIST_HANDLING", "single").lower(),
        MAX_PLAYLIST_ITEMS=_int_env("MAX_PLAYLIST_ITEMS", 0),
        IGNORE_ERRORS=_bool_env("IGNORE_ERRORS", False),
        EXTRACTOR_EXTRA_ARGS=os.getenv("EXTRACTOR_EXTRA_ARGS", ""),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["StreamConfig", "load_config"]
