"""Extractor (yt-dlp) settings shared by every command the builder emits.

ExtractorOptions gathers quality presets, audio-only extraction, a time
range, playlist handling and pass-through arguments into one immutable
value with validation, the same way download options are modelled
elsewhere in the package.
"""
import logging
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)


class VideoQuality(Enum):
    """Video quality presets, each mapped to a yt-dlp format selector."""
    WORST = "worst"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    BEST = "best"

    @property
    def selector(self) -> str:
        return VIDEO_SELECTORS[self]


class AudioQuality(Enum):
    """Audio quality presets, each mapped to a yt-dlp format selector."""
    WORST = "worst"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    BEST = "best"

    @property
    def selector(self) -> str:
        return AUDIO_SELECTORS[self]

    @property
    def audio_format(self) -> str:
        """Target codec for --audio-format when extracting audio."""
        return "best" if self is AudioQuality.BEST else "mp3"


class PlaylistHandling(Enum):
    """What to do when a URL points into a playlist."""
    # One video, playlist parameters ignored (--no-playlist)
    SINGLE = "single"
    # One video, the extractor decides with the playlist context intact
    KEEP_CONTEXT = "keep_context"
    # Every entry, optionally capped by max_playlist_items
    ENTIRE = "entire"


VIDEO_SELECTORS = {
    VideoQuality.WORST: "worst[ext=mp4]/worst",
    VideoQuality.LOW: "best[height<=480][ext=mp4]/best[height<=480]",
    VideoQuality.MEDIUM: "best[height<=720][ext=mp4]/best[height<=720]",
    VideoQuality.HIGH: "best[height<=1080][ext=mp4]/best[height<=1080]",
    VideoQuality.BEST: "best[ext=mp4]/best",
}

AUDIO_SELECTORS = {
    AudioQuality.WORST: "worstaudio",
    AudioQuality.LOW: "worstaudio[abr<=96]",
    AudioQuality.MEDIUM: "bestaudio[abr<=192]",
    AudioQuality.HIGH: "bestaudio[abr<=320]",
    AudioQuality.BEST: "bestaudio",
}


def _clock(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class TimeRange:
    """Part of a video to download, in seconds from the start.

    Attributes:
        start: First second to keep
        end: Last second to keep (None for "until the end")
    """

    start: float = 0.0
    end: Optional[float] = None

    def __post_init__(self) -> None:
        errors = []
        if self.start < 0:
            errors.append(f"start must be non-negative (got: {self.start})")
        if self.end is not None and self.end <= self.start:
            errors.append(f"end must be after start (got: {self.start} -> {self.end})")
        if errors:
            raise ValueError(
                "TimeRange validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

    def to_section(self) -> str:
        """Value for --download-sections, e.g. ``*00:01:00-00:02:30``."""
        section = f"*{_clock(self.start)}"
        if self.end is not None:
            section += f"-{_clock(self.end)}"
        return section


@dataclass(frozen=True)
class ExtractorOptions:
    """Settings applied to extractor invocations.

    Attributes:
        # Quality
        video_quality: Preset used when no explicit selector is given
        audio_quality: Preset for the audio part (or the whole stream when audio_only)
        format_selector: Explicit yt-dlp selector; overrides both presets

        # Mode
        audio_only: Extract audio only (-x with --audio-format)

        # Access
        cookies_from_browser: Browser (optionally ``browser:profile``) to read cookies from

        # Scope
        time_range: Only download this section
        playlist: Playlist handling mode
        max_playlist_items: Cap for PlaylistHandling.ENTIRE (0 means no cap)
        ignore_errors: Keep going when one playlist entry fails

        # Pass-through
        extra_arguments: Additional extractor arguments, one argv entry each
    """

    # Quality
    video_quality: VideoQuality = VideoQuality.BEST
    audio_quality: AudioQuality = AudioQuality.BEST
    format_selector: Optional[str] = None

    # Mode
    audio_only: bool = False

    # Access
    cookies_from_browser: Optional[str] = None

    # Scope
    time_range: Optional[TimeRange] = None
    playlist: PlaylistHandling = PlaylistHandling.SINGLE
    max_playlist_items: int = 0
    ignore_errors: bool = False

    # Pass-through
    extra_arguments: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate option values after initialization.

        Raises:
            ValueError: If any option value is invalid.
        """
        errors = []

        if self.format_selector is not None and not self.format_selector.strip():
            errors.append("format_selector cannot be blank")

        if self.cookies_from_browser is not None and not self.cookies_from_browser.strip():
            errors.append("cookies_from_browser cannot be blank")

        if not isinstance(self.max_playlist_items, int) or self.max_playlist_items < 0:
            errors.append(
                f"max_playlist_items must be a non-negative integer (got: {self.max_playlist_items})"
            )

        for argument in self.extra_arguments:
            if not isinstance(argument, str) or not argument:
                errors.append(f"extra_arguments entries must be non-empty strings (got: {argument!r})")

        if errors:
            raise ValueError(
                "ExtractorOptions validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

    @property
    def stream_selector(self) -> str:
        """Selector for resolving one playable stream (single URL)."""
        if self.format_selector:
            return self.format_selector
        if self.audio_only:
            return self.audio_quality.selector
        return self.video_quality.selector

    @property
    def download_selector(self) -> str:
        """Selector for downloads, where separate video and audio may be merged."""
        if self.format_selector:
            return self.format_selector
        if self.audio_only:
            return self.audio_quality.selector
        video = self.video_quality.selector
        return f"{video}+{self.audio_quality.selector}/{video}"

    @classmethod
    def from_config(cls, config: Optional[Any] = None) -> "ExtractorOptions":
        """Create ExtractorOptions from a StreamConfig.

        Args:
            config: StreamConfig instance (loaded from the environment if None)
        """
        # Import here to avoid circular imports at module level
        from ytstream.config import load_config

        if config is None:
            config = load_config()

        return cls(
            video_quality=VideoQuality(config.VIDEO_QUALITY),
            audio_quality=AudioQuality(config.AUDIO_QUALITY),
            format_selector=config.FORMAT_SELECTOR,
            audio_only=config.EXTRACT_AUDIO_ONLY,
            cookies_from_browser=config.COOKIES_FROM_BROWSER,
            playlist=PlaylistHandling(config.PLAYLIST_HANDLING),
            max_playlist_items=config.MAX_PLAYLIST_ITEMS,
            ignore_errors=config.IGNORE_ERRORS,
            extra_arguments=tuple(shlex.split(config.EXTRACTOR_EXTRA_ARGS)),
        )

    def with_overrides(self, **kwargs) -> "ExtractorOptions":
        """Create a new ExtractorOptions with some values replaced."""
        current = {
            field.name: getattr(self, field.name)
            for field in self.__dataclass_fields__.values()
        }
        current.update(kwargs)
        return self.__class__(**current)


__all__ = [
    "VideoQuality",
    "AudioQuality",
    "PlaylistHandling",
    "TimeRange",
    "ExtractorOptions",
    "VIDEO_SELECTORS",
    "AUDIO_SELECTORS",
]
