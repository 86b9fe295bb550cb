"""Subtitle files: parsing SRT, WebVTT and ASS/SSA, and burn-in settings.

Parsed tracks are used to sanity-check a subtitle file before it is handed
to the transcoder, and to look up the cue shown at a given time.
"""
import glob
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import aiofiles

from .exceptions import FilesystemError

logger = logging.getLogger(__name__)

# Extensions the transcoder's subtitle filters can burn in
SUPPORTED_SUBTITLE_EXTENSIONS = (".srt", ".ass", ".ssa", ".vtt", ".sub")

# Extensions whose cues this module can read
PARSEABLE_FORMATS = {
    ".srt": "srt",
    ".vtt": "vtt",
    ".ass": "ass",
    ".ssa": "ass",
}

SRT_TIME_REGEX = re.compile(
    r"(\d{2}):(\d{2}):(\d{2}),(\d{3}) --> (\d{2}):(\d{2}):(\d{2}),(\d{3})"
)
VTT_TIME_REGEX = re.compile(
    r"(\d{2}):(\d{2}):(\d{2})\.(\d{3}) --> (\d{2}):(\d{2}):(\d{2})\.(\d{3})"
)
HTML_TAG_REGEX = re.compile(r"<[^>]*>")
ASS_TAG_REGEX = re.compile(r"\{[^}]*\}")
BLOCK_SEPARATOR_REGEX = re.compile(r"\r?\n\r?\n")
LINE_BREAK_REGEX = re.compile(r"[\r\n]+")


@dataclass(frozen=True)
class SubtitleEntry:
    """One cue: text shown from ``start`` to ``end`` seconds."""

    index: int
    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return self.end - self.start

    def is_active_at(self, seconds: float) -> bool:
        return self.start <= seconds <= self.end

    def __str__(self) -> str:
        return f"[{self.index}] {self.start:.2f}s-{self.end:.2f}s: {self.text}"


@dataclass
class SubtitleTrack:
    """Cues read from one subtitle file, ordered by start time."""

    language: str = "unknown"
    format: str = "unknown"
    file_path: Optional[str] = None
    entries: List[SubtitleEntry] = field(default_factory=list)

    def active_entry(self, seconds: float) -> Optional[SubtitleEntry]:
        """First cue shown at the given time, if any."""
        return next((entry for entry in self.entries if entry.is_active_at(seconds)), None)

    def entry_by_index(self, index: int) -> Optional[SubtitleEntry]:
        return next((entry for entry in self.entries if entry.index == index), None)

    @property
    def total_duration(self) -> float:
        return max((entry.end for entry in self.entries), default=0.0)

    def __len__(self) -> int:
        return len(self.entries)

    def __str__(self) -> str:
        return (
            f"SubtitleTrack [{self.language}] ({self.format}) - "
            f"{len(self.entries)} entries, {self.total_duration:.1f}s"
        )


@dataclass(frozen=True)
class SubtitleBurnOptions:
    """Styling and encoder settings for burning subtitles into a video.

    Attributes:
        font_name: Font family (None keeps the renderer default)
        font_size: Font size in points (0 keeps the default)
        primary_color: ASS colour such as ``&Hffffff``
        margin_v: Bottom margin in pixels (0 keeps the default)
        video_codec: Encoder for the re-encoded video stream
        copy_audio: Copy the audio stream instead of encoding AAC
        crf: Constant rate factor (lower is better quality)
    """

    # Styling
    font_name: Optional[str] = "Arial"
    font_size: int = 24
    primary_color: Optional[str] = "&Hffffff"
    margin_v: int = 50

    # Encoding
    video_codec: str = "libx264"
    copy_audio: bool = True
    crf: int = 23

    def __post_init__(self) -> None:
        errors = []
        if self.font_size < 0:
            errors.append(f"font_size must be non-negative (got: {self.font_size})")
        if self.margin_v < 0:
            errors.append(f"margin_v must be non-negative (got: {self.margin_v})")
        if not 0 <= self.crf <= 51:
            errors.append(f"crf must be between 0 and 51 (got: {self.crf})")
        if not self.video_codec or not self.video_codec.strip():
            errors.append("video_codec cannot be empty")
        if errors:
            raise ValueError(
                "SubtitleBurnOptions validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

    def force_style(self) -> str:
        """ASS style override string, e.g. ``FontName=Arial,FontSize=24``."""
        styles = []
        if self.font_name:
            styles.append(f"FontName={self.font_name}")
        if self.font_size > 0:
            styles.append(f"FontSize={self.font_size}")
        if self.primary_color:
            styles.append(f"PrimaryColour={self.primary_color}")
        if self.margin_v > 0:
            styles.append(f"MarginV={self.margin_v}")
        return ",".join(styles)

    @classmethod
    def high_quality(cls) -> "SubtitleBurnOptions":
        return cls(font_size=28, crf=18)

    @classmethod
    def fast_encode(cls) -> "SubtitleBurnOptions":
        return cls(font_size=22, crf=28)


def subtitle_extension(path: Union[str, Path, None]) -> str:
    if not path:
        return ""
    return Path(path).suffix.lower()


def is_supported_subtitle_format(path: Union[str, Path, None]) -> bool:
    """Whether the transcoder can burn this file in."""
    return subtitle_extension(path) in SUPPORTED_SUBTITLE_EXTENSIONS


def subtitle_filter(path: Union[str, Path]) -> str:
    """Transcoder filter for a subtitle file: ``ass`` for ASS/SSA, else ``subtitles``."""
    return "ass" if subtitle_extension(path) in (".ass", ".ssa") else "subtitles"


def _seconds(groups, offset: int) -> float:
    hours, minutes, seconds, millis = (int(value) for value in groups[offset:offset + 4])
    return hours * 3600 + minutes * 60 + seconds + millis / 1000


def _strip_tags(text: str) -> str:
    return HTML_TAG_REGEX.sub("", text).strip()


def parse_srt(content: str) -> List[SubtitleEntry]:
    """Parse SubRip cues. Blocks without an index or timing line are skipped."""
    entries = []
    for block in BLOCK_SEPARATOR_REGEX.split(content.lstrip("\ufeff")):
        lines = [line for line in LINE_BREAK_REGEX.split(block) if line]
        if len(lines) < 3:
            continue
        try:
            index = int(lines[0].strip())
        except ValueError:
            continue
        match = SRT_TIME_REGEX.search(lines[1])
        if not match:
            continue
        groups = match.groups()
        text = "\n".join(lines[2:]).replace("\\N", "\n").strip()
        entries.append(SubtitleEntry(index, _seconds(groups, 0), _seconds(groups, 4), _strip_tags(text)))
    return sorted(entries, key=lambda entry: entry.start)


def parse_vtt(content: str) -> List[SubtitleEntry]:
    """Parse WebVTT cues, numbering them in file order."""
    # Keep blank lines: they end a cue
    lines = content.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n").split("\n")
    entries = []
    i = 0
    while i < len(lines):
        match = VTT_TIME_REGEX.search(lines[i].strip())
        i += 1
        if not match:
            continue
        text_lines = []
        while i < len(lines):
            line = lines[i].strip()
            if not line or VTT_TIME_REGEX.search(line):
                break
            text_lines.append(line)
            i += 1
        if text_lines:
            groups = match.groups()
            entries.append(SubtitleEntry(
                len(entries) + 1,
                _seconds(groups, 0),
                _seconds(groups, 4),
                _strip_tags("\n".join(text_lines)),
            ))
    return sorted(entries, key=lambda entry: entry.start)


def _ass_time(value: str) -> float:
    # H:MM:SS.CC
    parts = value.strip().split(":")
    if len(parts) != 3:
        return 0.0
    try:
        seconds, _, centis = parts[2].partition(".")
        return int(parts[0]) * 3600 + int(parts[1]) * 60 + int(seconds) + (int(centis) / 100 if centis else 0)
    except ValueError:
        return 0.0


def parse_ass(content: str) -> List[SubtitleEntry]:
    """Parse Dialogue lines from the [Events] section of an ASS/SSA file."""
    entries = []
    in_events = False
    columns = {}
    for raw in LINE_BREAK_REGEX.split(content.lstrip("\ufeff")):
        line = raw.strip()
        if line.startswith("["):
            in_events = line == "[Events]"
            continue
        if not in_events:
            continue
        if line.startswith("Format:"):
            names = [name.strip().lower() for name in line[len("Format:"):].split(",")]
            columns = {name: position for position, name in enumerate(names)}
            continue
        if not line.startswith("Dialogue:") or not {"start", "end", "text"} <= columns.keys():
            continue
        # Text is the last column and may itself contain commas
        parts = line[len("Dialogue:"):].split(",", len(columns) - 1)
        if len(parts) <= max(columns["start"], columns["end"], columns["text"]):
            continue
        text = ",".join(parts[columns["text"]:]).replace("\\N", "\n").replace("\\n", "\n")
        entries.append(SubtitleEntry(
            len(entries) + 1,
            _ass_time(parts[columns["start"]]),
            _ass_time(parts[columns["end"]]),
            ASS_TAG_REGEX.sub("", text).strip(),
        ))
    return sorted(entries, key=lambda entry: entry.start)


def find_subtitle_files(video_path: Union[str, Path, None]) -> List[Path]:
    """Subtitle files beside a video: ``clip.srt``, ``clip.en.srt`` and so on.

    Only SRT, WebVTT and ASS files are considered. Unreadable directories
    give an empty list.
    """
    if not video_path:
        return []
    video_path = Path(video_path)
    found = []
    try:
        for ext in (".srt", ".vtt", ".ass"):
            for pattern in (f"{glob.escape(video_path.stem)}{ext}", f"{glob.escape(video_path.stem)}.*{ext}"):
                found.extend(path for path in video_path.parent.glob(pattern) if path not in found)
    except OSError as e:
        logger.warning(f"Error searching for subtitle files: {e}")
    return sorted(found)


PARSERS = {
    "srt": parse_srt,
    "vtt": parse_vtt,
    "ass": parse_ass,
}


async def parse_subtitle_file(path: Union[str, Path], language: str = "unknown") -> SubtitleTrack:
    """Read and parse a subtitle file.

    Formats this module cannot read (such as .sub) give an empty track
    with format ``unknown``.

    Raises:
        FilesystemError: If the file cannot be read
    """
    subtitle_format = PARSEABLE_FORMATS.get(subtitle_extension(path), "unknown")
    try:
        async with aiofiles.open(path, mode="r", encoding="utf-8", errors="replace") as f:
            content = await f.read()
    except OSError as e:
        raise FilesystemError(f"Could not read subtitle file: {e}", path=str(path)) from e

    track = SubtitleTrack(language=language, format=subtitle_format, file_path=str(path))
    parser = PARSERS.get(subtitle_format)
    if parser is None:
        logger.warning(f"Unsupported subtitle format for parsing: {path}")
    else:
        track.entries = parser(content)
    logger.info(f"Parsed subtitle file: {track}")
    return track


__all__ = [
    "SubtitleEntry",
    "SubtitleTrack",
    "SubtitleBurnOptions",
    "SUPPORTED_SUBTITLE_EXTENSIONS",
    "is_supported_subtitle_format",
    "subtitle_filter",
    "find_subtitle_files",
    "parse_srt",
    "parse_vtt",
    "parse_ass",
    "parse_subtitle_file",
]
