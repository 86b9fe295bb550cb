"""Argument strings for the extractor (yt-dlp) and transcoder (ffmpeg).

Every value that is not a fixed flag goes through sanitize_for_shell(),
so the strings built here split back into exactly the intended argv.
"""
import logging
from pathlib import Path
from typing import List, Optional, Union

from .extractor_options import ExtractorOptions, PlaylistHandling, VideoQuality
from .subtitles import SubtitleBurnOptions, subtitle_filter
from .url_processor import sanitize_for_shell

logger = logging.getLogger(__name__)

DEFAULT_FORMAT_SELECTOR = VideoQuality.BEST.selector

# Characters with a meaning inside one filter's option list
FILTER_OPTION_SPECIALS = ("\\", "'", ":")
# Characters with a meaning between filters in a filtergraph
FILTERGRAPH_SPECIALS = ("\\", "'", "[", "]", ",", ";")


def _escape(text: str, specials) -> str:
    for char in specials:
        text = text.replace(char, "\\" + char)
    return text


def build_subtitle_filter(subtitle_path: Union[str, Path], options: Optional[SubtitleBurnOptions] = None) -> str:
    """Video filter that draws a subtitle file onto the frames.

    The file name and style are escaped for both the filter option level
    and the filtergraph level, so any path is read back literally.
    ASS/SSA files keep their own styling; other formats get ``force_style``.
    """
    name = subtitle_filter(subtitle_path)
    description = f"{name}=filename={_escape(str(subtitle_path), FILTER_OPTION_SPECIALS)}"
    if name == "subtitles" and options is not None:
        style = options.force_style()
        if style:
            description += f":force_style={_escape(style, FILTER_OPTION_SPECIALS)}"
    return _escape(description, FILTERGRAPH_SPECIALS)


class CommandBuilder:
    """Builds argument strings for the two external tools.

    Attributes:
        options: Extractor settings applied to every yt-dlp command
    """

    def __init__(
        self,
        options: Optional[ExtractorOptions] = None,
        *,
        format_selector: Optional[str] = None,
        cookies_from_browser: Optional[str] = None,
    ):
        options = options or ExtractorOptions()
        if format_selector or cookies_from_browser:
            options = options.with_overrides(
                format_selector=format_selector or options.format_selector,
                cookies_from_browser=cookies_from_browser or options.cookies_from_browser,
            )
        self.options = options

    @property
    def format_selector(self) -> str:
        return self.options.stream_selector

    def _join(self, parts: List[str]) -> str:
        return " ".join(parts)

    def _playlist_arguments(self) -> List[str]:
        playlist = self.options.playlist
        if playlist is PlaylistHandling.SINGLE:
            return ["--no-playlist"]
        if playlist is PlaylistHandling.ENTIRE:
            parts = ["--yes-playlist"]
            if self.options.max_playlist_items > 0:
                parts += ["--playlist-end", str(self.options.max_playlist_items)]
            return parts
        return []

    def _access_arguments(self) -> List[str]:
        parts = []
        if self.options.cookies_from_browser:
            parts += ["--cookies-from-browser", sanitize_for_shell(self.options.cookies_from_browser)]
        parts.extend(sanitize_for_shell(argument) for argument in self.options.extra_arguments)
        return parts

    def build_metadata_command(self, video_url: str) -> str:
        """Arguments asking the extractor for one JSON metadata document.

        Args:
            video_url: Page URL of the video (already trimmed)
        """
        parts = [
            "--dump-single-json",
            "--no-warnings",
            "-f", sanitize_for_shell(self.options.stream_selector),
        ]
        parts += self._playlist_arguments()
        parts += self._access_arguments()
        parts.append(sanitize_for_shell(video_url))
        return self._join(parts)

    def build_download_command(self, video_url: str, output_template: Union[str, Path]) -> str:
        """Arguments downloading a video (or its audio) to local files.

        The extractor prints the final path of every file it writes, one
        per line, after post-processing.

        Args:
            video_url: Page URL of the video or playlist
            output_template: yt-dlp output template (``%(title)s.%(ext)s`` style)
        """
        options = self.options
        parts = []
        if options.audio_only:
            parts += ["-x", "--audio-format", sanitize_for_shell(options.audio_quality.audio_format)]
        parts += ["-f", sanitize_for_shell(options.download_selector)]
        parts += ["--no-warnings", "--no-progress"]
        if options.time_range is not None:
            parts += ["--download-sections", sanitize_for_shell(options.time_range.to_section())]
        parts += self._playlist_arguments()
        if options.ignore_errors:
            parts.append("--ignore-errors")
        parts += self._access_arguments()
        parts += [
            "-o", sanitize_for_shell(str(output_template)),
            "--no-simulate",
            "--print", sanitize_for_shell("after_move:filepath"),
            sanitize_for_shell(video_url),
        ]
        return self._join(parts)

    def build_conversion_command(self, input_url: str, output_path: Union[str, Path]) -> str:
        """Arguments remuxing a stream into a local file without re-encoding.

        Args:
            input_url: Stream URL or local path to read
            output_path: Destination file; its extension picks the container
        """
        parts = [
            "-nostdin",
            "-y",
            "-loglevel", "error",
            "-i", sanitize_for_shell(input_url),
            "-c", "copy",
            sanitize_for_shell(str(output_path)),
        ]
        return self._join(parts)

    def build_subtitle_burn_command(
        self,
        input_path: Union[str, Path],
        subtitle_path: Union[str, Path],
        output_path: Union[str, Path],
        options: Optional[SubtitleBurnOptions] = None,
    ) -> str:
        """Arguments re-encoding a video with subtitles drawn onto it.

        Args:
            input_path: Video to read
            subtitle_path: .srt, .vtt, .ass, .ssa or .sub file
            output_path: Destination file
            options: Styling and encoder settings (defaults if None)
        """
        options = options or SubtitleBurnOptions()
        parts = [
            "-nostdin",
            "-y",
            "-loglevel", "error",
            "-i", sanitize_for_shell(str(input_path)),
            "-vf", sanitize_for_shell(build_subtitle_filter(subtitle_path, options)),
            "-c:v", sanitize_for_shell(options.video_codec),
            "-crf", str(options.crf),
            "-c:a", "copy" if options.copy_audio else "aac",
            sanitize_for_shell(str(output_path)),
        ]
        return self._join(parts)


__all__ = ["CommandBuilder", "DEFAULT_FORMAT_SELECTOR", "build_subtitle_filter"]
