"""Playback-facing facade over the executor and both caches.

StreamService wires one ProcessExecutor to a MetadataCache and a
ConversionCache from a StreamConfig, and exposes what a player needs: a
playable stream URL, or a local file holding that stream. It also runs
the two one-shot jobs that are not cached: downloading a video (or its
audio) with the extractor, and burning subtitles into a local video.
"""
import asyncio
import logging
import uuid
from pathlib import Path
from typing import List, Optional, Union

import aiofiles.os

from ytstream.config import StreamConfig

from .command_builder import CommandBuilder
from .conversion_cache import ConversionCache
from .exceptions import (
    FilesystemError,
    InvalidInvocationError,
    MetadataExtractionError,
    ToolCancelledError,
    ToolFailureError,
    ToolTimeoutError,
)
from .extractor_options import ExtractorOptions, PlaylistHandling
from .metadata_cache import MetadataCache
from .process_executor import EXTRACTOR, TRANSCODER, ProcessExecutor
from .subtitles import SubtitleBurnOptions, is_supported_subtitle_format, parse_subtitle_file
from .types import VideoMetadata
from .url_processor import trim_url, validate_url

logger = logging.getLogger(__name__)

# yt-dlp output template for downloads
DOWNLOAD_TEMPLATE = "%(title)s [%(id)s].%(ext)s"


class StreamService:
    """Resolve remote videos and materialize their streams on demand.

    Example:
        async with StreamService(load_config()) as service:
            url = await service.get_direct_url("https://youtu.be/dQw4w9WgXcQ")
            path = await service.materialize("https://youtu.be/dQw4w9WgXcQ")
    """

    def __init__(
        self,
        config: StreamConfig,
        executor: Optional[ProcessExecutor] = None,
        options: Optional[ExtractorOptions] = None,
    ):
        """Initialize the service.

        Args:
            config: Validated configuration
            executor: Executor to share; one is built from config if omitted
            options: Extractor options; derived from config if omitted
        """
        self.config = config
        self.executor = executor or ProcessExecutor(
            {EXTRACTOR: config.YTDLP_PATH, TRANSCODER: config.FFMPEG_PATH}
        )
        self.commands = CommandBuilder(options or ExtractorOptions.from_config(config))
        self.metadata_cache = MetadataCache(
            self.executor,
            default_ttl=config.metadata_ttl,
            timeout=config.EXTRACTOR_TIMEOUT,
            command_builder=self.commands,
        )
        self.conversion_cache = ConversionCache(
            self.executor,
            config.output_dir,
            capacity=config.CONVERSION_CACHE_CAPACITY,
            timeout=config.TRANSCODE_TIMEOUT,
            command_builder=self.commands,
        )

    @property
    def options(self) -> ExtractorOptions:
        return self.commands.options

    async def resolve(
        self,
        url: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> VideoMetadata:
        """Title, duration and streams for a video page URL."""
        return await self.metadata_cache.resolve(url, cancel_event)

    async def get_direct_url(
        self,
        url: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Playable stream URL for a video page URL."""
        metadata = await self.resolve(url, cancel_event)
        return metadata.direct_url

    async def materialize(
        self,
        url: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        """Resolve a video page URL and remux its primary stream to a local file."""
        metadata = await self.resolve(url, cancel_event)
        if not metadata.direct_url:
            raise MetadataExtractionError("No stream to materialize", url=url)
        logger.info(f"Materializing '{metadata.title}'")
        return await self.conversion_cache.materialize(metadata.direct_url, cancel_event)

    async def download(
        self,
        url: str,
        output_dir: Optional[Union[str, Path]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[Path]:
        """Download a video, its audio, or a playlist with the extractor.

        Quality, audio-only mode, time range and playlist handling come
        from the extractor options. Downloaded files are not cached and
        are never deleted by close().

        Args:
            url: Video or playlist page URL
            output_dir: Target directory (default: ``<OUTPUT_DIR>/downloads``)
            cancel_event: Set to abort the download

        Returns:
            Paths of the files the extractor wrote, in download order

        Raises:
            URLValidationError: If the URL is blank or malformed
            FilesystemError: If the target directory cannot be created
            ToolFailureError: If the extractor failed
            MetadataExtractionError: If the extractor reported no file
        """
        validate_url(url)
        correlation_id = str(uuid.uuid4())[:8]
        if self.options.playlist is PlaylistHandling.SINGLE:
            url = trim_url(url)

        target = Path(output_dir) if output_dir else self.config.output_dir / "downloads"
        try:
            await aiofiles.os.makedirs(target, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Could not create download directory: {e}",
                path=str(target),
                url=url,
                correlation_id=correlation_id,
            ) from e

        logger.info(f"[{correlation_id}] Downloading {url} to {target}")
        result = await self.executor.execute(
            EXTRACTOR,
            self.commands.build_download_command(url, target / DOWNLOAD_TEMPLATE),
            cancel_event=cancel_event,
            timeout=self.config.TRANSCODE_TIMEOUT,
            correlation_id=correlation_id,
        )

        paths = [Path(line.strip()) for line in result.stdout.splitlines() if line.strip()]
        if not result.success and not (self.options.ignore_errors and paths):
            raise ToolFailureError(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                message=f"Download failed with exit code {result.exit_code}",
                url=url,
                correlation_id=correlation_id,
            )
        if not paths:
            raise MetadataExtractionError(
                "Extractor did not report any downloaded file",
                url=url,
                correlation_id=correlation_id,
                stdout=result.stdout,
            )

        logger.info(f"[{correlation_id}] Downloaded {len(paths)} file(s)")
        return paths

    async def burn_subtitles(
        self,
        video_path: Union[str, Path],
        subtitle_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
        options: Optional[SubtitleBurnOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        """Re-encode a local video with subtitles drawn onto its frames.

        Args:
            video_path: Video to read
            subtitle_path: .srt, .vtt, .ass, .ssa or .sub file
            output_path: Destination (default: ``<name>.subtitled<ext>`` beside the input)
            options: Styling and encoder settings
            cancel_event: Set to abort the transcode

        Returns:
            Path of the new video

        Raises:
            InvalidInvocationError: Unsupported subtitle format, empty
                subtitle file, or output path equal to the input
            FilesystemError: If an input is missing
            ToolFailureError: If the transcoder failed
        """
        correlation_id = str(uuid.uuid4())[:8]
        video_path = Path(video_path)
        subtitle_path = Path(subtitle_path)

        if not is_supported_subtitle_format(subtitle_path):
            raise InvalidInvocationError(
                f"Unsupported subtitle format: {subtitle_path.suffix or subtitle_path.name}",
                correlation_id=correlation_id,
            )
        for path in (video_path, subtitle_path):
            if not await aiofiles.os.path.isfile(path):
                raise FilesystemError(
                    f"File not found: {path}", path=str(path), correlation_id=correlation_id
                )

        if output_path is None:
            output_path = video_path.with_name(f"{video_path.stem}.subtitled{video_path.suffix or '.mp4'}")
        output_path = Path(output_path)
        if output_path.resolve() == video_path.resolve():
            raise InvalidInvocationError(
                "Output path must differ from the input video", correlation_id=correlation_id
            )

        track = await parse_subtitle_file(subtitle_path)
        if track.format != "unknown" and not track.entries:
            raise InvalidInvocationError(
                f"Subtitle file has no cues: {subtitle_path}", correlation_id=correlation_id
            )

        try:
            await aiofiles.os.makedirs(output_path.parent, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Could not create output directory: {e}",
                path=str(output_path.parent),
                correlation_id=correlation_id,
            ) from e

        arguments = self.commands.build_subtitle_burn_command(
            video_path, subtitle_path, output_path, options
        )
        logger.info(f"[{correlation_id}] Burning {len(track)} cue(s) into {output_path}")

        try:
            result = await self.executor.execute(
                TRANSCODER,
                arguments,
                cancel_event=cancel_event,
                timeout=self.config.TRANSCODE_TIMEOUT,
                correlation_id=correlation_id,
            )
        except (ToolTimeoutError, ToolCancelledError, asyncio.CancelledError):
            await self._discard(output_path, correlation_id)
            raise

        if not result.success:
            await self._discard(output_path, correlation_id)
            raise ToolFailureError(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                message=f"Subtitle burn failed with exit code {result.exit_code}",
                correlation_id=correlation_id,
            )

        return output_path

    @staticmethod
    async def _discard(path: Path, correlation_id: str) -> None:
        """Delete partial output best-effort."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[{correlation_id}] Could not delete partial output {path}: {e}")

    def get_cached_title(self, url: str) -> Optional[str]:
        return self.metadata_cache.get_cached_title(url)

    async def close(self) -> None:
        """Clear both caches and delete every materialized file."""
        self.metadata_cache.clear()
        await self.conversion_cache.clear()

    async def __aenter__(self) -> "StreamService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["StreamService", "DOWNLOAD_TEMPLATE"]
