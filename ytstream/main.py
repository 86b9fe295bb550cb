"""Command-line entry point for ytstream."""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from ytstream.config import StreamConfig, load_config
from ytstream.tools import (
    AudioQuality,
    ExternalToolError,
    ExtractorOptions,
    StreamService,
    TimeRange,
    VideoQuality,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging, falling back to INFO on an unknown level."""
    valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if level.upper() not in valid_levels:
        print(f"Warning: Invalid LOG_LEVEL '{level}'. Using INFO.", file=sys.stderr)
        log_level = logging.INFO
    else:
        log_level = getattr(logging, level.upper())

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=log_level
    )
    logger.info(f"Logging configured at level: {level}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ytstream",
        description="Resolve a video URL to a playable stream or a local file.",
    )
    parser.add_argument("url", help="Video page URL")
    parser.add_argument(
        "--materialize",
        action="store_true",
        help="Remux the stream into a local file and print its path",
    )
    parser.add_argument(
        "--download",
        action="store_true",
        help="Download with the extractor instead of resolving a stream",
    )
    parser.add_argument(
        "--audio-only",
        action="store_true",
        help="Extract audio only (overrides EXTRACT_AUDIO_ONLY)",
    )
    parser.add_argument(
        "--quality",
        choices=[quality.value for quality in VideoQuality],
        help="Quality preset (overrides VIDEO_QUALITY and AUDIO_QUALITY)",
    )
    parser.add_argument("--start", type=float, help="Download from this second")
    parser.add_argument("--end", type=float, help="Download up to this second")
    parser.add_argument(
        "--burn-subtitles",
        metavar="SUBTITLE_FILE",
        help="Materialize the stream, then burn this subtitle file into it",
    )
    return parser


def extractor_options(args: argparse.Namespace, config: StreamConfig) -> ExtractorOptions:
    """Options from config with command-line overrides applied."""
    overrides = {}
    if args.audio_only:
        overrides["audio_only"] = True
    if args.quality:
        overrides["video_quality"] = VideoQuality(args.quality)
        overrides["audio_quality"] = AudioQuality(args.quality)
    if args.start is not None or args.end is not None:
        overrides["time_range"] = TimeRange(start=args.start or 0.0, end=args.end)
    return ExtractorOptions.from_config(config).with_overrides(**overrides)


async def main(argv: Optional[List[str]] = None) -> int:
    """Run one resolve, materialize, download or subtitle burn request.

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
        options = extractor_options(args, config)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2

    configure_logging(config.LOG_LEVEL)

    # SIGTERM withdraws interest in the running tool instead of killing us mid-write
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported on this platform")

    keep_files = args.materialize or bool(args.burn_subtitles)
    service = StreamService(config, options=options)
    try:
        if args.download:
            for path in await service.download(args.url, cancel_event=cancel_event):
                print(f"File:     {path}")
            return 0

        metadata = await service.resolve(args.url, cancel_event)
        print(f"Title:    {metadata.title}")
        if metadata.duration is not None:
            print(f"Duration: {metadata.duration:.0f}s")

        if keep_files:
            path = await service.materialize(args.url, cancel_event)
            print(f"File:     {path}")
            if args.burn_subtitles:
                subtitled = await service.burn_subtitles(
                    path, args.burn_subtitles, cancel_event=cancel_event
                )
                print(f"Subbed:   {subtitled}")
        else:
            print(f"Stream:   {metadata.direct_url}")
        return 0

    except ExternalToolError as e:
        logger.error(str(e))
        print(e.to_user_message(), file=sys.stderr)
        return 1

    finally:
        # Materialized and downloaded files outlive the process; everything else is dropped
        if not keep_files and not args.download:
            await service.close()
