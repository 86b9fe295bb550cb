"""External tool orchestration for remote video playback.

This package runs the extractor (yt-dlp) and the transcoder (ffmpeg) as
supervised child processes, memoizes what they produce, and keeps untrusted
URL text from ever being interpreted as anything but a literal argument.
"""
import logging

# Set up package logger
logger = logging.getLogger(__name__)

# Import exception hierarchy
from .exceptions import (
    ExternalToolError,
    FailureKind,
    FilesystemError,
    InvalidInvocationError,
    MetadataExtractionError,
    ToolCancelledError,
    ToolFailureError,
    ToolTimeoutError,
    URLValidationError,
    is_retryable,
)

# Import shared types
from .types import (
    ConversionCacheEntry,
    ExecutionOutcome,
    MetadataCacheEntry,
    OutcomeKind,
    ProcessResult,
    StreamDescriptor,
    VideoMetadata,
)

# Import URL helpers
from .url_processor import (
    URLProcessor,
    cache_key_for,
    extract_video_id,
    parse_expiry,
    sanitize_for_shell,
    trim_url,
    validate_url,
)

# Import core components
from .process_executor import EXTRACTOR, TRANSCODER, ProcessExecutor, kill_process_tree
from .extractor_options import (
    AudioQuality,
    ExtractorOptions,
    PlaylistHandling,
    TimeRange,
    VideoQuality,
)
from .subtitles import (
    SubtitleBurnOptions,
    SubtitleEntry,
    SubtitleTrack,
    find_subtitle_files,
    is_supported_subtitle_format,
    parse_subtitle_file,
)
from .command_builder import CommandBuilder
from .conversion_cache import ConversionCache, content_address
from .metadata_cache import MetadataCache, parse_extractor_output
from .stream_service import StreamService


# Public API exports
__all__ = [
    # Exception hierarchy
    "ExternalToolError",
    "FailureKind",
    "FilesystemError",
    "InvalidInvocationError",
    "MetadataExtractionError",
    "ToolCancelledError",
    "ToolFailureError",
    "ToolTimeoutError",
    "URLValidationError",
    "is_retryable",
    # Types
    "ConversionCacheEntry",
    "ExecutionOutcome",
    "MetadataCacheEntry",
    "OutcomeKind",
    "ProcessResult",
    "StreamDescriptor",
    "VideoMetadata",
    # URL processing
    "URLProcessor",
    "cache_key_for",
    "extract_video_id",
    "parse_expiry",
    "sanitize_for_shell",
    "trim_url",
    "validate_url",
    # Components
    "EXTRACTOR",
    "TRANSCODER",
    "ProcessExecutor",
    "kill_process_tree",
    "CommandBuilder",
    "ConversionCache",
    "content_address",
    "MetadataCache",
    "parse_extractor_output",
    "StreamService",
    # Extractor options
    "AudioQuality",
    "ExtractorOptions",
    "PlaylistHandling",
    "TimeRange",
    "VideoQuality",
    # Subtitles
    "SubtitleBurnOptions",
    "SubtitleEntry",
    "SubtitleTrack",
    "find_subtitle_files",
    "is_supported_subtitle_format",
    "parse_subtitle_file",
]
