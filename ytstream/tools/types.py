"""Shared types and data classes for the tools package.

Kept in their own module so the executor, caches and service can all import
them without circular imports. Every type here is immutable once built.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .exceptions import ExternalToolError, FailureKind


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external process invocation.

    Attributes:
        exit_code: Process exit code
        stdout: Captured standard output text
        stderr: Captured standard error text
        duration: Wall-clock seconds from launch to exit
    """
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def success(self) -> bool:
        """True when the process exited with code zero."""
        return self.exit_code == 0

    def __iter__(self) -> Iterator:
        """Allow ``exit_code, stdout, stderr = result``."""
        return iter((self.exit_code, self.stdout, self.stderr))


class OutcomeKind(Enum):
    """Tag for ExecutionOutcome."""
    SUCCESS = "success"
    INVALID_INVOCATION = FailureKind.INVALID_INVOCATION.value
    TIMEOUT = FailureKind.TIMEOUT.value
    CANCELLED = FailureKind.CANCELLED.value
    TOOL_FAILURE = FailureKind.TOOL_FAILURE.value


@dataclass(frozen=True)
class ExecutionOutcome:
    """Non-raising result of ProcessExecutor.run().

    SUCCESS carries only ``result``. TOOL_FAILURE carries both the
    ProcessResult and the matching ToolFailureError. The remaining kinds
    carry only ``error``.
    """
    kind: OutcomeKind
    result: Optional[ProcessResult] = None
    error: Optional[ExternalToolError] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass(frozen=True)
class StreamDescriptor:
    """One candidate stream reported by the extractor."""
    url: str
    format_id: Optional[str] = None
    ext: Optional[str] = None
    protocol: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class VideoMetadata:
    """Resolved metadata for a remote video.

    Attributes:
        source_url: The URL the caller asked about
        video_id: Stable identifier, when the URL shape is recognized
        title: Video title
        duration: Duration in seconds, if the extractor reported one
        streams: Candidate streams, best first
        expires_at: When the primary stream URL stops being valid (UTC)
    """
    source_url: str
    title: str
    streams: Tuple[StreamDescriptor, ...]
    video_id: Optional[str] = None
    duration: Optional[float] = None
    expires_at: Optional[datetime] = None

    @property
    def direct_url(self) -> Optional[str]:
        """URL of the primary stream, or None when nothing was resolved."""
        return self.streams[0].url if self.streams else None


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConversionCacheEntry:
    """A transcoded artifact on disk, keyed by the content address of its source."""
    key: str
    source_url: str
    output_path: Path
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class MetadataCacheEntry:
    """Resolved metadata plus the instant it goes stale."""
    key: str
    metadata: VideoMetadata
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at


__all__ = [
    "ProcessResult",
    "OutcomeKind",
    "ExecutionOutcome",
    "StreamDescriptor",
    "VideoMetadata",
    "ConversionCacheEntry",
    "MetadataCacheEntry",
    "utc_now",
]
