"""Time-bounded memoization of extractor results.

MetadataCache asks the extractor tool (yt-dlp) what a video page resolves
to: title, duration and candidate stream URLs. Results are kept until the
expiry embedded in the signed stream URL, or for a fixed TTL when the URL
carries none. Expired entries are treated as absent on read.
"""
import asyncio
import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .command_builder import CommandBuilder
from .exceptions import MetadataExtractionError, ToolFailureError
from .process_executor import EXTRACTOR, ProcessExecutor
from .types import MetadataCacheEntry, StreamDescriptor, VideoMetadata, utc_now
from .url_processor import (
    cache_key_for,
    extract_video_id,
    parse_expiry,
    trim_url,
    validate_url,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=4)


def _as_int(value: Any) -> Optional[int]:
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def _descriptor(fmt: Dict[str, Any]) -> Optional[StreamDescriptor]:
    url = fmt.get("url")
    if not url or not isinstance(url, str):
        return None
    return StreamDescriptor(
        url=url,
        format_id=fmt.get("format_id"),
        ext=fmt.get("ext"),
        protocol=fmt.get("protocol"),
        width=_as_int(fmt.get("width")),
        height=_as_int(fmt.get("height")),
    )


def _streams_from_info(info: Dict[str, Any]) -> List[StreamDescriptor]:
    """Candidate streams from a yt-dlp info dict, best first, no duplicates.

    Order: the selected format itself, then the selected component formats,
    then every other format (yt-dlp lists those worst first).
    """
    candidates: List[Dict[str, Any]] = []
    if info.get("url"):
        candidates.append(info)
    candidates.extend(info.get("requested_formats") or [])
    candidates.extend(reversed(info.get("formats") or []))

    streams = []
    seen = set()
    for fmt in candidates:
        if not isinstance(fmt, dict):
            continue
        descriptor = _descriptor(fmt)
        if descriptor and descriptor.url not in seen:
            seen.add(descriptor.url)
            streams.append(descriptor)
    return streams


def parse_extractor_output(stdout: str, source_url: str, correlation_id: Optional[str] = None) -> VideoMetadata:
    """Build VideoMetadata from what the extractor printed.

    Accepts either a JSON info document (``--dump-single-json``) or the
    plain line format of ``--get-title --get-url`` (title line followed by
    one URL per line).

    Raises:
        MetadataExtractionError: If no stream URL can be found
    """
    text = (stdout or "").strip()
    if not text:
        raise MetadataExtractionError(
            "Extractor produced no output", url=source_url, correlation_id=correlation_id
        )

    if text.startswith("{"):
        try:
            info = json.loads(text)
        except json.JSONDecodeError as e:
            raise MetadataExtractionError(
                f"Extractor returned malformed JSON: {e}",
                url=source_url,
                correlation_id=correlation_id,
                stdout=stdout,
            ) from e

        entries = [entry for entry in info.get("entries") or [] if isinstance(entry, dict)]
        if entries and not info.get("url") and not info.get("formats"):
            logger.info(f"[{correlation_id}] Playlist with {len(entries)} entries; using the first")
            info = entries[0]

        streams = _streams_from_info(info)
        duration = info.get("duration")
        metadata = VideoMetadata(
            source_url=source_url,
            title=info.get("title") or "Unknown",
            streams=tuple(streams),
            video_id=extract_video_id(source_url) or info.get("id"),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
        )
    else:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        urls = [line for line in lines if line.startswith(("http://", "https://"))]
        titles = [line for line in lines if line not in urls]
        metadata = VideoMetadata(
            source_url=source_url,
            title=titles[0] if titles else "Unknown",
            streams=tuple(StreamDescriptor(url=url) for url in urls),
            video_id=extract_video_id(source_url),
        )

    if not metadata.streams:
        raise MetadataExtractionError(
            "Extractor did not return any stream URL",
            url=source_url,
            correlation_id=correlation_id,
            stdout=stdout,
        )
    return metadata


class MetadataCache:
    """Resolves video URLs through the extractor and memoizes the result.

    Keys are the video id when the URL shape is recognized, else the
    trimmed URL, so different spellings of the same video share an entry.
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        extractor: str = EXTRACTOR,
        default_ttl: timedelta = DEFAULT_TTL,
        timeout: Optional[float] = None,
        command_builder: Optional[CommandBuilder] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the cache.

        Args:
            executor: Executor used to run the extractor
            extractor: Logical name or path of the extractor
            default_ttl: Lifetime of entries whose stream URL has no expiry
            timeout: Per-run extractor timeout in seconds, or None
            command_builder: Argument builder (default CommandBuilder())
            clock: Returns the current aware UTC time
        """
        if executor is None:
            raise ValueError("executor is required")
        if default_ttl <= timedelta(0):
            raise ValueError(f"default_ttl must be positive (got: {default_ttl})")

        self._executor = executor
        self._extractor = extractor
        self._default_ttl = default_ttl
        self._timeout = timeout
        self._commands = command_builder or CommandBuilder()
        self._clock = clock
        self._entries: Dict[str, MetadataCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get_cached(self, url: str) -> Optional[VideoMetadata]:
        """Return unexpired cached metadata without running the extractor."""
        if not url or not isinstance(url, str) or not url.strip():
            return None

        key = cache_key_for(url)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            # Only drop the entry we looked at; a fresher one may have replaced it
            if self._entries.get(key) is entry:
                del self._entries[key]
            logger.debug(f"Metadata for {key} expired at {entry.expires_at.isoformat()}")
            return None

        return entry.metadata

    def get_cached_title(self, url: str) -> Optional[str]:
        """Title of a cached, unexpired entry, if any."""
        metadata = self.get_cached(url)
        return metadata.title if metadata else None

    async def resolve(
        self,
        url: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> VideoMetadata:
        """Return metadata for ``url``, running the extractor on a miss.

        Raises:
            URLValidationError: If the URL is blank or malformed
            ToolFailureError: If the extractor exits non-zero
            MetadataExtractionError: If its output holds no stream URL
            ToolTimeoutError: If the extractor exceeds its timeout
            ToolCancelledError: If cancel_event fires first
        """
        validate_url(url)

        cached = self.get_cached(url)
        if cached is not None:
            logger.info(f"Metadata cache hit for {cache_key_for(url)}")
            return cached

        correlation_id = str(uuid.uuid4())[:8]
        trimmed = trim_url(url)
        logger.info(f"[{correlation_id}] Resolving {trimmed}")

        result = await self._executor.execute(
            self._extractor,
            self._commands.build_metadata_command(trimmed),
            cancel_event=cancel_event,
            timeout=self._timeout,
            correlation_id=correlation_id,
        )

        if not result.success:
            raise ToolFailureError(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                message=f"Extractor failed with exit code {result.exit_code}",
                url=url,
                correlation_id=correlation_id,
            )

        metadata = parse_extractor_output(result.stdout, url, correlation_id)

        now = self._clock()
        expires_at = parse_expiry(metadata.direct_url) or now + self._default_ttl
        metadata = replace(metadata, expires_at=expires_at)

        key = cache_key_for(url)
        self._entries[key] = MetadataCacheEntry(key=key, metadata=metadata, expires_at=expires_at)
        logger.info(
            f"[{correlation_id}] Resolved '{metadata.title}' "
            f"({len(metadata.streams)} streams, expires {expires_at.isoformat()})"
        )
        return metadata

    def invalidate(self, url: str) -> bool:
        """Forget the entry for ``url``.

        Returns:
            True if an entry was removed
        """
        if not url or not isinstance(url, str) or not url.strip():
            return False
        return self._entries.pop(cache_key_for(url), None) is not None

    def clear(self) -> None:
        """Forget every entry."""
        count = len(self._entries)
        self._entries.clear()
        logger.debug(f"Cleared {count} metadata entries")

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Purged {len(expired)} expired metadata entries")
        return len(expired)


__all__ = [
    "MetadataCache",
    "parse_extractor_output",
    "DEFAULT_TTL",
]
