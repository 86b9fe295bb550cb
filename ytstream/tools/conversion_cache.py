"""Content-addressed cache of locally remuxed streams.

ConversionCache turns a remote stream URL into a local file by running the
transcoder in stream-copy mode, and remembers the result so the same URL is
never transcoded twice while its entry lives. Entries are evicted oldest
first by creation time once the cache is full; reading an entry does not
make it younger.
"""
import asyncio
import hashlib
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles.os

from .command_builder import CommandBuilder
from .exceptions import (
    FilesystemError,
    ToolCancelledError,
    ToolFailureError,
    ToolTimeoutError,
    URLValidationError,
)
from .process_executor import TRANSCODER, ProcessExecutor
from .types import ConversionCacheEntry, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 8
DEFAULT_CONTAINER = "mp4"


def content_address(source_url: str) -> str:
    """SHA-256 hex digest of a source URL, used as key and file name."""
    return hashlib.sha256(source_url.encode("utf-8")).hexdigest()


class ConversionCache:
    """Size-bounded cache of transcoded artifacts keyed by source URL digest.

    Concurrent materialize() calls for the same URL share one transcoder
    run: the first caller owns the run (and its cancel event), later callers
    wait for it. If the owner cancels, a waiting caller whose own cancel
    event is still clear starts a fresh run.

    Example:
        cache = ConversionCache(executor, "/var/cache/ytstream", capacity=4)
        path = await cache.materialize(stream_url, cancel_event)
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        output_dir: Union[str, Path],
        capacity: int = DEFAULT_CAPACITY,
        transcoder: str = TRANSCODER,
        container: str = DEFAULT_CONTAINER,
        timeout: Optional[float] = None,
        command_builder: Optional[CommandBuilder] = None,
    ):
        """Initialize the cache.

        Args:
            executor: Executor used to run the transcoder
            output_dir: Directory holding the transcoded files
            capacity: Maximum number of entries kept
            transcoder: Logical name or path of the transcoder
            container: Output file extension / container
            timeout: Per-run transcoder timeout in seconds, or None
            command_builder: Argument builder (default CommandBuilder())

        Raises:
            ValueError: If capacity is not a positive integer
        """
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"capacity must be a positive integer (got: {capacity})")
        if executor is None:
            raise ValueError("executor is required")

        self._executor = executor
        self._output_dir = Path(output_dir)
        self._capacity = capacity
        self._transcoder = transcoder
        self._container = container.lstrip(".")
        self._timeout = timeout
        self._commands = command_builder or CommandBuilder()
        self._entries: Dict[str, ConversionCacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def output_path_for(self, source_url: str) -> Path:
        """Deterministic artifact path for a source URL."""
        return self._output_dir / f"{content_address(source_url)}.{self._container}"

    def get(self, source_url: str) -> Optional[Path]:
        """Cached artifact path for a URL, without converting."""
        if not source_url:
            return None
        entry = self._entries.get(content_address(source_url))
        return entry.output_path if entry else None

    def entries(self) -> List[ConversionCacheEntry]:
        """Snapshot of the current entries, oldest first."""
        return sorted(self._entries.values(), key=lambda entry: entry.created_at)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, source_url: str) -> bool:
        return bool(source_url) and content_address(source_url) in self._entries

    async def materialize(
        self,
        source_url: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        """Return a local file holding the stream at ``source_url``.

        Args:
            source_url: Remote stream URL (HLS playlist, direct media URL, ...)
            cancel_event: Setting this abandons the call

        Returns:
            Path to the remuxed file

        Raises:
            URLValidationError: If source_url is blank
            ToolFailureError: If the transcoder exits non-zero
            ToolTimeoutError: If the transcoder exceeds its timeout
            ToolCancelledError: If cancel_event fires first
            FilesystemError: If the output directory cannot be created
        """
        if not source_url or not isinstance(source_url, str) or not source_url.strip():
            raise URLValidationError("Source URL cannot be null or empty", url=source_url)

        key = content_address(source_url)

        while True:
            entry = self._entries.get(key)
            if entry is not None:
                logger.info(f"Conversion cache hit for {key[:12]}: {entry.output_path}")
                return entry.output_path

            running = self._in_flight.get(key)
            if running is None:
                return await self._start_conversion(key, source_url, cancel_event)

            logger.info(f"Conversion of {key[:12]} already running; waiting for it")
            try:
                return await self._wait_for(running, cancel_event)
            except (ToolCancelledError, asyncio.CancelledError):
                if not running.done():
                    raise
                if cancel_event is not None and cancel_event.is_set():
                    raise
                logger.info(f"Shared conversion of {key[:12]} was cancelled by its owner; retrying")

    async def _start_conversion(
        self,
        key: str,
        source_url: str,
        cancel_event: Optional[asyncio.Event],
    ) -> Path:
        task = asyncio.ensure_future(self._convert(key, source_url, cancel_event))
        self._in_flight[key] = task

        def _forget(finished: asyncio.Task) -> None:
            if self._in_flight.get(key) is finished:
                del self._in_flight[key]

        task.add_done_callback(_forget)
        return await task

    @staticmethod
    async def _wait_for(
        running: asyncio.Task,
        cancel_event: Optional[asyncio.Event],
    ) -> Path:
        """Wait for another caller's run without being able to cancel it."""
        waiters = {running}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if running in done:
            return running.result()
        raise ToolCancelledError("Stopped waiting for a shared conversion")

    async def _convert(
        self,
        key: str,
        source_url: str,
        cancel_event: Optional[asyncio.Event],
    ) -> Path:
        correlation_id = str(uuid.uuid4())[:8]

        await self._evict_for_insert(correlation_id)

        output_path = await self._prepare_output_path(key, source_url, correlation_id)
        if await aiofiles.os.path.exists(output_path):
            logger.info(f"[{correlation_id}] Removing stale file at {output_path}")
            await self._remove_file(output_path, source_url, correlation_id)

        arguments = self._commands.build_conversion_command(source_url, output_path)
        logger.info(f"[{correlation_id}] Converting {key[:12]} to {output_path}")

        try:
            result = await self._executor.execute(
                self._transcoder,
                arguments,
                cancel_event=cancel_event,
                timeout=self._timeout,
                correlation_id=correlation_id,
            )
        except (ToolTimeoutError, ToolCancelledError, asyncio.CancelledError):
            await self._remove_file(output_path, source_url, correlation_id)
            raise

        if not result.success:
            await self._remove_file(output_path, source_url, correlation_id)
            raise ToolFailureError(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                message=f"Transcoder failed with exit code {result.exit_code}",
                url=source_url,
                correlation_id=correlation_id,
            )

        # Other keys may have been published while the transcoder ran
        await self._evict_for_insert(correlation_id)
        self._entries[key] = ConversionCacheEntry(
            key=key,
            source_url=source_url,
            output_path=output_path,
            created_at=utc_now(),
        )
        logger.info(f"[{correlation_id}] Stream converted to {output_path}")
        return output_path

    async def _prepare_output_path(self, key: str, source_url: str, correlation_id: str) -> Path:
        try:
            await aiofiles.os.makedirs(self._output_dir, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Could not create output directory: {e}",
                path=str(self._output_dir),
                url=source_url,
                correlation_id=correlation_id,
            ) from e
        return self._output_dir / f"{key}.{self._container}"

    async def _evict_for_insert(self, correlation_id: str) -> None:
        """Drop the oldest entries until there is room for one more."""
        while self._entries and len(self._entries) >= self._capacity:
            oldest = min(self._entries.values(), key=lambda entry: entry.created_at)
            if self._entries.get(oldest.key) is oldest:
                del self._entries[oldest.key]
            logger.info(f"[{correlation_id}] Cache full; evicting {oldest.key[:12]}")
            await self._remove_file(oldest.output_path, oldest.source_url, correlation_id)

    @staticmethod
    async def _remove_file(path: Path, source_url: str, correlation_id: str) -> bool:
        """Delete a file best-effort. Failures are logged, never raised."""
        try:
            await aiofiles.os.remove(path)
            logger.debug(f"[{correlation_id}] Deleted {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            error = FilesystemError(
                f"Could not delete {path}: {e}",
                path=str(path),
                url=source_url,
                correlation_id=correlation_id,
            )
            logger.error(str(error))
            return False

    async def invalidate(self, source_url: str) -> bool:
        """Forget one URL and delete its file.

        Returns:
            True if an entry was removed
        """
        if not source_url:
            return False
        entry = self._entries.pop(content_address(source_url), None)
        if entry is None:
            return False
        await self._remove_file(entry.output_path, entry.source_url, "invalidate")
        return True

    async def clear(self) -> None:
        """Forget every entry and delete every file."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            await self._remove_file(entry.output_path, entry.source_url, "clear")
        logger.info(f"Conversion cache cleared ({len(entries)} entries)")


__all__ = [
    "ConversionCache",
    "content_address",
    "DEFAULT_CAPACITY",
    "DEFAULT_CONTAINER",
]
