"""Unit tests for MetadataCache and extractor output parsing.

The extractor is replaced by a fake executor returning canned yt-dlp
output, and time by an injected clock. Covers:
- Hits, misses and key sharing between URL spellings
- Expiry from signed stream URLs and the default TTL
- Failures leaving the cache untouched
- JSON and line-format output parsing
"""
import asyncio
import json
import shlex
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from ytstream.tools.command_builder import CommandBuilder
from ytstream.tools.exceptions import (
    MetadataExtractionError,
    ToolCancelledError,
    ToolFailureError,
    ToolTimeoutError,
    URLValidationError,
)
from ytstream.tools.metadata_cache import DEFAULT_TTL, MetadataCache, parse_extractor_output
from ytstream.tools.process_executor import EXTRACTOR, ProcessExecutor
from ytstream.tools.types import ProcessResult

WATCH_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL123&t=42s"
SHORT_URL = "https://youtu.be/dQw4w9WgXcQ?si=abc"
STREAM_URL = "https://rr1.googlevideo.com/videoplayback?expire=1700000000&itag=18"
LOW_URL = "https://rr1.googlevideo.com/videoplayback?expire=1700000000&itag=17"

EXPIRES = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def info_json(url=STREAM_URL, **overrides) -> str:
    info = {
        "id": "dQw4w9WgXcQ",
        "title": "Never Gonna Give You Up",
        "duration": 212,
        "url": url,
        "format_id": "18",
        "ext": "mp4",
        "protocol": "https",
        "width": 640,
        "height": 360,
        "formats": [
            {"format_id": "17", "url": LOW_URL, "ext": "3gp", "width": 176, "height": 144},
            {"format_id": "18", "url": url, "ext": "mp4", "width": 640, "height": 360},
            {"format_id": "sb0", "ext": "mhtml"},
        ],
    }
    info.update(overrides)
    return json.dumps(info)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_executor(stdout: str = None, exit_code: int = 0, stderr: str = ""):
    executor = MagicMock(spec=ProcessExecutor)
    executor.execute = AsyncMock(
        return_value=ProcessResult(
            exit_code=exit_code,
            stdout=info_json() if stdout is None else stdout,
            stderr=stderr,
        )
    )
    return executor


@pytest.fixture
def clock():
    return FakeClock(datetime(2023, 11, 14, 20, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def executor():
    return make_executor()


@pytest.fixture
def cache(executor, clock):
    return MetadataCache(executor, clock=clock)


class TestResolve:
    """Tests for resolve() hits and misses."""

    @pytest.mark.asyncio
    async def test_resolve_returns_metadata(self, cache):
        metadata = await cache.resolve(WATCH_URL)

        assert metadata.title == "Never Gonna Give You Up"
        assert metadata.video_id == "dQw4w9WgXcQ"
        assert metadata.duration == 212.0
        assert metadata.direct_url == STREAM_URL
        assert [s.format_id for s in metadata.streams] == ["18", "17"]
        assert metadata.source_url == WATCH_URL

    @pytest.mark.asyncio
    async def test_second_resolve_is_a_hit(self, cache, executor):
        first = await cache.resolve(WATCH_URL)
        second = await cache.resolve(WATCH_URL)

        assert first == second
        assert executor.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_url_spellings_share_an_entry(self, cache, executor):
        await cache.resolve(WATCH_URL)
        await cache.resolve(SHORT_URL)
        await cache.resolve("https://www.youtube.com/shorts/dQw4w9WgXcQ")

        assert executor.execute.call_count == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_extractor_gets_trimmed_url(self, cache, executor):
        await cache.resolve(WATCH_URL)

        args, kwargs = executor.execute.call_args
        assert args[0] == EXTRACTOR
        argv = shlex.split(args[1])
        assert argv[-1] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert "--dump-single-json" in argv
        assert argv[argv.index("-f") + 1] == "best[ext=mp4]/best"

    @pytest.mark.asyncio
    async def test_cookies_option_passed(self, executor, clock):
        cache = MetadataCache(
            executor,
            clock=clock,
            command_builder=CommandBuilder(cookies_from_browser="firefox"),
        )
        await cache.resolve(WATCH_URL)

        argv = shlex.split(executor.execute.call_args.args[1])
        assert argv[argv.index("--cookies-from-browser") + 1] == "firefox"

    @pytest.mark.asyncio
    async def test_non_youtube_url_keyed_by_trimmed_url(self, clock):
        executor = make_executor(stdout=info_json(url="https://cdn.example.com/v.mp4", id="abc"))
        cache = MetadataCache(executor, clock=clock)

        metadata = await cache.resolve("https://vimeo.com/123?utm_source=feed")
        again = await cache.resolve("https://vimeo.com/123")

        assert metadata.video_id == "abc"
        assert again == metadata
        assert executor.execute.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "   ", None, "not a url", "ftp://example.com/v"])
    async def test_invalid_url_rejected(self, cache, executor, url):
        with pytest.raises(URLValidationError):
            await cache.resolve(url)
        executor.execute.assert_not_called()


class TestExpiry:
    """Tests for entry lifetime."""

    @pytest.mark.asyncio
    async def test_expiry_taken_from_stream_url(self, cache):
        metadata = await cache.resolve(WATCH_URL)
        assert metadata.expires_at == EXPIRES

    @pytest.mark.asyncio
    async def test_default_ttl_without_expire_param(self, clock):
        executor = make_executor(stdout=info_json(url="https://cdn.example.com/v.mp4", formats=[]))
        cache = MetadataCache(executor, clock=clock)

        metadata = await cache.resolve(WATCH_URL)

        assert metadata.expires_at == clock.now + DEFAULT_TTL
        assert DEFAULT_TTL == timedelta(hours=4)

    @pytest.mark.asyncio
    async def test_expired_entry_is_re_resolved(self, cache, executor, clock):
        await cache.resolve(WATCH_URL)

        clock.now = EXPIRES
        assert cache.get_cached(WATCH_URL) is None
        assert len(cache) == 0

        await cache.resolve(WATCH_URL)
        assert executor.execute.call_count == 2

    @pytest.mark.asyncio
    async def test_entry_valid_just_before_expiry(self, cache, executor, clock):
        await cache.resolve(WATCH_URL)

        clock.now = EXPIRES - timedelta(seconds=1)
        await cache.resolve(WATCH_URL)

        assert executor.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_purge_expired(self, clock):
        executor = make_executor(stdout=info_json(url="https://cdn.example.com/v.mp4", formats=[]))
        cache = MetadataCache(executor, default_ttl=timedelta(minutes=5), clock=clock)
        await cache.resolve(WATCH_URL)
        await cache.resolve("https://vimeo.com/1")

        assert cache.purge_expired() == 0
        clock.advance(minutes=5)
        assert cache.purge_expired() == 2
        assert len(cache) == 0

    def test_non_positive_ttl_rejected(self, executor):
        with pytest.raises(ValueError):
            MetadataCache(executor, default_ttl=timedelta(0))


class TestFailures:
    """Failures propagate and never populate the cache."""

    @pytest.mark.asyncio
    async def test_tool_failure(self, clock):
        executor = make_executor(stdout="", exit_code=1, stderr="ERROR: Video unavailable")
        cache = MetadataCache(executor, clock=clock)

        with pytest.raises(ToolFailureError) as exc_info:
            await cache.resolve(WATCH_URL)

        assert exc_info.value.exit_code == 1
        assert "Video unavailable" in exc_info.value.stderr
        assert not isinstance(exc_info.value, MetadataExtractionError)
        assert len(cache) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ToolTimeoutError(timeout=60),
        ToolCancelledError(),
    ])
    async def test_timeout_and_cancel_propagate(self, executor, clock, error):
        executor.execute.side_effect = error
        cache = MetadataCache(executor, clock=clock)

        with pytest.raises(type(error)):
            await cache.resolve(WATCH_URL, asyncio.Event())

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_no_streams(self, clock):
        executor = make_executor(stdout=json.dumps({"id": "x", "title": "Audio only", "formats": []}))
        cache = MetadataCache(executor, clock=clock)

        with pytest.raises(MetadataExtractionError):
            await cache.resolve(WATCH_URL)
        assert len(cache) == 0


class TestInvalidateAndTitle:
    """Tests for invalidate(), clear() and get_cached_title()."""

    @pytest.mark.asyncio
    async def test_cached_title(self, cache):
        assert cache.get_cached_title(WATCH_URL) is None
        await cache.resolve(WATCH_URL)
        assert cache.get_cached_title(SHORT_URL) == "Never Gonna Give You Up"

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, executor):
        await cache.resolve(WATCH_URL)

        assert cache.invalidate(SHORT_URL) is True
        assert cache.invalidate(SHORT_URL) is False
        await cache.resolve(WATCH_URL)
        assert executor.execute.call_count == 2

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.resolve(WATCH_URL)
        cache.clear()
        assert len(cache) == 0
        assert cache.get_cached(WATCH_URL) is None


class TestParseExtractorOutput:
    """Tests for parse_extractor_output()."""

    def test_line_format(self):
        stdout = "My Video\nhttps://cdn.example.com/1.mp4\nhttps://cdn.example.com/2.m4a\n"

        metadata = parse_extractor_output(stdout, WATCH_URL)

        assert metadata.title == "My Video"
        assert metadata.direct_url == "https://cdn.example.com/1.mp4"
        assert len(metadata.streams) == 2
        assert metadata.video_id == "dQw4w9WgXcQ"

    def test_requested_formats_used_when_no_top_level_url(self):
        info = {
            "title": "Merged",
            "requested_formats": [
                {"format_id": "137", "url": "https://cdn.example.com/video"},
                {"format_id": "140", "url": "https://cdn.example.com/audio"},
            ],
        }

        metadata = parse_extractor_output(json.dumps(info), "https://vimeo.com/9")

        assert [s.format_id for s in metadata.streams] == ["137", "140"]
        assert metadata.title == "Merged"

    def test_missing_title_defaults(self):
        metadata = parse_extractor_output(json.dumps({"url": "https://cdn.example.com/a"}), "https://vimeo.com/9")
        assert metadata.title == "Unknown"
        assert metadata.duration is None

    @pytest.mark.parametrize("stdout", ["", "   \n", "{not json", "Just a title\n"])
    def test_unusable_output(self, stdout):
        with pytest.raises(MetadataExtractionError):
            parse_extractor_output(stdout, WATCH_URL)

    def test_playlist_document_uses_first_entry(self):
        info = {
            "_type": "playlist",
            "title": "Mix",
            "entries": [
                {"id": "first", "title": "Opening", "url": "https://cdn.example.com/1", "duration": 61},
                {"id": "second", "title": "Closing", "url": "https://cdn.example.com/2"},
            ],
        }

        metadata = parse_extractor_output(json.dumps(info), "https://vimeo.com/channels/9")

        assert metadata.title == "Opening"
        assert metadata.direct_url == "https://cdn.example.com/1"
        assert metadata.duration == 61.0
