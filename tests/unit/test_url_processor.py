"""Unit tests for URL processing helpers.

Covers:
- Trimming/canonicalization and its idempotence
- Video id extraction for known and unknown URL shapes
- Expiry parsing from signed CDN URLs
- Shell quoting of hostile strings
- URL validation
"""
import shlex
from datetime import datetime, timezone

import pytest

from ytstream.tools.exceptions import FailureKind, URLValidationError
from ytstream.tools.url_processor import (
    URLProcessor,
    cache_key_for,
    extract_video_id,
    parse_expiry,
    sanitize_for_shell,
    trim_url,
    validate_url,
)


SAMPLE_URLS = [
    "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL123&index=2&t=42s",
    "HTTPS://WWW.YOUTUBE.COM/watch?feature=share&v=dQw4w9WgXcQ#comments",
    "https://youtu.be/dQw4w9WgXcQ?si=abcdef&t=10",
    "https://www.youtube.com/shorts/dQw4w9WgXcQ?feature=share",
    "https://cdn.example.com/video.m3u8?utm_source=x&utm_medium=y&token=abc%20def",
    "https://cdn.example.com/video.mp4?token=a+b&fbclid=zzz&q=",
    "https://example.com/path/only",
    "https://example.com/?a&b=1&utm_campaign=c",
    "http://youtube.com/watch? #",
    "https://youtu.be/dQw4w9WgXcQ #t=10",
    "https://cdn.example.com/v.mp4?token=abc #frag",
    "https://cdn.example.com/v.mp4?utm_source=x #",
    "https://cdn.example.com/dir/ ?",
    "http://example.com ?",
    "not a url at all",
    "",
    "   ",
]


class TestTrim:
    """Tests for trim_url()."""

    @pytest.mark.parametrize("url", SAMPLE_URLS)
    def test_trim_is_idempotent(self, url):
        """Trimming twice gives the same result as trimming once."""
        assert trim_url(trim_url(url)) == trim_url(url)

    def test_youtube_watch_keeps_only_video_id(self):
        url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL123&index=2&t=42s"
        assert trim_url(url) == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def test_youtube_watch_with_v_not_first(self):
        url = "https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ"
        assert trim_url(url) == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def test_scheme_and_host_lowercased(self):
        url = "HTTPS://WWW.YOUTUBE.COM/watch?v=dQw4w9WgXcQ"
        assert trim_url(url) == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def test_short_link_drops_query(self):
        assert trim_url("https://youtu.be/dQw4w9WgXcQ?si=abcdef") == "https://youtu.be/dQw4w9WgXcQ"

    def test_shorts_drops_query(self):
        url = "https://www.youtube.com/shorts/dQw4w9WgXcQ?feature=share"
        assert trim_url(url) == "https://www.youtube.com/shorts/dQw4w9WgXcQ"

    def test_generic_url_drops_tracking_params_only(self):
        url = "https://cdn.example.com/video.m3u8?utm_source=x&token=abc&fbclid=zzz"
        assert trim_url(url) == "https://cdn.example.com/video.m3u8?token=abc"

    def test_generic_url_without_tracking_unchanged(self):
        url = "https://cdn.example.com/video.m3u8?token=abc%2Fdef&sig=1"
        assert trim_url(url) == url

    @pytest.mark.parametrize("url, expected", [
        ("http://youtube.com/watch? #", "http://youtube.com/watch"),
        ("https://youtu.be/dQw4w9WgXcQ #t=10", "https://youtu.be/dQw4w9WgXcQ"),
        ("https://cdn.example.com/v.mp4?utm_source=x #", "https://cdn.example.com/v.mp4"),
        ("http://example.com ?", "http://example.com"),
    ])
    def test_no_trailing_whitespace_when_tail_is_dropped(self, url, expected):
        """Whitespace left in front of a dropped query or fragment is removed."""
        assert trim_url(url) == expected
        assert cache_key_for(url) == cache_key_for(trim_url(url))

    def test_blank_and_non_url_returned_as_is(self):
        assert trim_url("") == ""
        assert trim_url(None) is None
        assert trim_url("not a url") == "not a url"


class TestExtractVideoId:
    """Tests for extract_video_id()."""

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ&t=1",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ?t=5",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/live/dQw4w9WgXcQ?feature=share",
        "https://www.youtube.com/v/dQw4w9WgXcQ",
        "https://www.youtube-nocookie.com/embed/dQw4w9WgXcQ",
    ])
    def test_known_shapes(self, url):
        assert extract_video_id(url) == "dQw4w9WgXcQ"

    @pytest.mark.parametrize("url", [
        "https://vimeo.com/123456",
        "https://example.com/watch?v=dQw4w9WgXcQ",
        "https://www.youtube.com/watch?v=short",
        "https://www.youtube.com/watch?v=dQw4w9WgXcQextra",
        "https://www.youtube.com/channel/UC1234567890",
        "",
        None,
        "   ",
    ])
    def test_unrecognized_shapes_return_none(self, url):
        assert extract_video_id(url) is None

    def test_cache_key_prefers_video_id(self):
        assert cache_key_for("https://youtu.be/dQw4w9WgXcQ?si=x") == "dQw4w9WgXcQ"
        assert cache_key_for("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=3") == "dQw4w9WgXcQ"

    def test_cache_key_falls_back_to_trimmed_url(self):
        url = "https://vimeo.com/123456?utm_source=feed"
        assert cache_key_for(url) == "https://vimeo.com/123456"


class TestParseExpiry:
    """Tests for parse_expiry()."""

    def test_expire_query_param(self):
        url = "https://rr1.googlevideo.com/videoplayback?expire=1700000000&ei=abc"
        assert parse_expiry(url) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_expiry_is_timezone_aware_utc(self):
        expiry = parse_expiry("https://cdn.example.com/a.mp4?Expires=1700000000")
        assert expiry.tzinfo is not None
        assert expiry.utcoffset().total_seconds() == 0
        assert expiry.isoformat() == "2023-11-14T22:13:20+00:00"

    def test_expire_path_segment(self):
        url = "https://manifest.googlevideo.com/api/manifest/hls_playlist/expire/1700000000/ei/abc/index.m3u8"
        assert parse_expiry(url) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("url", [
        "https://cdn.example.com/a.mp4",
        "https://cdn.example.com/a.mp4?expire=",
        "https://cdn.example.com/a.mp4?expire=tomorrow",
        "https://cdn.example.com/a.mp4?expire=-5",
        "https://cdn.example.com/a.mp4?expire=99999999999999999999999",
        "http://[::1",
        "",
        None,
        12345,
    ])
    def test_missing_or_bad_values_return_none(self, url):
        """Never raises; returns None when nothing usable is present."""
        assert parse_expiry(url) is None


HOSTILE_STRINGS = [
    "plain",
    "with space",
    'double "quoted" text',
    "single 'quoted' text",
    "it's",
    "semi;colon; rm -rf /",
    "back`tick`",
    "$(whoami)",
    "${HOME} $PATH",
    "a && b || c",
    "pipe | tee out",
    "redirect > /tmp/x < /etc/passwd 2>&1",
    "paren (sub) shell",
    "glob * ? [a-z]",
    "tab\tand\nnewline",
    "back\\slash\\",
    "https://cdn.example.com/v.m3u8?a=1&b='2';echo pwned",
    "-flag-looking",
    "#comment",
    "~user",
    "",
]


class TestSanitizeForShell:
    """Tests for sanitize_for_shell()."""

    @pytest.mark.parametrize("text", HOSTILE_STRINGS)
    def test_round_trips_as_single_word(self, text):
        """The quoted text splits back into exactly one word equal to the input."""
        command = f"tool --before {sanitize_for_shell(text)} --after"
        assert shlex.split(command) == ["tool", "--before", text, "--after"]

    def test_empty_and_none_keep_argument_slot(self):
        assert sanitize_for_shell("") == "''"
        assert sanitize_for_shell(None) == "''"
        assert shlex.split(f"a {sanitize_for_shell('')} b") == ["a", "", "b"]

    def test_static_method_matches_function(self):
        assert URLProcessor.sanitize_for_shell("x;y") == sanitize_for_shell("x;y")


class TestValidateUrl:
    """Tests for validate_url()."""

    def test_valid_url_passes(self):
        validate_url("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    @pytest.mark.parametrize("url", ["", "   ", None, "ftp://example.com/x", "youtube.com/watch", "https://"])
    def test_invalid_urls_raise(self, url):
        with pytest.raises(URLValidationError) as exc_info:
            validate_url(url)
        assert exc_info.value.kind is FailureKind.INVALID_INVOCATION
