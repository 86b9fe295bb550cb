"""URL validation, canonicalization and shell quoting.

Everything in this module is pure: no I/O and no shared state. The
``sanitize_for_shell`` function is the only way untrusted URL and path
strings are allowed into an argument string handed to ProcessExecutor.
"""
import logging
import re
import shlex
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .exceptions import URLValidationError

logger = logging.getLogger(__name__)


# Hosts whose URLs carry a YouTube video id
YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
    "youtu.be",
    "www.youtu.be",
}

# Path prefixes on YouTube hosts where the id lives in the path and the query is noise
YOUTUBE_PATH_PREFIXES = ("/shorts/", "/embed/", "/live/", "/v/", "/e/")

YOUTUBE_ID_REGEX = re.compile(
    r"(?:youtu\.be/|/v/|/vi/|/u/\w/|/embed/|/e/|/shorts/|/live/|[?&]vi?=)"
    r"([0-9A-Za-z_-]{11})(?![0-9A-Za-z_-])",
    re.IGNORECASE,
)

# Query parameters that only serve analytics and never affect playback
TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "igshid",
    "mc_cid",
    "mc_eid",
    "si",
    "feature",
    "pp",
    "ref_src",
}
TRACKING_PREFIXES = ("utm_",)

# Signed CDN URLs put their expiry (Unix seconds) in one of these
EXPIRY_PARAMS = ("expire", "expires")
EXPIRY_PATH_REGEX = re.compile(r"/expire/(\d+)(?:/|$)")


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def _lower_host(netloc: str) -> str:
    userinfo, sep, hostport = netloc.rpartition("@")
    return f"{userinfo}{sep}{hostport.lower()}"


def _rebuild(scheme: str, netloc: str, path: str, query: str, fragment: str) -> str:
    """urlunsplit() that never leaves whitespace at the end of the URL.

    Whatever component ends up last loses its trailing whitespace, so
    re-splitting the result gives back the same components.
    """
    if not fragment:
        query = query.rstrip()
        if not query:
            path = path.rstrip()
            if not path:
                netloc = netloc.rstrip()
    return urlunsplit((scheme, netloc, path, query, fragment))


class URLProcessor:
    """Pure helpers for remote video URLs.

    All methods are static; module-level functions with the same names are
    provided for direct use.
    """

    @staticmethod
    def validate_url(url: str) -> None:
        """Check that a URL is a non-blank http(s) URL with a host.

        Raises:
            URLValidationError: If the URL is blank or malformed
        """
        if not url or not isinstance(url, str) or not url.strip():
            raise URLValidationError("Video URL cannot be null or empty", url=url)

        try:
            parsed = urlsplit(url.strip())
        except ValueError as e:
            raise URLValidationError(f"URL parsing failed: {e}", url=url) from e

        if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
            raise URLValidationError(f"Invalid URL format: {url}", url=url)

    @staticmethod
    def trim(url: str) -> str:
        """Strip parameters that are not needed for playback.

        - YouTube watch URLs keep only their ``v`` parameter
        - youtu.be, shorts, embed and live links lose their whole query
        - any other URL loses well-known tracking parameters

        Scheme and host are lower-cased. Blank or unparseable input is
        returned as given. ``trim(trim(u)) == trim(u)`` for every input.
        """
        if not url or not isinstance(url, str) or not url.strip():
            return url

        stripped = url.strip()
        try:
            parts = urlsplit(stripped)
        except ValueError:
            return stripped

        if not parts.scheme or not parts.netloc:
            return stripped

        scheme = parts.scheme.lower()
        netloc = _lower_host(parts.netloc)
        host = (parts.hostname or "").lower()
        path, query, fragment = parts.path, parts.query, parts.fragment

        if host in YOUTUBE_HOSTS and path == "/watch":
            video_ids = [value for key, value in parse_qsl(query, keep_blank_values=True) if key == "v"]
            if video_ids:
                return _rebuild(scheme, netloc, path, urlencode([("v", video_ids[0])]), "")

        if host in ("youtu.be", "www.youtu.be") or (
            host in YOUTUBE_HOSTS and path.startswith(YOUTUBE_PATH_PREFIXES)
        ):
            return _rebuild(scheme, netloc, path, "", "")

        pairs = parse_qsl(query, keep_blank_values=True)
        kept = [(key, value) for key, value in pairs if not _is_tracking_param(key)]
        if len(kept) != len(pairs):
            query = urlencode(kept)

        return _rebuild(scheme, netloc, path, query, fragment)

    @staticmethod
    def extract_video_id(url: str) -> Optional[str]:
        """Extract the 11-character YouTube video id from a URL.

        Returns:
            The id, or None when the URL shape is not recognized
        """
        if not url or not isinstance(url, str) or not url.strip():
            return None

        try:
            host = (urlsplit(url.strip()).hostname or "").lower()
        except ValueError:
            return None

        if host not in YOUTUBE_HOSTS:
            return None

        match = YOUTUBE_ID_REGEX.search(url)
        return match.group(1) if match else None

    @staticmethod
    def parse_expiry(url: str) -> Optional[datetime]:
        """Read the expiry timestamp a signed CDN URL carries.

        Looks for ``expire``/``expires`` query parameters (any case) and the
        ``/expire/<seconds>/`` path segment used by googlevideo URLs.

        Returns:
            Aware UTC datetime, or None when no usable value is present.
            Never raises.
        """
        if not url or not isinstance(url, str):
            return None

        try:
            parts = urlsplit(url)
            candidates = [
                value for key, value in parse_qsl(parts.query, keep_blank_values=True)
                if key.lower() in EXPIRY_PARAMS
            ]
            path_match = EXPIRY_PATH_REGEX.search(parts.path)
            if path_match:
                candidates.append(path_match.group(1))

            for value in candidates:
                value = value.strip()
                if not value.isdigit():
                    continue
                try:
                    return datetime.fromtimestamp(int(value), tz=timezone.utc)
                except (OverflowError, OSError, ValueError):
                    logger.debug(f"Ignoring out-of-range expiry value: {value}")
        except ValueError as e:
            logger.debug(f"Could not parse expiry from URL: {e}")

        return None

    @staticmethod
    def sanitize_for_shell(text: Optional[str]) -> str:
        """Quote text so it is read back as exactly one literal shell word.

        Uses POSIX single-quote quoting: quotes, semicolons, backticks,
        redirections, ``$`` and whitespace all lose their meaning. Empty or
        None input becomes ``''`` so the argument slot is still present.
        """
        if not text:
            return "''"
        return shlex.quote(text)

    @staticmethod
    def cache_key_for(url: str) -> str:
        """Stable cache key: the video id when known, else the trimmed URL."""
        return URLProcessor.extract_video_id(url) or URLProcessor.trim(url)


# Convenience functions for direct use
def validate_url(url: str) -> None:
    """Validate a video URL. See URLProcessor.validate_url()."""
    URLProcessor.validate_url(url)


def trim_url(url: str) -> str:
    """Canonicalize a URL. See URLProcessor.trim()."""
    return URLProcessor.trim(url)


def extract_video_id(url: str) -> Optional[str]:
    """Extract a video id. See URLProcessor.extract_video_id()."""
    return URLProcessor.extract_video_id(url)


def parse_expiry(url: str) -> Optional[datetime]:
    """Parse a signed URL's expiry. See URLProcessor.parse_expiry()."""
    return URLProcessor.parse_expiry(url)


def sanitize_for_shell(text: Optional[str]) -> str:
    """Quote text for an argument string. See URLProcessor.sanitize_for_shell()."""
    return URLProcessor.sanitize_for_shell(text)


def cache_key_for(url: str) -> str:
    """Cache key for a URL. See URLProcessor.cache_key_for()."""
    return URLProcessor.cache_key_for(url)


__all__ = [
    "URLProcessor",
    "validate_url",
    "trim_url",
    "extract_video_id",
    "parse_expiry",
    "sanitize_for_shell",
    "cache_key_for",
    "YOUTUBE_HOSTS",
    "TRACKING_PARAMS",
]
