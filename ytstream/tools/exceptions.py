"""Exceptions raised by the external tool orchestration core.

Every failure carries a ``kind`` so callers can switch on what happened
instead of walking the class hierarchy. The executor guarantees that
TIMEOUT, CANCELLED and TOOL_FAILURE are mutually exclusive for one
invocation.

Exception Hierarchy:
    ExternalToolError (base)
        InvalidInvocationError
            URLValidationError
        ToolTimeoutError
        ToolCancelledError
        ToolFailureError
            MetadataExtractionError
        FilesystemError
"""
import logging
import uuid
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    """Why an external tool invocation (or its bookkeeping) failed."""
    INVALID_INVOCATION = "invalid_invocation"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TOOL_FAILURE = "tool_failure"
    FILESYSTEM_FAILURE = "filesystem_failure"


class ExternalToolError(Exception):
    """Base exception for all orchestration failures.

    Attributes:
        message: Technical error message for logging
        url: The URL that was being processed (if available)
        correlation_id: Unique identifier for request tracing
        kind: FailureKind tag for pattern matching
    """

    kind: FailureKind = FailureKind.TOOL_FAILURE

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        self.message = message
        self.url = url
        self.correlation_id = correlation_id or self._generate_correlation_id()
        super().__init__(self.message)

    @staticmethod
    def _generate_correlation_id() -> str:
        """Generate a unique correlation ID for request tracing."""
        return str(uuid.uuid4())[:8]

    def to_user_message(self) -> str:
        """Return a human-readable message for display.

        Override in subclasses to provide specific messages.
        """
        return "Something went wrong while talking to an external tool."

    def __str__(self) -> str:
        """String representation with technical details for logging."""
        parts = [self.message]
        if self.url:
            parts.append(f"url={self.url}")
        if self.correlation_id:
            parts.append(f"correlation_id={self.correlation_id}")
        return f"[{self.__class__.__name__}] {' | '.join(parts)}"


class InvalidInvocationError(ExternalToolError):
    """Raised when the executable or argument string is unusable.

    Never retried: the same request will fail the same way.
    """

    kind = FailureKind.INVALID_INVOCATION

    def __init__(
        self,
        message: str = "Invalid tool invocation",
        url: Optional[str] = None,
        correlation_id: Optional[str] = None,
        executable: Optional[str] = None
    ):
        self.executable = executable
        super().__init__(message, url, correlation_id)

    def to_user_message(self) -> str:
        return "The external tool could not be started. Check its configured path."


class URLValidationError(InvalidInvocationError):
    """Raised when a video URL is blank or malformed."""

    def __init__(
        self,
        message: str = "URL validation failed",
        url: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(message, url, correlation_id)

    def to_user_message(self) -> str:
        return "The video URL looks invalid. Please check it and try again."


class ToolTimeoutError(ExternalToolError):
    """Raised when a tool outlives its time budget.

    Attributes:
        timeout: The configured budget in seconds
        executable: Resolved path of the tool that was killed
    """

    kind = FailureKind.TIMEOUT

    def __init__(
        self,
        timeout: float,
        message: Optional[str] = None,
        url: Optional[str] = None,
        correlation_id: Optional[str] = None,
        executable: Optional[str] = None
    ):
        self.timeout = timeout
        self.executable = executable
        msg = message or f"Process exceeded timeout of {timeout:.3f}s"
        super().__init__(msg, url, correlation_id)

    def to_user_message(self) -> str:
        return f"The operation took longer than {self.timeout:g} seconds. Try again later."


class ToolCancelledError(ExternalToolError):
    """Raised when the caller withdrew interest in an invocation.

    Distinct from ToolTimeoutError even though the process is killed the
    same way. Never retried.
    """

    kind = FailureKind.CANCELLED

    def __init__(
        self,
        message: str = "Process cancelled",
        url: Optional[str] = None,
        correlation_id: Optional[str] = None,
        executable: Optional[str] = None
    ):
        self.executable = executable
        super().__init__(message, url, correlation_id)

    def to_user_message(self) -> str:
        return "The operation was cancelled."


class ToolFailureError(ExternalToolError):
    """Raised when a tool ran and exited with a non-zero code.

    Attributes:
        exit_code: Process exit code
        stdout: Captured standard output
        stderr: Captured standard error
    """

    kind = FailureKind.TOOL_FAILURE

    def __init__(
        self,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        message: Optional[str] = None,
        url: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        msg = message or f"Process failed with exit code {exit_code}"
        super().__init__(msg, url, correlation_id)

    def to_user_message(self) -> str:
        return "The external tool reported an error while processing the video."


class MetadataExtractionError(ToolFailureError):
    """Raised when the extractor ran but its output is unusable."""

    def __init__(
        self,
        message: str = "Failed to extract metadata",
        url: Optional[str] = None,
        correlation_id: Optional[str] = None,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = ""
    ):
        super().__init__(exit_code, stdout, stderr, message, url, correlation_id)

    def to_user_message(self) -> str:
        return (
            "Could not get information about this video. "
            "It may be private or unavailable."
        )


class FilesystemError(ExternalToolError):
    """Raised when the cache directory or an artifact cannot be touched.

    Attributes:
        path: The file or directory involved
    """

    kind = FailureKind.FILESYSTEM_FAILURE

    def __init__(
        self,
        message: str = "Filesystem operation failed",
        path: Optional[str] = None,
        url: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        self.path = path
        super().__init__(message, url, correlation_id)

    def to_user_message(self) -> str:
        return "Could not write the video to local storage."


# stderr fragments that point at a transient failure inside the tool
TRANSIENT_INDICATORS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporary failure",
    "network is unreachable",
    "http error 429",
    "http error 502",
    "http error 503",
    "http error 504",
    "too many requests",
)


def is_retryable(error: Exception) -> bool:
    """Decide whether an orchestration error is worth retrying.

    Timeouts are always retryable; cancellations and invalid invocations
    never are. Tool failures are retryable only when their stderr looks
    like a transient network problem.
    """
    if not isinstance(error, ExternalToolError):
        return False

    if error.kind is FailureKind.TIMEOUT:
        return True

    if error.kind is FailureKind.TOOL_FAILURE:
        stderr = getattr(error, "stderr", "") or ""
        lowered = stderr.lower()
        return any(indicator in lowered for indicator in TRANSIENT_INDICATORS)

    return False


__all__ = [
    "FailureKind",
    "ExternalToolError",
    "InvalidInvocationError",
    "URLValidationError",
    "ToolTimeoutError",
    "ToolCancelledError",
    "ToolFailureError",
    "MetadataExtractionError",
    "FilesystemError",
    "is_retryable",
    "TRANSIENT_INDICATORS",
]
