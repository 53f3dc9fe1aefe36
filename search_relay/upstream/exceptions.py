"""
Error types for upstream API calls.

This module provides the exception hierarchy shared by the executor,
the stream decoder and the services:
- Configuration errors raised at startup
- Classified upstream failures (auth, rate limit, status, transport)
- Stream-level errors raised while decoding
"""

from __future__ import annotations


class RelayError(Exception):
    """Base relay error with upstream context."""

    def __init__(
        self,
        message: str,
        service: str = "unknown",
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.service = service
        self.status_code = status_code
        self.response_data = response_data or {}


class ConfigurationError(RelayError, ValueError):
    """Required configuration or credential is missing or invalid."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("service", "configuration")
        super().__init__(message, **kwargs)


class ExecutorError(RelayError):
    """Terminal failure returned by the request executor."""
    pass


class AuthFailedError(ExecutorError):
    """Upstream rejected the credential (401). Never retried."""
    pass


class RateLimitedError(ExecutorError):
    """Rate limit error with retry information."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class UpstreamStatusError(ExecutorError):
    """Generic non-success status from upstream."""
    pass


class TransportError(ExecutorError):
    """Network or connection failure before a response arrived."""
    pass


class ExhaustedError(ExecutorError):
    """Attempt budget spent on transient failures."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class StreamingError(RelayError):
    """Streaming-specific errors."""

    def __init__(self, message: str, service: str = "stream", **kwargs):
        super().__init__(message, service, **kwargs)


class MalformedRecordError(StreamingError):
    """A single stream line could not be parsed. Dropped by the decoder."""

    def __init__(self, message: str, line: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.line = line


class StreamAbortedError(StreamingError):
    """The upstream source failed mid-stream."""
    pass
