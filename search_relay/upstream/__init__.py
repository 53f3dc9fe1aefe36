"""
Upstream HTTP integration.

This package provides the pieces every service shares:
- Typed outbound requests and retry policies
- A resilient executor with status classification
- Streaming decoding of chat-completion responses
- A single error hierarchy
"""

from __future__ import annotations

from .exceptions import (
    AuthFailedError,
    ConfigurationError,
    ExecutorError,
    ExhaustedError,
    MalformedRecordError,
    RateLimitedError,
    RelayError,
    StreamAbortedError,
    StreamingError,
    TransportError,
    UpstreamStatusError,
)
from .executor import RequestExecutor
from .models import BackoffStrategy, OutboundRequest, RetryPolicy
from .streaming import StreamDecoder, StreamEvent

__all__ = [
    # Exceptions
    "AuthFailedError",
    # Models
    "BackoffStrategy",
    "ConfigurationError",
    "ExecutorError",
    "ExhaustedError",
    "MalformedRecordError",
    "OutboundRequest",
    "RateLimitedError",
    "RelayError",
    # Executor
    "RequestExecutor",
    "RetryPolicy",
    # Streaming
    "StreamAbortedError",
    "StreamDecoder",
    "StreamEvent",
    "StreamingError",
    "TransportError",
    "UpstreamStatusError",
]
