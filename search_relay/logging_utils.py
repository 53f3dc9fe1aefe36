"""
Centralized logging and error handling utilities for the search relay.

This module provides decorators and helper functions to standardize logging
and error reporting across the services and routes.

Features:
- Structured logging with contextual information
- Error classification into HTTP status and category
- Uniform `{"error": message}` response bodies
- Performance timing for upstream operations
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import structlog
from pydantic import ValidationError

from search_relay.upstream.exceptions import (
    AuthFailedError,
    ConfigurationError,
    ExhaustedError,
    RateLimitedError,
    RelayError,
    StreamingError,
    TransportError,
    UpstreamStatusError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)

HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_ERROR = 500


def configure_logging(level: str = "INFO") -> None:
    """Configure the stdlib root logger that structlog writes through."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )


class RelayErrorHandler:
    """Centralized error classification with structured logging."""

    @staticmethod
    def classify_error(error: Exception) -> tuple[int, str]:
        """
        Classify an error and return the HTTP status and error category.

        Upstream failures all surface to the frontend as 500, matching the
        route contract; only request validation is a 400.

        Args:
            error: The exception to classify

        Returns:
            Tuple of (http_status, error_category)
        """
        if isinstance(error, ValidationError):
            return HTTP_BAD_REQUEST, "validation_error"
        if isinstance(error, ConfigurationError):
            return HTTP_INTERNAL_ERROR, "configuration_error"
        if isinstance(error, AuthFailedError):
            return HTTP_INTERNAL_ERROR, "auth_error"
        if isinstance(error, RateLimitedError):
            return HTTP_INTERNAL_ERROR, "rate_limit_error"
        if isinstance(error, TransportError | ExhaustedError | UpstreamStatusError):
            return HTTP_INTERNAL_ERROR, "upstream_error"
        if isinstance(error, StreamingError):
            return HTTP_INTERNAL_ERROR, "stream_error"
        if isinstance(error, TimeoutError):
            return HTTP_INTERNAL_ERROR, "timeout_error"
        if isinstance(error, ConnectionError | OSError):
            return HTTP_INTERNAL_ERROR, "connection_error"
        return HTTP_INTERNAL_ERROR, "unknown_error"

    @staticmethod
    def create_error_response(
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, str]]:
        """
        Log an error and build the JSON body returned to the caller.

        Args:
            error: Original exception
            operation: Description of the operation that failed
            context: Additional context for logging

        Returns:
            Tuple of (http_status, {"error": message})
        """
        status, error_category = RelayErrorHandler.classify_error(error)
        message = error.message if isinstance(error, RelayError) else str(error)

        logger.error(
            "Operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error_category=error_category,
            http_status=status,
            error_message=message,
            **(context or {}),
        )

        return status, {"error": message or "Failed to process request"}


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


def _log_failure(operation_logger: Any, error: Exception, start_time: float) -> None:
    _, error_category = RelayErrorHandler.classify_error(error)
    failure: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_category": error_category,
        "error_message": str(error),
        "duration_ms": _elapsed_ms(start_time),
    }
    if isinstance(error, RelayError) and error.status_code is not None:
        failure["upstream_status"] = error.status_code
    operation_logger.error("Operation failed", **failure)


def _result_count(result: Any) -> int | None:
    if isinstance(result, dict) and isinstance(result.get("data"), list):
        return len(result["data"])
    return None


def log_operation(
    operation: str,
    *,
    service: str,
    bind: tuple[str, ...] = ("query",),
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging an upstream operation with relay context.

    Args:
        operation: Name of the operation being performed
        service: Upstream service the operation talks to
        bind: Call arguments to bind into every log line, by parameter name

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            arguments = signature.bind_partial(*args, **kwargs).arguments
            operation_logger = logger.bind(
                operation=operation,
                service=service,
                **{name: arguments[name] for name in bind if name in arguments},
            )

            operation_logger.info("Operation started")
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_failure(operation_logger, e, start_time)
                raise

            completed: dict[str, Any] = {"duration_ms": _elapsed_ms(start_time)}
            count = _result_count(result)
            if count is not None:
                completed["result_count"] = count
            operation_logger.info("Operation completed successfully", **completed)
            return result

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    service: str,
    context: dict[str, Any] | None = None,
):
    """
    Async context manager for logging a multi-step upstream operation.

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation, service=service, **(context or {})
    )

    operation_logger.info("Operation started")
    start_time = time.perf_counter()

    try:
        yield operation_logger
    except Exception as e:
        _log_failure(operation_logger, e, start_time)
        raise

    operation_logger.info(
        "Operation completed successfully", duration_ms=_elapsed_ms(start_time)
    )
