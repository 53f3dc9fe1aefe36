#!/usr/bin/env python3
"""
Test script for logging utilities.

This validates that the centralized logging and error handling works correctly.
"""

import httpx
import pytest
from pydantic import ValidationError

from search_relay import logging_utils
from search_relay.logging_utils import (
    HTTP_BAD_REQUEST,
    HTTP_INTERNAL_ERROR,
    RelayErrorHandler,
    log_operation,
    operation_context,
)
from search_relay.upstream.exceptions import (
    AuthFailedError,
    ConfigurationError,
    ExhaustedError,
    RateLimitedError,
    StreamAbortedError,
    TransportError,
    UpstreamStatusError,
)


class TestRelayErrorHandler:
    """Test the RelayErrorHandler class."""

    def test_classify_validation_error(self):
        """Test classification of ValidationError."""
        validation_error = ValidationError.from_exception_data(
            "ValidationError", [{"type": "missing", "loc": ("field",), "input": {}}]
        )
        status, category = RelayErrorHandler.classify_error(validation_error)
        assert status == HTTP_BAD_REQUEST
        assert category == "validation_error"

    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (ConfigurationError("X_API_KEY is not set"), "configuration_error"),
            (AuthFailedError("Unauthorized", status_code=401), "auth_error"),
            (RateLimitedError("Too Many Requests", retry_after=3.0), "rate_limit_error"),
            (ExhaustedError("gave up", attempts=3), "upstream_error"),
            (TransportError("ConnectError: refused"), "upstream_error"),
            (UpstreamStatusError("Invalid JSON"), "upstream_error"),
            (StreamAbortedError("connection reset"), "stream_error"),
            (TimeoutError("slow"), "timeout_error"),
            (ConnectionError("Network unreachable"), "connection_error"),
            (RuntimeError("Unknown error"), "unknown_error"),
        ],
    )
    def test_upstream_failures_are_500(self, error, category):
        """Every non-validation failure maps to a 500."""
        status, actual = RelayErrorHandler.classify_error(error)
        assert status == HTTP_INTERNAL_ERROR
        assert actual == category

    def test_create_error_response_uses_relay_message(self):
        """Relay errors report their message, not the exception repr."""
        error = RateLimitedError(
            "Twitter API rate limit exceeded. Please try again later.",
            service="twitter",
            status_code=429,
        )

        status, body = RelayErrorHandler.create_error_response(
            error, "twitter_search", {"query": "python"}
        )

        assert status == HTTP_INTERNAL_ERROR
        assert body == {"error": "Twitter API rate limit exceeded. Please try again later."}

    def test_create_error_response_for_plain_exception(self):
        status, body = RelayErrorHandler.create_error_response(
            httpx.InvalidURL("bad url"), "chat"
        )

        assert status == HTTP_INTERNAL_ERROR
        assert body == {"error": "bad url"}

    def test_create_error_response_empty_message(self):
        status, body = RelayErrorHandler.create_error_response(RuntimeError(), "chat")

        assert body == {"error": "Failed to process request"}


class RecordingLogger:
    """Stands in for the module logger and records bound context and events."""

    def __init__(self, context=None, records=None):
        self.context = context or {}
        self.records = records if records is not None else []

    def bind(self, **kwargs):
        return RecordingLogger({**self.context, **kwargs}, self.records)

    def _record(self, level, event, **kwargs):
        self.records.append((level, event, {**self.context, **kwargs}))

    def info(self, event, **kwargs):
        self._record("info", event, **kwargs)

    def debug(self, event, **kwargs):
        self._record("debug", event, **kwargs)

    def error(self, event, **kwargs):
        self._record("error", event, **kwargs)


@pytest.fixture
def recorded(monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(logging_utils, "logger", recorder)
    return recorder.records


class TestDecorators:
    """Test the log_operation decorator."""

    @pytest.mark.asyncio
    async def test_binds_service_and_arguments(self, recorded):
        @log_operation("search", service="twitter", bind=("query", "max_results"))
        async def search(query: str, max_results: int | None = None, token: str = ""):
            return {"data": [1, 2, 3]}

        result = await search("python", token="secret")

        assert result == {"data": [1, 2, 3]}
        started, completed = recorded
        assert started[:2] == ("info", "Operation started")
        assert started[2]["service"] == "twitter"
        assert started[2]["query"] == "python"
        assert "max_results" not in started[2]
        assert "token" not in started[2]
        assert completed[1] == "Operation completed successfully"
        assert completed[2]["result_count"] == 3
        assert "duration_ms" in completed[2]

    @pytest.mark.asyncio
    async def test_binds_positional_arguments_on_methods(self, recorded):
        class Service:
            @log_operation("apify_search", service="apify", bind=("query", "max_results"))
            async def search(self, query: str, max_results: int | None = None):
                """Search docstring."""
                return {"meta": {}}

        result = await Service().search("q", 5)

        assert result == {"meta": {}}
        assert Service.search.__name__ == "search"
        assert Service.search.__doc__ == "Search docstring."
        _, completed = recorded
        assert completed[2]["query"] == "q"
        assert completed[2]["max_results"] == 5
        assert "result_count" not in completed[2]

    @pytest.mark.asyncio
    async def test_failure_logs_category_and_upstream_status(self, recorded):
        @log_operation("search", service="twitter")
        async def failing(query: str):
            raise AuthFailedError("Unauthorized", status_code=401)

        with pytest.raises(AuthFailedError, match="Unauthorized"):
            await failing("python")

        level, event, fields = recorded[-1]
        assert (level, event) == ("error", "Operation failed")
        assert fields["error_category"] == "auth_error"
        assert fields["upstream_status"] == 401
        assert fields["query"] == "python"


class TestContextManager:
    """Test operation context manager."""

    @pytest.mark.asyncio
    async def test_operation_context_success(self, recorded):
        async with operation_context(
            "wait", service="apify", context={"run_id": "r1"}
        ) as operation_logger:
            operation_logger.debug("Polled actor run", status="RUNNING")

        events = [(level, event) for level, event, _ in recorded]
        assert events == [
            ("info", "Operation started"),
            ("debug", "Polled actor run"),
            ("info", "Operation completed successfully"),
        ]
        assert all(fields["run_id"] == "r1" for _, _, fields in recorded)

    @pytest.mark.asyncio
    async def test_operation_context_with_error(self, recorded):
        with pytest.raises(ValueError, match="Test error"):
            async with operation_context("wait", service="apify"):
                raise ValueError("Test error")

        level, event, fields = recorded[-1]
        assert (level, event) == ("error", "Operation failed")
        assert fields["error_category"] == "unknown_error"
        assert "upstream_status" not in fields
