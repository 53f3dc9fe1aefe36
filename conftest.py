"""Shared fixtures for the search relay tests."""

import copy
import json
from typing import Any

import httpx
import pytest

from search_relay.config import Configuration
from search_relay.upstream.executor import RequestExecutor

BASE_CONFIG: dict[str, Any] = {
    "server": {"host": "127.0.0.1", "port": 8000, "log_level": "info"},
    "logging": {"level": "INFO"},
    "http_client": {
        "connect_timeout": 5.0,
        "read_timeout": 30.0,
        "write_timeout": 5.0,
        "pool_timeout": 5.0,
        "max_connections": 10,
        "max_keepalive": 5,
    },
    "services": {
        "chat": {
            "url": "https://llm.test/chat/completions",
            "model": "deepseek-reasoner",
            "max_tokens": 2000,
            "temperature": 0.7,
            "context_items": 3,
            "retry": {"max_attempts": 1, "initial_delay": 1.0, "strategy": "linear"},
        },
        "twitter": {
            "url": "https://twitter.test/2/tweets/search/recent",
            "default_max_results": 10,
            "retry": {
                "max_attempts": 3,
                "initial_delay": 1.0,
                "strategy": "linear",
                "reset_header": "x-rate-limit-reset",
            },
        },
        "apify": {
            "base_url": "https://apify.test/v2",
            "actor_id": "nfp1fpt5gUlBwPcor",
            "default_max_results": 10,
            "wait_for_finish": 60,
            "max_run_wait": 180,
            "read_timeout": 90.0,
            "retry": {
                "max_attempts": 3,
                "initial_delay": 0.5,
                "strategy": "exponential",
                "backoff_factor": 2.0,
            },
        },
    },
}


def sse_line(content: str | None = None, reasoning: str | None = None) -> str:
    """One `data:` line of a chat completion stream."""
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    return "data: " + json.dumps({"choices": [{"index": 0, "delta": delta}]}) + "\n"


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def config_dict() -> dict[str, Any]:
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def api_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEEPSEEK_API_KEY", "deepseek-test-key")
    monkeypatch.setenv("X_API_KEY", "AAAA%3Dbearer")
    monkeypatch.setenv("APIFY_KEY", "apify-test-key")


@pytest.fixture
def configuration(config_dict: dict[str, Any], api_keys: None) -> Configuration:
    return Configuration.from_dict(config_dict)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


def make_executor(
    handler, sleeper: SleepRecorder, now: float = 1_000_000.0
) -> RequestExecutor:
    """Executor over a MockTransport with a fixed clock."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RequestExecutor(client, sleep=sleeper, clock=lambda: now)
