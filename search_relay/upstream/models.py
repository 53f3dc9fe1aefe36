"""
Request, attempt outcome and retry policy dataclasses for the executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

import httpx


class BackoffStrategy(Enum):
    """How the wait grows between transient-failure retries."""
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class OutboundRequest:
    """One outbound HTTP call. Built once, re-sent on every attempt."""
    url: str
    method: Literal["GET", "POST"] = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    json_body: dict[str, Any] | None = None
    stream: bool = False
    service: str = "upstream"
    # Overrides the client's read timeout for long-polling endpoints
    read_timeout: float | None = None
    # False when a resend could repeat a side effect upstream
    idempotent: bool = True
    # Detail used when an error body carries no message
    fallback_detail: str | None = None

    @classmethod
    def with_bearer(
        cls, url: str, token: str, **kwargs: Any
    ) -> OutboundRequest:
        """Build a request carrying ``Authorization: Bearer <token>``."""
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        return cls(url=url, headers=headers, **kwargs)

    def build(self, client: httpx.AsyncClient) -> httpx.Request:
        extra: dict[str, Any] = {}
        if self.read_timeout is not None:
            base = client.timeout
            extra["timeout"] = httpx.Timeout(
                connect=base.connect,
                read=self.read_timeout,
                write=base.write,
                pool=base.pool,
            )
        return client.build_request(
            self.method,
            self.url,
            headers=self.headers,
            params=self.params,
            json=self.json_body,
            **extra,
        )


@dataclass(frozen=True)
class Success:
    response: httpx.Response


@dataclass(frozen=True)
class RateLimited:
    detail: str
    reset_epoch_seconds: float | None = None


@dataclass(frozen=True)
class AuthFailed:
    detail: str


@dataclass(frozen=True)
class TransientError:
    detail: str
    status_code: int | None = None


AttemptResult = Success | RateLimited | AuthFailed | TransientError


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with linear or exponential backoff."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    strategy: BackoffStrategy = BackoffStrategy.LINEAR
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    reset_header: str = "x-rate-limit-reset"
    # None disables the ceiling on time spent honouring reset headers
    max_rate_limit_wait: float | None = 900.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("RetryPolicy.initial_delay must be >= 0")
        if self.backoff_factor <= 0:
            raise ValueError("RetryPolicy.backoff_factor must be > 0")
        if self.max_delay < 0:
            raise ValueError("RetryPolicy.max_delay must be >= 0")
        if self.max_rate_limit_wait is not None and self.max_rate_limit_wait < 0:
            raise ValueError("RetryPolicy.max_rate_limit_wait must be >= 0 or None")

    def backoff(self, attempt: int) -> float:
        """Wait before the retry that follows ``attempt`` (1-based)."""
        if self.strategy is BackoffStrategy.EXPONENTIAL:
            delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        else:
            delay = self.initial_delay * attempt
        return min(delay, self.max_delay)
