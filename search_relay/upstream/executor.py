"""
Resilient request executor with status classification and bounded retry.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from .exceptions import (
    AuthFailedError,
    ExhaustedError,
    RateLimitedError,
    TransportError,
    UpstreamStatusError,
)
from .models import (
    AttemptResult,
    AuthFailed,
    OutboundRequest,
    RateLimited,
    RetryPolicy,
    Success,
    TransientError,
)

logger = structlog.get_logger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_TOO_MANY_REQUESTS = 429
MAX_DETAIL_LENGTH = 500


class RequestExecutor:
    """
    Sends an OutboundRequest and retries transient failures.

    Each call to ``execute`` is independent; the executor only holds the
    shared HTTP client and the injected sleep/clock functions.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self, request: OutboundRequest, policy: RetryPolicy | None = None
    ) -> httpx.Response:
        """
        Execute the request under ``policy``.

        Returns the successful response. For streaming requests the body is
        left unread and the caller owns closing it.

        Raises:
            AuthFailedError: upstream answered 401
            RateLimitedError: upstream answered 429 without a usable reset
                time, or the attempt budget ran out while rate limited
            ExhaustedError: transient failures used up every attempt, or a
                non-idempotent request hit a transport failure
        """
        policy = policy or RetryPolicy()
        rate_limit_waited = 0.0

        for attempt in range(1, policy.max_attempts + 1):
            attempts_left = attempt < policy.max_attempts

            try:
                response = await self._send(request)
            except TransportError as e:
                if not request.idempotent:
                    # The request may have reached upstream; resending could repeat it
                    raise ExhaustedError(
                        f"{request.service} request failed and was not retried: "
                        f"{e.message}",
                        attempts=attempt,
                        service=request.service,
                    ) from e
                if not attempts_left:
                    raise ExhaustedError(
                        f"{request.service} request failed after "
                        f"{attempt} attempts: {e.message}",
                        attempts=attempt,
                        service=request.service,
                    ) from e
                await self._backoff(request, policy, attempt, e.message)
                continue

            result = await self.classify(response, policy, request.fallback_detail)

            if isinstance(result, Success):
                return result.response

            if isinstance(result, AuthFailed):
                logger.error(
                    "Upstream authentication failed",
                    service=request.service,
                    detail=result.detail,
                )
                raise AuthFailedError(
                    result.detail,
                    service=request.service,
                    status_code=HTTP_UNAUTHORIZED,
                )

            if isinstance(result, RateLimited):
                wait_time = self._reset_wait(result)
                if wait_time is None:
                    raise RateLimitedError(
                        result.detail,
                        service=request.service,
                        status_code=HTTP_TOO_MANY_REQUESTS,
                    )
                if not attempts_left:
                    raise RateLimitedError(
                        result.detail,
                        retry_after=wait_time,
                        service=request.service,
                        status_code=HTTP_TOO_MANY_REQUESTS,
                    )
                ceiling = policy.max_rate_limit_wait
                if ceiling is not None and rate_limit_waited + wait_time > ceiling:
                    raise RateLimitedError(
                        f"{result.detail} (reset wait {wait_time:.1f}s exceeds "
                        f"remaining budget {ceiling - rate_limit_waited:.1f}s)",
                        retry_after=wait_time,
                        service=request.service,
                        status_code=HTTP_TOO_MANY_REQUESTS,
                    )
                logger.warning(
                    "Rate limited, waiting for reset",
                    service=request.service,
                    attempt=attempt,
                    wait_seconds=round(wait_time, 3),
                )
                await self._sleep(wait_time)
                rate_limit_waited += wait_time
                continue

            # TransientError
            if not attempts_left:
                raise ExhaustedError(
                    result.detail,
                    attempts=attempt,
                    service=request.service,
                    status_code=result.status_code,
                ) from UpstreamStatusError(
                    result.detail,
                    service=request.service,
                    status_code=result.status_code,
                )
            await self._backoff(request, policy, attempt, result.detail)

        # Loop always returns or raises; kept for type checkers
        raise ExhaustedError(
            "Max retries reached", attempts=policy.max_attempts, service=request.service
        )

    async def classify(
        self,
        response: httpx.Response,
        policy: RetryPolicy,
        fallback: str | None = None,
    ) -> AttemptResult:
        """Turn a raw response into an AttemptResult.

        Failed streaming responses are read and closed here. A connection
        dropped while reading the error body still classifies by status.
        """
        if response.is_success:
            return Success(response)

        body_read = True
        try:
            await response.aread()
        except httpx.RequestError as e:
            body_read = False
            logger.warning(
                "Failed to read upstream error body",
                url=str(response.request.url),
                status_code=response.status_code,
                error_type=type(e).__name__,
                error=str(e),
            )
        finally:
            await response.aclose()

        if body_read:
            detail = self.extract_detail(response, fallback)
        else:
            detail = fallback or self.generic_detail(response)
        logger.warning(
            "Upstream returned error status",
            url=str(response.request.url),
            status_code=response.status_code,
            detail=detail,
        )

        if response.status_code == HTTP_UNAUTHORIZED:
            return AuthFailed(detail)
        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            return RateLimited(detail, self._reset_epoch(response, policy))
        return TransientError(detail, response.status_code)

    @staticmethod
    def generic_detail(response: httpx.Response) -> str:
        return f"Upstream request failed with status {response.status_code}"

    @classmethod
    def extract_detail(
        cls, response: httpx.Response, fallback: str | None = None
    ) -> str:
        """Pull a human-readable message out of an upstream error body.

        ``fallback`` replaces the generic status message when the body
        carries nothing usable.
        """
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            for key in ("detail", "message", "title"):
                value = payload.get(key)
                if isinstance(value, str) and value:
                    return value
            error = payload.get("error")
            if isinstance(error, dict):
                message = error.get("message")
                if isinstance(message, str) and message:
                    return message
            if isinstance(error, str) and error:
                return error

        text = response.text.strip() if payload is None else ""
        if text:
            return text[:MAX_DETAIL_LENGTH]
        return fallback or cls.generic_detail(response)

    def _reset_epoch(
        self, response: httpx.Response, policy: RetryPolicy
    ) -> float | None:
        reset = response.headers.get(policy.reset_header)
        if reset is not None:
            try:
                return float(reset)
            except ValueError:
                logger.warning("Ignoring unparseable reset header", value=reset)

        retry_after = response.headers.get("retry-after")
        if retry_after is not None:
            try:
                return self._clock() + float(retry_after)
            except ValueError:
                logger.warning("Ignoring unparseable retry-after", value=retry_after)
        return None

    def _reset_wait(self, result: RateLimited) -> float | None:
        if result.reset_epoch_seconds is None:
            return None
        wait_time = result.reset_epoch_seconds - self._clock()
        return wait_time if wait_time > 0 else None

    async def _send(self, request: OutboundRequest) -> httpx.Response:
        try:
            return await self.client.send(
                request.build(self.client), stream=request.stream
            )
        except httpx.RequestError as e:
            raise TransportError(
                f"{type(e).__name__}: {e!s}", service=request.service
            ) from e

    async def _backoff(
        self,
        request: OutboundRequest,
        policy: RetryPolicy,
        attempt: int,
        detail: str,
    ) -> None:
        delay = policy.backoff(attempt)
        logger.warning(
            "Upstream attempt failed, retrying",
            service=request.service,
            attempt=attempt,
            max_attempts=policy.max_attempts,
            delay_seconds=delay,
            detail=detail,
        )
        await self._sleep(delay)
