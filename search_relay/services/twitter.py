"""Twitter (X) recent search relay."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from search_relay.logging_utils import log_operation
from search_relay.upstream.exceptions import (
    AuthFailedError,
    RateLimitedError,
    UpstreamStatusError,
)
from search_relay.upstream.executor import RequestExecutor
from search_relay.upstream.models import OutboundRequest, RetryPolicy

logger = structlog.get_logger(__name__)

AUTH_FAILED_MESSAGE = (
    "Twitter API authentication failed. Please check your Bearer Token."
)
RATE_LIMITED_MESSAGE = "Twitter API rate limit exceeded. Please try again later."
FALLBACK_DETAIL = "Failed to fetch tweets"

TWEET_FIELDS = "created_at,public_metrics,text"
USER_FIELDS = "name,username,profile_image_url"


class TwitterUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    username: str | None = None
    name: str | None = None
    profile_image_url: str | None = None


class PublicMetrics(BaseModel):
    model_config = ConfigDict(extra="allow")

    retweet_count: int | None = None
    reply_count: int | None = None
    like_count: int | None = None
    quote_count: int | None = None


class Tweet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    text: str | None = None
    author_id: str | None = None
    created_at: str | None = None
    public_metrics: PublicMetrics | None = None


class Includes(BaseModel):
    users: list[TwitterUser] | None = None


class SearchResponse(BaseModel):
    data: list[Tweet] | None = None
    includes: Includes | None = None
    meta: dict[str, Any] | None = None


class TwitterSearchService:
    """Searches recent tweets and attaches author details."""

    def __init__(
        self,
        executor: RequestExecutor,
        api_key: str,
        twitter_config: dict[str, Any],
        policy: RetryPolicy,
    ):
        self.executor = executor
        self.api_key = api_key
        self.config = twitter_config
        self.policy = policy

    def build_request(self, query: str, max_results: int | None = None) -> OutboundRequest:
        return OutboundRequest.with_bearer(
            self.config["url"],
            self.api_key,
            headers={"Accept": "application/json"},
            params={
                "query": query,
                "max_results": max_results or self.config["default_max_results"],
                "expansions": "author_id",
                "tweet.fields": TWEET_FIELDS,
                "user.fields": USER_FIELDS,
            },
            service="twitter",
            fallback_detail=FALLBACK_DETAIL,
        )

    @log_operation("twitter_search", service="twitter", bind=("query", "max_results"))
    async def search(self, query: str, max_results: int | None = None) -> dict[str, Any]:
        """Run a recent search and return ``{"data": [...], "meta": {...}}``."""
        request = self.build_request(query, max_results)
        try:
            response = await self.executor.execute(request, self.policy)
        except AuthFailedError as e:
            raise AuthFailedError(
                AUTH_FAILED_MESSAGE,
                service="twitter",
                status_code=e.status_code,
                response_data={"detail": e.message},
            ) from e
        except RateLimitedError as e:
            raise RateLimitedError(
                RATE_LIMITED_MESSAGE,
                retry_after=e.retry_after,
                service="twitter",
                status_code=e.status_code,
                response_data={"detail": e.message},
            ) from e

        try:
            payload = SearchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamStatusError(
                "Failed to fetch tweets: unexpected response from Twitter API",
                service="twitter",
                status_code=response.status_code,
            ) from e

        result = self.reshape(payload)
        logger.info(
            "Twitter search completed",
            query=query,
            result_count=len(result["data"]),
        )
        return result

    @staticmethod
    def reshape(payload: SearchResponse) -> dict[str, Any]:
        """Join each tweet with its author from ``includes.users``."""
        users = payload.includes.users if payload.includes else None
        user_map = {user.id: user for user in users or []}

        tweets = []
        for tweet in payload.data or []:
            item: dict[str, Any] = {
                "id": tweet.id,
                "text": tweet.text,
                "author_id": tweet.author_id,
                "created_at": tweet.created_at,
                "public_metrics": (
                    tweet.public_metrics.model_dump()
                    if tweet.public_metrics else None
                ),
            }
            author = user_map.get(tweet.author_id) if tweet.author_id else None
            if author is not None:
                item["author"] = {
                    "username": author.username,
                    "name": author.name,
                    "profile_image_url": author.profile_image_url,
                }
            tweets.append(item)

        return {"data": tweets, "meta": payload.meta}
