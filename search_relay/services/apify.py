"""Apify tweet-scraper actor relay."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from search_relay.logging_utils import log_operation, operation_context
from search_relay.upstream.exceptions import RelayError, UpstreamStatusError
from search_relay.upstream.executor import RequestExecutor
from search_relay.upstream.models import OutboundRequest, RetryPolicy

logger = structlog.get_logger(__name__)

RUN_SUCCEEDED = "SUCCEEDED"
TERMINAL_RUN_STATUSES = frozenset({"SUCCEEDED", "FAILED", "ABORTED", "TIMED-OUT"})
FALLBACK_DETAIL = "Failed to process request"


class ActorRun(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    status: str
    default_dataset_id: str = Field(alias="defaultDatasetId")


class ScrapedAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    username: str | None = None
    name: str | None = None
    profile_image_url: str | None = Field(default=None, alias="profileImageUrl")


class ScrapedTweet(BaseModel):
    """One dataset item produced by the scraper actor."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    text: str | None = None
    author: ScrapedAuthor | None = None
    created_at: str | None = Field(default=None, alias="createdAt")
    retweet_count: int | None = Field(default=None, alias="retweetCount")
    reply_count: int | None = Field(default=None, alias="replyCount")
    like_count: int | None = Field(default=None, alias="likeCount")
    quote_count: int | None = Field(default=None, alias="quoteCount")

    def to_tweet(self) -> dict[str, Any]:
        author = self.author or ScrapedAuthor()
        return {
            "id": self.id,
            "text": self.text,
            "author": {
                "username": author.username,
                "name": author.name,
                "profile_image_url": author.profile_image_url,
            },
            "created_at": self.created_at,
            "public_metrics": {
                "retweet_count": self.retweet_count,
                "reply_count": self.reply_count,
                "like_count": self.like_count,
                "quote_count": self.quote_count,
            },
        }


class ApifySearchService:
    """
    Runs the scraper actor for a query and returns its items as tweets.

    The run is started with ``waitForFinish`` and then polled in the same
    increments until it reaches a terminal status or ``max_run_wait`` passes.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        api_key: str,
        apify_config: dict[str, Any],
        policy: RetryPolicy,
    ):
        self.executor = executor
        self.api_key = api_key
        self.config = apify_config
        self.policy = policy

    def _request(self, path: str, **kwargs: Any) -> OutboundRequest:
        return OutboundRequest.with_bearer(
            f"{self.config['base_url'].rstrip('/')}{path}",
            self.api_key,
            service="apify",
            read_timeout=self.config["read_timeout"],
            fallback_detail=FALLBACK_DETAIL,
            **kwargs,
        )

    async def _fetch_json(self, request: OutboundRequest) -> Any:
        response = await self.executor.execute(request, self.policy)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamStatusError(
                "Invalid JSON from Apify API",
                service="apify",
                status_code=response.status_code,
            ) from e

    def _parse_run(self, payload: Any) -> ActorRun:
        try:
            return ActorRun.model_validate(payload["data"])
        except (KeyError, TypeError, ValidationError) as e:
            raise UpstreamStatusError(
                "Unexpected actor run response from Apify API", service="apify"
            ) from e

    async def start_run(self, query: str, max_results: int) -> ActorRun:
        actor_input = {
            "searchTerms": [query],
            "sort": "Latest",
            "maxItems": max_results,
        }
        request = self._request(
            f"/acts/{self.config['actor_id']}/runs",
            method="POST",
            params={"waitForFinish": self.config["wait_for_finish"]},
            json_body=actor_input,
            # A resent POST would start a second paid run
            idempotent=False,
        )
        return self._parse_run(await self._fetch_json(request))

    async def wait_for_run(self, run: ActorRun) -> ActorRun:
        if run.status in TERMINAL_RUN_STATUSES:
            return self._check_outcome(run)

        waited = self.config["wait_for_finish"]
        async with operation_context(
            "apify_wait_for_run", service="apify", context={"run_id": run.id}
        ) as run_logger:
            while run.status not in TERMINAL_RUN_STATUSES:
                if waited >= self.config["max_run_wait"]:
                    raise RelayError(
                        f"Apify actor run {run.id} did not finish within "
                        f"{self.config['max_run_wait']}s (status {run.status})",
                        service="apify",
                    )
                request = self._request(
                    f"/actor-runs/{run.id}",
                    params={"waitForFinish": self.config["wait_for_finish"]},
                )
                run = self._parse_run(await self._fetch_json(request))
                waited += self.config["wait_for_finish"]
                run_logger.debug("Polled actor run", status=run.status, waited=waited)

        return self._check_outcome(run)

    @staticmethod
    def _check_outcome(run: ActorRun) -> ActorRun:
        if run.status != RUN_SUCCEEDED:
            logger.warning("Apify actor run ended without success", run_id=run.id, status=run.status)
        return run

    async def list_items(self, dataset_id: str) -> list[dict[str, Any]]:
        request = self._request(
            f"/datasets/{dataset_id}/items",
            params={"format": "json", "clean": "true"},
        )
        items = await self._fetch_json(request)
        if not isinstance(items, list):
            raise UpstreamStatusError(
                "Unexpected dataset items response from Apify API", service="apify"
            )
        return items

    @log_operation("apify_search", service="apify", bind=("query", "max_results"))
    async def search(self, query: str, max_results: int | None = None) -> dict[str, Any]:
        """Run the actor for ``query`` and return ``{"data": [...]}``."""
        max_results = max_results or self.config["default_max_results"]
        run = await self.wait_for_run(await self.start_run(query, max_results))
        items = await self.list_items(run.default_dataset_id)

        tweets = []
        for item in items:
            try:
                tweets.append(ScrapedTweet.model_validate(item).to_tweet())
            except ValidationError as e:
                logger.warning("Skipping malformed dataset item", error_count=e.error_count())

        logger.info("Apify search completed", query=query, run_id=run.id, result_count=len(tweets))
        return {"data": tweets}
