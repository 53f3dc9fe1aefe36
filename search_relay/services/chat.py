"""
Chat completion relay.

Builds the research-assistant prompt from the search context the frontend
collected, streams the completion from the provider and hands the open
response to a StreamDecoder.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import structlog

from search_relay.api.schemas import ChatContext, ChatMessage
from search_relay.upstream.executor import RequestExecutor
from search_relay.upstream.models import OutboundRequest, RetryPolicy
from search_relay.upstream.streaming import StreamDecoder, StreamEvent

logger = structlog.get_logger(__name__)

LOG_PREVIEW_CHARS = 100
DEFAULT_USER_PROMPT = "Please analyze the provided context and generate a report."
FALLBACK_DETAIL = "Failed to get response from DeepSeek"

SYSTEM_PROMPT_TEMPLATE = """You are a research assistant analyzing information from multiple sources. Here is the context for your analysis:

Search Results: {search_results}
Social Media Posts: {social_media_posts}
Tavily Data: {tavily_data}

Please use this context to inform your analysis and responses. Make sure to specifically reference and analyze any social media posts provided, as they often contain valuable real-time insights."""


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class ChatService:
    """Streams chat completions for a conversation plus search context."""

    def __init__(
        self,
        executor: RequestExecutor,
        api_key: str,
        chat_config: dict[str, Any],
        policy: RetryPolicy,
    ):
        self.executor = executor
        self.api_key = api_key
        self.config = chat_config
        self.policy = policy

    def build_system_message(self, context: ChatContext | None) -> dict[str, str]:
        context = context or ChatContext()
        limit = self.config["context_items"]

        tavily: dict[str, Any] = {}
        if context.tavilyData is not None:
            tavily = context.tavilyData.model_dump(
                include={"answer", "query"}, exclude_none=True
            )

        content = SYSTEM_PROMPT_TEMPLATE.format(
            search_results=_compact_json((context.searchResults or [])[:limit]),
            social_media_posts=_compact_json((context.socialMediaResults or [])[:limit]),
            tavily_data=_compact_json(tavily),
        )
        return {"role": "system", "content": content}

    def prepare_messages(
        self, messages: list[ChatMessage], context: ChatContext | None
    ) -> list[dict[str, Any]]:
        """Prefix the system prompt and make sure the last turn is the user's."""
        if not messages:
            raise ValueError("No messages provided")

        conversation = [m.model_dump(exclude_none=True) for m in messages]
        if conversation[-1].get("role") != "user":
            conversation.append({"role": "user", "content": DEFAULT_USER_PROMPT})

        return [self.build_system_message(context), *conversation]

    def build_request(
        self, messages: list[ChatMessage], context: ChatContext | None
    ) -> OutboundRequest:
        payload = {
            "model": self.config["model"],
            "messages": self.prepare_messages(messages, context),
            "stream": True,
            "max_tokens": self.config["max_tokens"],
            "temperature": self.config["temperature"],
        }
        return OutboundRequest.with_bearer(
            self.config["url"],
            self.api_key,
            method="POST",
            headers={"Content-Type": "application/json"},
            json_body=payload,
            stream=True,
            service="chat",
            fallback_detail=FALLBACK_DETAIL,
        )

    async def open_stream(
        self, messages: list[ChatMessage], context: ChatContext | None = None
    ) -> AsyncIterator[StreamEvent]:
        """
        Start the completion and return its decoded event stream.

        Upstream failures surface here, before any event is produced; the
        returned iterator only raises StreamAbortedError.
        """
        request = self.build_request(messages, context)
        logger.info(
            "Sending chat completion request",
            model=self.config["model"],
            messages=[
                {
                    "role": m.get("role"),
                    "content": str(m.get("content", ""))[:LOG_PREVIEW_CHARS] + "...",
                }
                for m in request.json_body["messages"]
            ],
        )

        response = await self.executor.execute(request, self.policy)
        return StreamDecoder().decode_response(response)
