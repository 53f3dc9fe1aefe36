"""Request bodies accepted by the relay routes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SearchRequest(BaseModel):
    """Body of the twitter and apify search routes.

    ``query`` is optional here so that a missing query is answered with the
    route's own 400 message rather than a schema error.
    """
    query: str | None = None
    max_results: int | None = Field(default=None, ge=1, le=100)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str
    content: str | list[dict[str, Any]] | None = None


class TavilyData(BaseModel):
    model_config = ConfigDict(extra="allow")

    answer: str | None = None
    query: str | None = None


class ChatContext(BaseModel):
    """Search results the frontend gathered before opening the chat."""
    model_config = ConfigDict(extra="allow")

    searchResults: list[Any] | None = None
    socialMediaResults: list[Any] | None = None
    tavilyData: TavilyData | None = None


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    context: ChatContext | None = None
