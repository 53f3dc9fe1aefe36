"""HTTP routes: chat streaming plus the two social search relays."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from search_relay.api.schemas import ChatRequest, SearchRequest
from search_relay.logging_utils import (
    HTTP_BAD_REQUEST,
    HTTP_INTERNAL_ERROR,
    RelayErrorHandler,
)
from search_relay.services import ApifySearchService, ChatService, TwitterSearchService
from search_relay.upstream.exceptions import RelayError
from search_relay.upstream.streaming import encode_events

router = APIRouter(prefix="/api")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=HTTP_BAD_REQUEST)


def _error_response(error: Exception, operation: str) -> JSONResponse:
    status, body = RelayErrorHandler.create_error_response(error, operation)
    return JSONResponse(body, status_code=status)


@router.post("/chat", response_model=None)
async def chat(body: ChatRequest, request: Request) -> StreamingResponse | JSONResponse:
    if not body.messages:
        return JSONResponse(
            {"error": "No messages provided"}, status_code=HTTP_INTERNAL_ERROR
        )

    service: ChatService = request.app.state.chat_service
    try:
        events = await service.open_stream(body.messages, body.context)
    except RelayError as e:
        return _error_response(e, "chat")

    return StreamingResponse(
        encode_events(events),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


@router.post("/twitter")
async def twitter_search(body: SearchRequest, request: Request) -> JSONResponse:
    if not body.query:
        return _bad_request("Query parameter is required")

    service: TwitterSearchService = request.app.state.twitter_service
    try:
        result = await service.search(body.query, body.max_results)
    except RelayError as e:
        return _error_response(e, "twitter_search")
    return JSONResponse(result)


@router.post("/apify")
async def apify_search(body: SearchRequest, request: Request) -> JSONResponse:
    if not body.query:
        return _bad_request("Query parameter is required")

    service: ApifySearchService = request.app.state.apify_service
    try:
        result = await service.search(body.query, body.max_results)
    except RelayError as e:
        return _error_response(e, "apify_search")
    return JSONResponse(result)
