"""
Main module for the search relay HTTP service.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from search_relay.api.routes import router
from search_relay.config import Configuration, build_retry_policy
from search_relay.logging_utils import (
    HTTP_BAD_REQUEST,
    RelayErrorHandler,
    configure_logging,
)
from search_relay.services import ApifySearchService, ChatService, TwitterSearchService
from search_relay.upstream.exceptions import RelayError
from search_relay.upstream.executor import RequestExecutor


def create_http_client(config: Configuration) -> httpx.AsyncClient:
    """Create the shared upstream HTTP client from http_client settings."""
    http_config = config.get_http_client_config()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=http_config["connect_timeout"],
            read=http_config["read_timeout"],
            write=http_config["write_timeout"],
            pool=http_config["pool_timeout"],
        ),
        limits=httpx.Limits(
            max_connections=http_config["max_connections"],
            max_keepalive_connections=http_config["max_keepalive"],
        ),
    )


def attach_services(
    app: FastAPI, config: Configuration, executor: RequestExecutor
) -> None:
    """Build the three services and store them on ``app.state``."""
    app.state.chat_service = ChatService(
        executor,
        config.api_key("chat"),
        config.get_chat_config(),
        build_retry_policy(config.get_retry_config("chat")),
    )
    app.state.twitter_service = TwitterSearchService(
        executor,
        config.api_key("twitter"),
        config.get_twitter_config(),
        build_retry_policy(config.get_retry_config("twitter")),
    )
    app.state.apify_service = ApifySearchService(
        executor,
        config.api_key("apify"),
        config.get_apify_config(),
        build_retry_policy(config.get_retry_config("apify")),
    )


def create_app(
    config: Configuration | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    executor: RequestExecutor | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Configuration is validated here, once, so a missing credential fails
    startup instead of the first request. An injected ``http_client`` or
    ``executor`` is used as-is and not closed on shutdown.

    Raises:
        ConfigurationError: If any section or credential is missing.
    """
    config = config or Configuration()
    config.validate()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_client = None
        active_executor = executor
        if active_executor is None:
            client = http_client
            if client is None:
                client = owned_client = create_http_client(config)
            active_executor = RequestExecutor(client)

        attach_services(app, config, active_executor)
        logging.info("Search relay services initialised")
        try:
            yield
        finally:
            if owned_client is not None:
                await owned_client.aclose()
            logging.info("Search relay shutdown complete")

    app = FastAPI(
        title="Search Relay",
        description="Relays chat completions and social search results",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = config.get_server_config().get("cors_origins", [])
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logging.warning(f"Rejected request body: {exc.errors()}")
        return JSONResponse(
            {"error": "Invalid request body"}, status_code=HTTP_BAD_REQUEST
        )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        status, body = RelayErrorHandler.create_error_response(
            exc, request.url.path
        )
        return JSONResponse(body, status_code=status)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(router)
    return app


def main() -> None:
    """Main entry point - validate configuration and serve over uvicorn."""
    config = Configuration()
    configure_logging(config.get_logging_config().get("level", "INFO"))
    server_config = config.get_server_config()

    app = create_app(config)
    uvicorn.run(
        app,
        host=server_config["host"],
        port=server_config["port"],
        log_level=server_config["log_level"],
    )


if __name__ == "__main__":
    main()
