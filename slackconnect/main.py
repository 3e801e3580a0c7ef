"""
FastAPI application entrypoint for the Slack message scheduler.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slackconnect.api.routes import router as api_router
from slackconnect.core.config import get_settings
from slackconnect.core.logging import configure_logging
from slackconnect.dependencies import get_dispatch_engine
from slackconnect.services import (
    AuthenticationRequiredError,
    DeliveryFailedError,
    ScheduledMessageNotFoundError,
    TokenRefreshFailedError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    engine = None
    if settings.scheduler.run_in_api_process:
        engine = get_dispatch_engine()
        engine.start()
    try:
        yield
    finally:
        if engine is not None:
            await engine.stop(drain=True)


def _error(status: HTTPStatus, message: str, *, needs_reauth: bool = False) -> JSONResponse:
    content: dict = {"error": message}
    if needs_reauth:
        content["needs_reauth"] = True
    return JSONResponse(status_code=status, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """Translate service-layer failures into HTTP responses."""

    @app.exception_handler(AuthenticationRequiredError)
    async def _reauth_required(request: Request, exc: AuthenticationRequiredError):
        return _error(HTTPStatus.UNAUTHORIZED, str(exc), needs_reauth=True)

    @app.exception_handler(TokenRefreshFailedError)
    async def _refresh_failed(request: Request, exc: TokenRefreshFailedError):
        logger.warning("Token refresh failed for request", extra={"path": request.url.path})
        return _error(HTTPStatus.SERVICE_UNAVAILABLE, "Slack token refresh failed; try again.")

    @app.exception_handler(UserNotFoundError)
    async def _user_not_found(request: Request, exc: UserNotFoundError):
        return _error(HTTPStatus.UNAUTHORIZED, "User not found.", needs_reauth=True)

    @app.exception_handler(DeliveryFailedError)
    async def _delivery_failed(request: Request, exc: DeliveryFailedError):
        return _error(HTTPStatus.BAD_GATEWAY, str(exc))

    @app.exception_handler(ScheduledMessageNotFoundError)
    async def _message_not_found(request: Request, exc: ScheduledMessageNotFoundError):
        return _error(HTTPStatus.NOT_FOUND, "Scheduled message not found.")


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="SlackConnect Scheduler",
        version="0.1.0",
        description="Send Slack messages now or later on behalf of connected users.",
        lifespan=lifespan,
    )
    if settings.frontend_base_url:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(settings.frontend_base_url).rstrip("/")],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]


if __name__ == "__main__":  # pragma: no cover - manual execution path
    import uvicorn

    uvicorn.run("slackconnect.main:app", host="0.0.0.0", port=8000)
