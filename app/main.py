"""FastAPI application factory."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.exceptions import ChatSyncError, QuotaExceeded
from app.infra.logging_config import LoggingConfig
from app.routers.chat_router import router as chat_router
from app.routers.sessions_router import rate_limit_router, sessions_router

logger = logging.getLogger(__name__)


async def chat_sync_error_handler(request: Request, exc: ChatSyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def quota_exceeded_handler(request: Request, exc: QuotaExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers(),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "An error occurred"})


def create_app(testing: bool = False) -> FastAPI:
    """Build the application. testing=True skips process-wide logging setup."""
    settings = get_settings()
    if not testing:
        LoggingConfig()

    app = FastAPI(title=settings.app_name)

    app.add_exception_handler(QuotaExceeded, quota_exceeded_handler)
    app.add_exception_handler(ChatSyncError, chat_sync_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(chat_router)
    app.include_router(sessions_router)
    app.include_router(rate_limit_router)

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()
