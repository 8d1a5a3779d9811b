"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from backupalert.api.deps import close_channel_registry
from backupalert.api.routes import channels, logs, rules
from backupalert.core.config import get_settings
from backupalert.core.errors import (
    ChannelNotFoundError,
    ConfigurationError,
    DeliveryError,
    NotificationError,
    OutboundDisabledError,
    RuleNotFoundError,
    UnsafeDestinationError,
)
from backupalert.core.logging import get_logger, setup_logging
from backupalert.storage.redis_client import close_redis_pool, init_redis_pool

logger = get_logger(__name__)

ERROR_STATUS: tuple[tuple[type[NotificationError], int], ...] = (
    (ChannelNotFoundError, 404),
    (RuleNotFoundError, 404),
    (ConfigurationError, 400),
    (UnsafeDestinationError, 400),
    (OutboundDisabledError, 503),
    (DeliveryError, 502),
)


def status_for(exc: NotificationError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings = get_settings()

    setup_logging()
    logger.info("Starting application", app_name=settings.app_name, version=settings.app_version)

    await init_redis_pool()
    logger.info("Redis connection pool initialized")

    yield

    logger.info("Shutting down application")
    await close_channel_registry()
    await close_redis_pool()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Backup notification dispatch and rule engine",
        lifespan=lifespan,
    )

    app.include_router(channels.router, prefix="/api/v1")
    app.include_router(logs.router, prefix="/api/v1")
    app.include_router(rules.router, prefix="/api/v1")
    app.mount("/metrics", make_asgi_app())

    @app.exception_handler(NotificationError)
    async def notification_error_handler(request: Request, exc: NotificationError) -> JSONResponse:
        status_code = status_for(exc)
        logger.warning(
            "Request failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            status=status_code,
        )
        return JSONResponse(
            status_code=status_code,
            content={"code": status_code, "message": str(exc), "data": None},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        content = {
            "code": exc.status_code,
            "message": detail if isinstance(detail, str) else "HTTP error",
            "data": None if isinstance(detail, str) else detail,
        }
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "code": 422,
                "message": "Validation error",
                "data": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content={
                "code": 500,
                "message": "Internal server error",
                "data": str(exc) if settings.debug else None,
            },
        )

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "version": settings.app_version}

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw input, which may carry secrets."""
    return [{key: value for key, value in error.items() if key in ("type", "loc", "msg")} for error in exc.errors()]


app = create_app()
