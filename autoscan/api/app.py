"""API application factory."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from autoscan.core.config import settings
from autoscan.core.exceptions import register_exception_handlers
from autoscan.core.logging import get_logger, setup_logging
from autoscan.schemas.common import ErrorResponse
from autoscan.services.trading_core import TradingCore

from .routes import (
    account,
    daily_stats,
    health,
    job_runs,
    notifications,
    positions,
    profiles,
    rate_limits,
    risk_settings,
    scans,
    scheduler,
    trades,
    trading_mode,
)


logger = get_logger("api")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration and a request id."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.monotonic()

        response = await call_next(request)

        duration = time.monotonic() - start_time
        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration:.3f}s)",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": int(duration * 1000),
            },
        )
        return response


def create_api_app(core_factory: Callable[[], TradingCore] | None = None) -> FastAPI:
    """
    Create and configure the API application.

    Args:
        core_factory: Builds the TradingCore on startup (defaults to one built
            from settings); tests pass a factory wired with fakes.
    """
    setup_logging()
    factory = core_factory or TradingCore

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        core = factory()
        await core.startup()
        app.state.core = core
        logger.info(f"{settings.app_name} started in {core.mode} mode")
        try:
            yield
        finally:
            await core.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Scheduled market screening with risk-gated order execution",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse, "description": "Bad Request"},
            404: {"model": ErrorResponse, "description": "Not Found"},
            409: {"model": ErrorResponse, "description": "Conflict"},
            422: {"model": ErrorResponse, "description": "Validation Error"},
            500: {"model": ErrorResponse, "description": "Internal Server Error"},
            502: {"model": ErrorResponse, "description": "Upstream Error"},
        },
    )

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(scheduler.router, prefix="/scheduler", tags=["Scheduler"])
    app.include_router(scans.router, prefix="/scans", tags=["Scans"])
    app.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
    app.include_router(trades.router, prefix="/trades", tags=["Trades"])
    app.include_router(positions.router, prefix="/positions", tags=["Positions"])
    app.include_router(risk_settings.router, prefix="/risk-settings", tags=["Risk"])
    app.include_router(rate_limits.router, prefix="/rate-limits", tags=["Rate Limits"])
    app.include_router(trading_mode.router, prefix="/trading-mode", tags=["Trading Mode"])
    app.include_router(job_runs.router, prefix="/job-runs", tags=["Job Runs"])
    app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
    app.include_router(account.router, prefix="/account", tags=["Account"])
    app.include_router(daily_stats.router, prefix="/daily-stats", tags=["Daily Stats"])

    return app
