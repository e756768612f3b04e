"""FastAPI application factory (create_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from chartshot.infrastructure.config import AppConfig
from chartshot.infrastructure.graceful_shutdown import GracefulShutdown
from chartshot.interfaces.app_state import AppState
from chartshot.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def create_app(config: AppConfig) -> FastAPI:
    """Create FastAPI app: configuration only, no resource initialization.

    Resources (HTTP client, renderer pool, coordinator) are created in lifespan().
    """
    app = FastAPI(
        title="chartshot",
        description="Deduplicated stock chart screenshots served from S3/CDN",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config
    app.state.graceful_shutdown = GracefulShutdown()

    from chartshot.interfaces.api.screenshot.router import router as screenshot_router
    from chartshot.interfaces.api.stats.router import router as stats_router

    app.include_router(screenshot_router, prefix="/api/v1")
    app.include_router(stats_router, prefix="/api/v1")

    @app.get("/api/v1/healthz")
    async def healthz() -> dict[str, str]:
        """Liveness probe: 200 as long as the process is running."""
        return {"status": "ok"}

    @app.get("/api/v1/readyz")
    async def readyz() -> Response:
        """Readiness probe: 200 while the pool is open with a healthy handle."""
        gs: GracefulShutdown = app.state.graceful_shutdown
        pool = getattr(app.state, "pool", None)
        if (
            gs.is_ready
            and pool is not None
            and not pool.is_closed
            and pool.healthy_count() > 0
        ):
            return JSONResponse({"status": "ready"}, status_code=200)
        return JSONResponse({"status": "not_ready"}, status_code=503)

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        gs: GracefulShutdown = app.state.graceful_shutdown
        gs.request_started()
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            gs.request_finished()
            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_host=(request.client.host if request.client else None),
            )

    return app
