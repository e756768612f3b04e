"""Composition root: wires every service from config.

The FastAPI ``lifespan`` and the one-shot ``chartshot capture`` command
both go through :func:`open_services`, so the server and the CLI run the
exact same object graph.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import AsyncIterator, cast

import httpx
import structlog
from fastapi import FastAPI

from chartshot.application.use_cases import ChartScreenshotUseCase
from chartshot.infrastructure.browser.handle import PlaywrightHandleFactory
from chartshot.infrastructure.browser.pool import RendererPool
from chartshot.infrastructure.chart.capture import ChartCapturer
from chartshot.infrastructure.config.schema import AppConfig
from chartshot.infrastructure.storage.cdn_oracle import HttpExistenceOracle
from chartshot.infrastructure.storage.s3_store import S3ArtifactStore
from chartshot.infrastructure.tasks.coordinator import TaskCoordinator
from chartshot.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

# How long shutdown waits for in-flight screenshot requests.
_DRAIN_TIMEOUT_SECONDS = 30.0


@dataclass
class Services:
    http_client: httpx.AsyncClient
    pool: RendererPool
    coordinator: TaskCoordinator
    store: S3ArtifactStore
    oracle: HttpExistenceOracle
    screenshot_uc: ChartScreenshotUseCase
    reaper_task: asyncio.Task | None = None


@asynccontextmanager
async def open_services(
    config: AppConfig, *, run_reaper: bool = True
) -> AsyncIterator[Services]:
    """Build and tear down the full service graph.

    Order matters:
        1. HTTP client (existence oracle)
        2. Renderer pool (launches Chromium, seeds session state)
        3. Task coordinator (+ reaper task)
        4. Object store, capturer, use case
    Teardown runs in reverse.
    """
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.cdn.existence_timeout_seconds),
        headers={"User-Agent": f"{config.app_name}/0.1"},
    )
    log.info("http_client_initialized")

    try:
        pool = await RendererPool.create(
            PlaywrightHandleFactory(config.browser, config.site),
            size=config.browser.pool_size,
            poll_interval=config.browser.poll_interval_seconds,
            acquire_timeout=config.browser.acquire_timeout_seconds,
            replace_backoff=config.browser.replace_backoff_seconds,
        )
    except BaseException:
        await http_client.aclose()
        raise

    coordinator = TaskCoordinator(
        task_timeout=config.tasks.task_timeout_seconds,
        retention=config.tasks.retention_seconds,
        sweep_interval=config.tasks.sweep_interval_seconds,
    )
    store = S3ArtifactStore(config.s3)
    oracle = HttpExistenceOracle(
        http_client, timeout_seconds=config.cdn.existence_timeout_seconds
    )
    capturer = ChartCapturer(
        pool, config.site, acquire_timeout=config.browser.acquire_timeout_seconds
    )
    screenshot_uc = ChartScreenshotUseCase(
        coordinator=coordinator,
        capturer=capturer,
        store=store,
        oracle=oracle,
        cdn_base_url=config.cdn.base_url,
        result_path=config.cdn.result_path,
        wait_timeout=config.tasks.wait_timeout_seconds,
        timezone_name=config.tasks.timezone,
        allow_unbucketed=config.tasks.allow_unbucketed_timeframes,
        write_sidecar=config.tasks.write_metadata_sidecar,
        temp_dir=config.tasks.temp_dir,
    )

    services = Services(
        http_client=http_client,
        pool=pool,
        coordinator=coordinator,
        store=store,
        oracle=oracle,
        screenshot_uc=screenshot_uc,
    )
    if run_reaper:
        services.reaper_task = asyncio.create_task(coordinator.run_forever())

    try:
        yield services
    finally:
        await screenshot_uc.drain()

        if services.reaper_task is not None:
            services.reaper_task.cancel()
            with suppress(asyncio.CancelledError):
                await services.reaper_task
            log.info("task_reaper_stopped")

        await pool.close()
        await http_client.aclose()
        log.info("http_client_closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan hook: initialize and clean up all resources."""
    state = cast(AppState, app.state)
    config = state.config

    async with open_services(config) as services:
        state.http_client = services.http_client
        state.pool = services.pool
        state.coordinator = services.coordinator
        state.store = services.store
        state.oracle = services.oracle
        state.screenshot_uc = services.screenshot_uc
        state._reaper_task = services.reaper_task

        state.graceful_shutdown.mark_ready()
        log.info(
            "app_startup_complete",
            pool_size=config.browser.pool_size,
            max_sessions=config.browser.max_sessions,
        )
        try:
            yield
        finally:
            await state.graceful_shutdown.wait_for_drain(
                timeout=_DRAIN_TIMEOUT_SECONDS
            )

    log.info("app_shutdown_complete")
