"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.datastructures import State

from chartshot.infrastructure.config import AppConfig
from chartshot.infrastructure.graceful_shutdown import GracefulShutdown

if TYPE_CHECKING:
    import asyncio

    from chartshot.application.use_cases import ChartScreenshotUseCase
    from chartshot.domain.ports import ArtifactStorePort, ExistenceOraclePort
    from chartshot.infrastructure.browser.pool import RendererPool
    from chartshot.infrastructure.tasks.coordinator import TaskCoordinator


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    config: AppConfig

    http_client: httpx.AsyncClient

    # Renderer pool (Chromium processes)
    pool: RendererPool

    # Dedup coordinator and its reaper task
    coordinator: TaskCoordinator
    _reaper_task: asyncio.Task | None

    store: ArtifactStorePort
    oracle: ExistenceOraclePort

    screenshot_uc: ChartScreenshotUseCase

    graceful_shutdown: GracefulShutdown
