"""Shared fixtures for integration tests.

These tests use real components (httpx client, RendererPool,
TaskCoordinator, ChartScreenshotUseCase) with HTTP mocked via respx and
the browser and object store replaced by fakes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest


@pytest.fixture()
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Real httpx.AsyncClient for use with respx mocking."""
    async with httpx.AsyncClient() as client:
        yield client
