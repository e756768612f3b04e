"""Ports for the capture pipeline: deduplication and page rendering."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

from chartshot.domain.entities.artifact import ArtifactSpec
from chartshot.domain.entities.task import TaskStatus


@runtime_checkable
class TaskCoordinatorPort(Protocol):
    """At most one RUNNING execution per key; others join it."""

    async def try_start(self, key: str) -> asyncio.Event:
        """Claim *key*.

        Raises:
            TaskAlreadyRunningError: a live execution owns the key.
            TaskAlreadyCompletedError: the key finished recently.
        """
        ...

    async def wait_for(self, key: str, timeout: float) -> None: ...

    async def complete(self, key: str, done: asyncio.Event | None = None) -> None: ...

    async def fail(self, key: str, done: asyncio.Event | None = None) -> None: ...

    async def status(self, key: str) -> TaskStatus | None:
        """Current status of *key*, or ``None`` when no record exists."""
        ...


@runtime_checkable
class ChartCapturePort(Protocol):
    """Renders the chart for *spec* and writes a PNG to *output_path*."""

    async def capture(self, spec: ArtifactSpec, output_path: Path) -> Path: ...
