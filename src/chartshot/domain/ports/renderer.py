"""Renderer ports: pooled browser handles and the sessions they host."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class RenderControl(Protocol):
    """An interactive element on a rendered page (e.g. a refresh button)."""

    async def text(self) -> str: ...

    async def click(self) -> None: ...

    async def is_busy(self) -> bool:
        """True while the control reports in-progress loading.

        Implementations return ``False`` when the state cannot be read.
        """
        ...


@runtime_checkable
class RenderSession(Protocol):
    """One logical page hosted by a renderer handle."""

    async def navigate(self, url: str) -> None: ...

    async def wait_loaded(self) -> None: ...

    async def current_url(self) -> str: ...

    async def find_control(
        self, selectors: Sequence[str], labels: Sequence[str]
    ) -> RenderControl | None: ...

    async def screenshot(self, path: Path) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class RendererHandlePort(Protocol):
    """A long-lived browser process with a per-handle session cap.

    ``try_reserve``/``release`` are synchronous and never block; they
    guard the session counter with the handle's own lock.
    """

    name: str
    max_sessions: int

    @property
    def active_sessions(self) -> int: ...

    @property
    def closed(self) -> bool: ...

    def is_healthy(self) -> bool: ...

    def try_reserve(self) -> bool: ...

    def release(self) -> None: ...

    async def open_session(self) -> RenderSession: ...

    async def close(self) -> None: ...


@runtime_checkable
class HandleFactoryPort(Protocol):
    """Launches renderer handles for a pool and owns the driver process."""

    async def create_handle(self, index: int) -> RendererHandlePort: ...

    async def aclose(self) -> None: ...
