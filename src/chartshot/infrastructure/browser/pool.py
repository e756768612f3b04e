"""Fixed-size pool of renderer handles with per-handle session caps.

Acquisition is scan-and-poll: walk the handles in order, reserve a
session slot on the first open, healthy handle below its cap, and if
every handle is saturated sleep ``poll_interval`` and rescan. A handle
hosts several sessions at once, so there is no single "free" queue to
block on.

When the pool owns a factory, a scan that finds no free slot also
replaces crashed handles (``is_healthy()`` false) in place, at most once
per ``replace_backoff`` seconds.
"""

from __future__ import annotations

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

import structlog

from chartshot.domain.exceptions import (
    HandleCreationError,
    PoolClosedError,
    PoolExhaustedError,
)
from chartshot.domain.ports.renderer import HandleFactoryPort, RendererHandlePort

log = structlog.get_logger(__name__)


class RendererPool:
    """Leases renderer handles to concurrent captures.

    Build one with :meth:`create` during application startup and pass it
    to whoever needs it; there is no module-level instance.
    """

    def __init__(
        self,
        handles: Sequence[RendererHandlePort],
        *,
        factory: HandleFactoryPort | None = None,
        poll_interval: float = 0.1,
        acquire_timeout: float | None = None,
        replace_backoff: float = 5.0,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if replace_backoff < 0:
            raise ValueError("replace_backoff must be >= 0")
        self._handles: list[RendererHandlePort] = list(handles)
        self._factory = factory
        self._poll_interval = poll_interval
        self._acquire_timeout = acquire_timeout
        # Guards _handles and _closed; never held across an await.
        self._lock = threading.Lock()
        self._closed = False
        self._close_lock = asyncio.Lock()
        self._replace_lock = asyncio.Lock()
        self._replace_backoff = replace_backoff
        self._next_replace_at = 0.0

    @classmethod
    async def create(
        cls,
        factory: HandleFactoryPort,
        *,
        size: int,
        poll_interval: float = 0.1,
        acquire_timeout: float | None = None,
        replace_backoff: float = 5.0,
    ) -> RendererPool:
        """Launch *size* handles; on any failure close the ones already made."""
        if size <= 0:
            raise ValueError("pool size must be > 0")

        created: list[RendererHandlePort] = []
        try:
            for index in range(size):
                created.append(await factory.create_handle(index))
        except BaseException as e:
            log.error(
                "pool_create_failed",
                created=len(created),
                requested=size,
                error=str(e),
            )
            for handle in created:
                try:
                    await handle.close()
                except Exception:  # noqa: BLE001
                    log.warning("pool_cleanup_error", handle=handle.name, exc_info=True)
            await factory.aclose()
            if isinstance(e, HandleCreationError) or not isinstance(e, Exception):
                raise
            raise HandleCreationError(str(e)) from e

        log.info("pool_created", size=size, poll_interval=poll_interval)
        return cls(
            created,
            factory=factory,
            poll_interval=poll_interval,
            acquire_timeout=acquire_timeout,
            replace_backoff=replace_backoff,
        )

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._handles)

    def healthy_count(self) -> int:
        """Number of open handles whose browser is still usable."""
        with self._lock:
            handles = list(self._handles)
        return sum(1 for h in handles if not h.closed and h.is_healthy())

    def _try_acquire(self) -> RendererHandlePort | None:
        with self._lock:
            if self._closed:
                raise PoolClosedError()
            handles = list(self._handles)
        for handle in handles:
            if handle.closed or not handle.is_healthy():
                continue
            if handle.try_reserve():
                return handle
        return None

    async def acquire(self, timeout: float | None = None) -> RendererHandlePort:
        """Reserve one session slot on some handle.

        Raises:
            PoolClosedError: the pool is (or becomes) closed.
            PoolExhaustedError: nothing freed up within *timeout* seconds.
        """
        if timeout is None:
            timeout = self._acquire_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        waited = False

        while True:
            handle = self._try_acquire()
            if handle is not None:
                if waited:
                    log.debug("pool_acquired_after_wait", handle=handle.name)
                return handle
            if await self._replace_unhealthy():
                continue

            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.warning("pool_exhausted", timeout=timeout)
                    raise PoolExhaustedError(timeout)
                delay = min(self._poll_interval, remaining)
            else:
                delay = self._poll_interval

            if not waited:
                log.debug("pool_saturated_waiting", poll_interval=self._poll_interval)
                waited = True
            await asyncio.sleep(delay)

    async def _replace_unhealthy(self) -> bool:
        """Relaunch crashed handles in their slots.

        Returns True when at least one fresh handle was swapped in. A
        round with a failed relaunch holds further attempts back for
        ``replace_backoff`` seconds so a broken Chromium install is not
        relaunched on every poll.
        """
        if self._factory is None:
            return False

        async with self._replace_lock:
            with self._lock:
                if self._closed or time.monotonic() < self._next_replace_at:
                    return False
                crashed = [
                    (index, handle)
                    for index, handle in enumerate(self._handles)
                    if handle.closed or not handle.is_healthy()
                ]
            if not crashed:
                return False

            replaced = 0
            for index, old in crashed:
                log.warning("pool_handle_unhealthy", handle=old.name, index=index)
                try:
                    await old.close()
                except Exception:  # noqa: BLE001
                    log.warning("pool_handle_close_error", handle=old.name, exc_info=True)

                try:
                    fresh = await self._factory.create_handle(index)
                except Exception as e:  # noqa: BLE001
                    log.error("pool_handle_replace_failed", handle=old.name, error=str(e))
                    continue

                with self._lock:
                    swapped = not self._closed and self._handles[index] is old
                    if swapped:
                        self._handles[index] = fresh
                if not swapped:
                    # Pool closed while launching.
                    await fresh.close()
                    continue
                replaced += 1
                log.info("pool_handle_replaced", handle=fresh.name, index=index)

            if replaced < len(crashed):
                self._next_replace_at = time.monotonic() + self._replace_backoff
            return replaced > 0

    def release(self, handle: RendererHandlePort) -> None:
        """Return a session slot. Synchronous, saturating, safe after close."""
        handle.release()

    @asynccontextmanager
    async def lease(self, timeout: float | None = None) -> AsyncIterator[RendererHandlePort]:
        handle = await self.acquire(timeout)
        try:
            yield handle
        finally:
            self.release(handle)

    async def close(self) -> None:
        """Close every handle exactly once and stop the driver. Idempotent."""
        async with self._close_lock:
            with self._lock:
                if self._closed:
                    return
                self._closed = True
                handles = list(self._handles)

            log.info("pool_closing", size=len(handles))
            for handle in handles:
                try:
                    await handle.close()
                except Exception:  # noqa: BLE001
                    log.warning("pool_handle_close_error", handle=handle.name, exc_info=True)

            if self._factory is not None:
                await self._factory.aclose()
            log.info("pool_closed")

    def stats(self) -> dict[str, Any]:
        with self._lock:
            handles = list(self._handles)
            closed = self._closed

        per_handle: list[dict[str, Any]] = []
        available = 0
        healthy_handles = 0
        total_active = 0
        for handle in handles:
            active = handle.active_sessions
            healthy = handle.is_healthy()
            free = max(0, handle.max_sessions - active)
            if healthy and not handle.closed:
                healthy_handles += 1
            if free > 0 and healthy and not handle.closed:
                available += 1
            total_active += active
            per_handle.append(
                {
                    "name": handle.name,
                    "active_sessions": active,
                    "max_sessions": handle.max_sessions,
                    "available_sessions": free,
                    "closed": handle.closed,
                    "healthy": healthy,
                }
            )

        return {
            "closed": closed,
            "pool_size": len(handles),
            "available_handles": available,
            "healthy_handles": healthy_handles,
            "in_use_handles": sum(1 for h in per_handle if h["active_sessions"] > 0),
            "total_active_sessions": total_active,
            "handles": per_handle,
        }
