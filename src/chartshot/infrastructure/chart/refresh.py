"""Wait for the chart to finish reloading after the refresh control is clicked."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from chartshot.domain.ports.renderer import RenderControl

log = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def wait_for_refresh(
    control: RenderControl,
    *,
    start_delay: float = 1.0,
    poll_interval: float = 0.5,
    timeout: float = 30.0,
    settle: float = 1.0,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """Poll the control's busy flag until it clears.

    The control disables itself while data loads. Give loading
    *start_delay* to begin, then poll every *poll_interval* for up to
    *timeout*. Returns ``False`` when the bound was hit; the caller
    decides whether that matters (the chart is usually drawn anyway).
    On success a *settle* pause lets the last frame paint; a timed-out
    wait returns right away.
    """
    await sleep(start_delay)

    waited = 0.0
    finished = False
    while waited < timeout:
        if not await control.is_busy():
            finished = True
            break
        await sleep(poll_interval)
        waited += poll_interval

    if not finished:
        log.warning("refresh_wait_timeout", timeout=timeout)
        return False

    log.debug("refresh_complete", waited=waited)
    await sleep(settle)
    return True
