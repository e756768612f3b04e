"""Drive one chart page from navigation to PNG on disk."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from chartshot.domain.entities.artifact import ArtifactSpec
from chartshot.domain.exceptions import CaptureError
from chartshot.domain.ports.renderer import RenderSession
from chartshot.infrastructure.browser.pool import RendererPool
from chartshot.infrastructure.chart.refresh import Sleep, wait_for_refresh
from chartshot.infrastructure.config.schema import ChartSiteConfig

log = structlog.get_logger(__name__)


class ChartCapturer:
    """Leases a renderer handle and screenshots one chart page.

    Hard failures (opening a page, navigation, login redirect, screenshot)
    raise :class:`CaptureError`; a slow page load or a missing refresh
    control is logged and the capture goes on.
    """

    def __init__(
        self,
        pool: RendererPool,
        site: ChartSiteConfig,
        *,
        acquire_timeout: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._site = site
        self._acquire_timeout = acquire_timeout
        self._sleep = sleep

    async def capture(self, spec: ArtifactSpec, output_path: Path) -> Path:
        url = self._site.chart_url(spec.symbol, spec.market, spec.timeframe)
        async with self._pool.lease(self._acquire_timeout) as handle:
            log.info("capture_started", key=spec.key, url=url, handle=handle.name)
            try:
                session = await handle.open_session()
            except Exception as e:
                raise CaptureError("open_session", str(e), key=spec.key) from e
            try:
                await self._render(session, spec, url, output_path)
            finally:
                try:
                    await session.close()
                except Exception:  # noqa: BLE001
                    log.warning("session_close_error", key=spec.key, exc_info=True)
        log.info("capture_complete", key=spec.key, path=str(output_path))
        return output_path

    async def _render(
        self, session: RenderSession, spec: ArtifactSpec, url: str, output_path: Path
    ) -> None:
        try:
            await session.navigate(url)
        except Exception as e:
            raise CaptureError("navigate", str(e), key=spec.key) from e

        try:
            await session.wait_loaded()
        except Exception as e:  # noqa: BLE001
            log.warning("page_load_timeout", key=spec.key, error=str(e))

        try:
            current = await session.current_url()
        except Exception as e:
            raise CaptureError("authenticate", str(e), key=spec.key) from e
        if self._site.login_marker and self._site.login_marker in current:
            log.error("capture_login_redirect", key=spec.key, url=current)
            raise CaptureError(
                "authenticate",
                "page was redirected to login, session state may be stale",
                key=spec.key,
            )

        await self._refresh(session, spec)

        try:
            await session.screenshot(output_path)
        except Exception as e:
            raise CaptureError("screenshot", str(e), key=spec.key) from e

    async def _refresh(self, session: RenderSession, spec: ArtifactSpec) -> None:
        try:
            control = await session.find_control(
                self._site.refresh_selectors, self._site.refresh_labels
            )
        except Exception as e:  # noqa: BLE001
            log.warning("refresh_control_lookup_failed", key=spec.key, error=str(e))
            return
        if control is None:
            log.warning("refresh_control_not_found", key=spec.key)
            return
        try:
            await control.click()
        except Exception as e:  # noqa: BLE001
            log.warning("refresh_click_failed", key=spec.key, error=str(e))
            return
        await wait_for_refresh(
            control,
            start_delay=self._site.refresh_start_delay_seconds,
            poll_interval=self._site.refresh_poll_interval_seconds,
            timeout=self._site.refresh_timeout_seconds,
            settle=self._site.settle_delay_seconds,
            sleep=self._sleep,
        )
