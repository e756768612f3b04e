"""Playwright-backed renderer handles.

One handle = one Chromium process with one ``BrowserContext``. Every
session (page) opened on the handle lives in that context, so the
localStorage seeded during the one-time bootstrap (auth token, sidebar
layout) is inherited by all of them.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Sequence

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    ElementHandle,
    Page,
    Playwright,
    async_playwright,
)

from chartshot.domain.exceptions import HandleCreationError
from chartshot.infrastructure.config.schema import BrowserConfig, ChartSiteConfig

log = structlog.get_logger(__name__)

# Hides the automation fingerprint and pins the UI language before any
# page script runs.
_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'language', { get: () => 'zh-CN' });
Object.defineProperty(navigator, 'languages', { get: () => ['zh-CN', 'zh', 'en'] });
"""

_SEED_STORAGE_SCRIPT = """
([token, sheet]) => {
    localStorage.setItem('jwt_access_token', token);
    localStorage.setItem('sidebarSheet', sheet);
}
"""


def build_launch_args(config: BrowserConfig) -> list[str]:
    """Chromium command-line flags tuned for a dedicated capture host."""
    return [
        f"--lang={config.locale}",
        f"--accept-lang={config.accept_language}",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        # Background features we never need
        "--disable-extensions",
        "--disable-plugins",
        "--disable-background-networking",
        "--disable-default-apps",
        "--disable-sync",
        "--metrics-recording-only",
        "--no-first-run",
        "--mute-audio",
        "--disable-translate",
        # Font rendering
        "--font-render-hinting=medium",
        "--enable-font-antialiasing",
        # Memory ceilings
        f"--js-flags=--max-old-space-size={config.memory_limit_mb}",
        "--memory-pressure-off",
        "--aggressive-cache-discard",
        # Process / context limits
        f"--renderer-process-limit={config.renderer_processes}",
        f"--max-active-webgl-contexts={config.webgl_contexts}",
        # Keep rendering at full speed in headless tabs
        "--disable-background-timer-throttling",
        "--disable-renderer-backgrounding",
        # GPU rasterization
        "--enable-features=VaapiVideoDecoder,VaapiVideoEncoder",
        "--ignore-gpu-blocklist",
        "--enable-gpu-rasterization",
        "--enable-zero-copy",
        "--enable-oop-rasterization",
    ]


def resolve_executable(config: BrowserConfig) -> str | None:
    """Explicit config first, then CHROME_PATH / CHROME_BIN, else bundled Chromium."""
    if config.executable_path is not None:
        return str(config.executable_path)
    return os.getenv("CHROME_PATH") or os.getenv("CHROME_BIN") or None


class PlaywrightControl:
    """A page element wrapped as a :class:`RenderControl`."""

    def __init__(self, element: ElementHandle) -> None:
        self._element = element

    async def text(self) -> str:
        return (await self._element.text_content()) or ""

    async def click(self) -> None:
        await self._element.click()

    async def is_busy(self) -> bool:
        try:
            return bool(await self._element.evaluate("el => el.disabled === true"))
        except Exception:  # noqa: BLE001
            # Detached or unreadable: treat as not loading.
            return False


class PlaywrightSession:
    """One page inside a handle's context."""

    def __init__(self, page: Page, *, navigation_timeout_ms: int) -> None:
        self._page = page
        self._timeout_ms = navigation_timeout_ms

    @property
    def page(self) -> Page:
        return self._page

    async def navigate(self, url: str) -> None:
        await self._page.goto(
            url, wait_until="domcontentloaded", timeout=self._timeout_ms
        )

    async def wait_loaded(self) -> None:
        await self._page.wait_for_load_state("load", timeout=self._timeout_ms)

    async def current_url(self) -> str:
        return self._page.url

    async def find_control(
        self, selectors: Sequence[str], labels: Sequence[str]
    ) -> PlaywrightControl | None:
        for selector in selectors:
            try:
                elements = await self._page.query_selector_all(selector)
            except Exception:  # noqa: BLE001
                log.debug("control_selector_invalid", selector=selector)
                continue
            for element in elements:
                try:
                    text = (await element.text_content()) or ""
                except Exception:  # noqa: BLE001
                    # Detached between query and read.
                    log.debug("control_candidate_unreadable", selector=selector)
                    continue
                if any(label in text for label in labels):
                    log.debug("control_found", selector=selector, text=text.strip())
                    return PlaywrightControl(element)
        return None

    async def screenshot(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._page.screenshot(path=str(path))

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()


class PlaywrightRendererHandle:
    """One Chromium process with a capped number of concurrent pages.

    The session counter is guarded by a plain ``threading.Lock``: the
    critical sections never await, so :meth:`release` stays synchronous
    and can be called from ``finally`` blocks without blocking.
    """

    def __init__(
        self,
        name: str,
        *,
        browser: Browser,
        context: BrowserContext,
        max_sessions: int,
        navigation_timeout_ms: int = 60_000,
    ) -> None:
        self.name = name
        self.max_sessions = max_sessions
        self._browser = browser
        self._context = context
        self._timeout_ms = navigation_timeout_ms
        self._lock = threading.Lock()
        self._active = 0
        self._closed = False

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return self._active

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def is_healthy(self) -> bool:
        return not self.closed and self._browser.is_connected()

    def try_reserve(self) -> bool:
        with self._lock:
            if self._closed or self._active >= self.max_sessions:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        with self._lock:
            if self._active > 0:
                self._active -= 1

    async def open_session(self) -> PlaywrightSession:
        page = await self._context.new_page()
        log.debug(
            "session_opened",
            handle=self.name,
            active_sessions=self.active_sessions,
            max_sessions=self.max_sessions,
        )
        return PlaywrightSession(page, navigation_timeout_ms=self._timeout_ms)

    async def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            await self._context.close()
        except Exception:  # noqa: BLE001
            log.warning("handle_context_close_error", handle=self.name, exc_info=True)
        try:
            await self._browser.close()
        except Exception:  # noqa: BLE001
            log.warning("handle_browser_close_error", handle=self.name, exc_info=True)
        log.info("handle_closed", handle=self.name)


class PlaywrightHandleFactory:
    """Launches :class:`PlaywrightRendererHandle` instances.

    Owns the Playwright driver; it is started lazily on the first
    :meth:`create_handle` call and stopped by :meth:`aclose`.

    Usage::

        factory = PlaywrightHandleFactory(config.browser, config.site)
        pool = await RendererPool.create(factory, size=2)
        ...
        await pool.close()   # closes handles, then factory.aclose()
    """

    def __init__(self, browser_config: BrowserConfig, site: ChartSiteConfig) -> None:
        self._config = browser_config
        self._site = site
        self._pw: Playwright | None = None

    async def _ensure_driver(self) -> Playwright:
        if self._pw is None:
            self._pw = await async_playwright().start()
        return self._pw

    async def create_handle(self, index: int) -> PlaywrightRendererHandle:
        name = f"chromium-{index}"
        log.info("handle_launching", handle=name, headless=self._config.headless)
        browser: Browser | None = None
        try:
            pw = await self._ensure_driver()
            browser = await pw.chromium.launch(
                headless=self._config.headless,
                executable_path=resolve_executable(self._config),
                args=build_launch_args(self._config),
            )
            context = await browser.new_context(
                viewport={
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                locale=self._config.locale,
                user_agent=self._config.user_agent,
                extra_http_headers={"Accept-Language": self._config.accept_language},
            )
            await context.add_init_script(_INIT_SCRIPT)
            await self._bootstrap(context, name)
        except Exception as e:
            if browser is not None:
                try:
                    await browser.close()
                except Exception:  # noqa: BLE001
                    log.debug("handle_cleanup_error", handle=name, exc_info=True)
            raise HandleCreationError(f"failed to create {name}: {e}") from e

        log.info("handle_ready", handle=name, max_sessions=self._config.max_sessions)
        return PlaywrightRendererHandle(
            name,
            browser=browser,
            context=context,
            max_sessions=self._config.max_sessions,
            navigation_timeout_ms=self._config.navigation_timeout_ms,
        )

    async def _bootstrap(self, context: BrowserContext, name: str) -> None:
        """Seed site localStorage once so every later page inherits it."""
        if not self._site.has_session_state:
            log.warning(
                "handle_bootstrap_skipped",
                handle=name,
                reason="jwt_access_token or sidebar_sheet not configured",
            )
            return

        page = await context.new_page()
        try:
            # Navigation failure is fatal: without the origin loaded the
            # storage cannot be seeded.
            await page.goto(
                self._site.base_url,
                wait_until="domcontentloaded",
                timeout=self._config.navigation_timeout_ms,
            )
            try:
                await page.wait_for_load_state(
                    "load", timeout=self._config.navigation_timeout_ms
                )
            except Exception:  # noqa: BLE001
                log.warning("handle_bootstrap_load_timeout", handle=name)
            await page.evaluate(
                _SEED_STORAGE_SCRIPT,
                [self._site.jwt_access_token, self._site.sidebar_sheet],
            )
            log.info("handle_bootstrap_complete", handle=name)
        finally:
            await page.close()

    async def aclose(self) -> None:
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception:  # noqa: BLE001
                log.warning("playwright_stop_error", exc_info=True)
            self._pw = None
