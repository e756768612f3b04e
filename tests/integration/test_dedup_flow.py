"""Integration tests: real pool, capturer, coordinator and use case.

Only the browser (FakeHandle/FakeSession), the object store and the CDN
are faked. Uploaded objects become visible to the CDN fake right away.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from chartshot.application.use_cases import ChartScreenshotUseCase
from chartshot.domain.exceptions import CaptureError
from chartshot.infrastructure.browser.pool import RendererPool
from chartshot.infrastructure.chart.capture import ChartCapturer
from chartshot.infrastructure.config.schema import ChartSiteConfig
from chartshot.infrastructure.tasks.coordinator import TaskCoordinator

pytestmark = pytest.mark.integration

CDN = "https://cdn.example.com"


async def _no_sleep(_delay: float) -> None:
    return None


class _CdnBackedStore:
    """Store that makes every upload servable by the CDN fake."""

    def __init__(self, store, oracle) -> None:
        self.inner = store
        self.oracle = oracle

    async def upload(self, local_path: Path, key: str):
        result = await self.inner.upload(local_path, key)
        self.oracle.publish(f"{CDN}/{key}", size=result.size, last_modified=result.uploaded_at)
        return result

    async def upload_json(self, data, key: str):
        return await self.inner.upload_json(data, key)


class _SessionTracker:
    """Builds sessions whose navigation can be held and whose overlap is measured."""

    def __init__(self, make_session, make_control) -> None:
        self._make_session = make_session
        self._make_control = make_control
        self.gate = asyncio.Event()
        self.gate.set()
        self.errors: list[Exception | None] = []
        self.active = 0
        self.max_active = 0
        self.opened = 0

    def __call__(self):
        self.opened += 1
        error = self.errors.pop(0) if self.errors else None
        session = self._make_session(
            control=self._make_control([True, False]), navigate_error=error
        )
        original = session.navigate

        async def navigate(url: str) -> None:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                await self.gate.wait()
                await asyncio.sleep(0.01)
                await original(url)
            finally:
                self.active -= 1

        session.navigate = navigate
        return session


@pytest.fixture()
def tracker(make_session, make_control) -> _SessionTracker:
    return _SessionTracker(make_session, make_control)


@pytest.fixture()
def clock(make_clock, fixed_now):
    return make_clock(fixed_now)


@pytest.fixture()
def system(tmp_path, make_handle, tracker, fake_store, fake_oracle, clock):
    def _build(*, pool_size: int = 1, max_sessions: int = 5):
        handles = [
            make_handle(f"fake-{i}", max_sessions=max_sessions, session_factory=tracker)
            for i in range(pool_size)
        ]
        pool = RendererPool(handles, poll_interval=0.01)
        capturer = ChartCapturer(
            pool, ChartSiteConfig(), acquire_timeout=5.0, sleep=_no_sleep
        )
        use_case = ChartScreenshotUseCase(
            coordinator=TaskCoordinator(clock=clock),
            capturer=capturer,
            store=_CdnBackedStore(fake_store, fake_oracle),
            oracle=fake_oracle,
            cdn_base_url=CDN,
            result_path="screenshots",
            wait_timeout=5.0,
            temp_dir=tmp_path,
            clock=clock,
        )
        return use_case, pool

    return _build


class TestDeduplication:
    async def test_concurrent_requests_share_one_capture(
        self, system, tracker, fake_store
    ) -> None:
        use_case, pool = system()
        tracker.gate.clear()

        async def _release_later() -> None:
            await asyncio.sleep(0.05)
            tracker.gate.set()

        results, _ = await asyncio.gather(
            asyncio.gather(*(use_case.execute("NVDA", "us", "1d") for _ in range(5))),
            _release_later(),
        )

        assert tracker.opened == 1
        assert len(fake_store.uploads) == 1
        assert {r.cdn_url for r in results} == {
            f"{CDN}/screenshots/NVDA_us_1d_20250115.png"
        }
        owners = [r for r in results if not r.cache_hit]
        assert len(owners) == 1
        assert all(r.joined for r in results if r.cache_hit)
        assert pool.stats()["total_active_sessions"] == 0

    async def test_published_artifact_skips_browser(
        self, system, tracker, fake_oracle, fake_store
    ) -> None:
        use_case, _ = system()
        fake_oracle.publish(f"{CDN}/screenshots/NVDA_us_1d_20250115.png", size=4096)

        result = await use_case.execute("NVDA", "us", "1d")

        assert result.cache_hit is True
        assert result.upload.size == 4096
        assert tracker.opened == 0
        assert fake_store.uploads == []

    async def test_hour_bucket_reuse_and_rollover(
        self, system, tracker, clock, fixed_now
    ) -> None:
        use_case, _ = system()

        first = await use_case.execute("AAPL", "us", "1h")
        clock.now = fixed_now + timedelta(minutes=1)
        second = await use_case.execute("AAPL", "us", "1h")
        clock.now = fixed_now.replace(hour=11, minute=0)
        third = await use_case.execute("AAPL", "us", "1h")

        assert first.cdn_url == f"{CDN}/screenshots/AAPL_us_1h_20250115_10.png"
        assert second.cache_hit is True
        assert second.cdn_url == first.cdn_url
        assert third.cdn_url == f"{CDN}/screenshots/AAPL_us_1h_20250115_11.png"
        assert third.cache_hit is False
        assert tracker.opened == 2

    async def test_pair_runs_both_timeframes(self, system, tracker) -> None:
        use_case, _ = system()
        results = await use_case.execute_pair("00700", "hk")
        assert results["1d"].cdn_url.endswith("00700_hk_1d_20250115.png")
        assert results["1h"].cdn_url.endswith("00700_hk_1h_20250115_10.png")
        assert tracker.opened == 2


class TestPoolLimits:
    async def test_single_slot_serializes_distinct_keys(
        self, system, tracker, fake_store
    ) -> None:
        use_case, pool = system(pool_size=1, max_sessions=1)

        results = await asyncio.gather(
            use_case.execute("NVDA", "us", "1d"),
            use_case.execute("TSLA", "us", "1d"),
        )

        assert tracker.max_active == 1
        assert len(fake_store.uploads) == 2
        assert all(not r.cache_hit for r in results)
        assert pool.stats()["total_active_sessions"] == 0

    async def test_two_handles_run_in_parallel(self, system, tracker) -> None:
        use_case, _ = system(pool_size=2, max_sessions=1)
        tracker.gate.clear()

        async def _release_later() -> None:
            await asyncio.sleep(0.05)
            tracker.gate.set()

        await asyncio.gather(
            use_case.execute("NVDA", "us", "1d"),
            use_case.execute("TSLA", "us", "1d"),
            _release_later(),
        )
        assert tracker.max_active == 2


class TestFailureRecovery:
    async def test_failed_capture_can_be_retried(
        self, system, tracker, fake_store, tmp_path: Path
    ) -> None:
        use_case, pool = system()
        tracker.errors = [RuntimeError("net::ERR_CONNECTION_RESET")]

        with pytest.raises(CaptureError) as exc:
            await use_case.execute("NVDA", "us", "1d")
        assert exc.value.stage == "navigate"
        assert pool.stats()["total_active_sessions"] == 0

        result = await use_case.execute("NVDA", "us", "1d")

        assert result.cache_hit is False
        assert tracker.opened == 2
        assert len(fake_store.uploads) == 1
        assert list(tmp_path.glob("*.png")) == []
