"""Deduplicated chart screenshot use case."""

from __future__ import annotations

import asyncio
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from zoneinfo import ZoneInfo

import structlog

from chartshot.domain.entities import (
    ArtifactSpec,
    ScreenshotResult,
    TaskStatus,
    UploadResult,
)
from chartshot.domain.exceptions import (
    ArtifactMissingError,
    TaskAlreadyCompletedError,
    TaskAlreadyRunningError,
    TaskNotFoundError,
    UploadError,
    WaitTimeoutError,
)
from chartshot.domain.ports import (
    ArtifactStorePort,
    ChartCapturePort,
    ExistenceOraclePort,
    TaskCoordinatorPort,
)

log = structlog.get_logger(__name__)

# Daily + hourly: what an analysis request needs for one symbol.
PAIR_TIMEFRAMES: tuple[str, ...] = ("1d", "1h")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChartScreenshotUseCase:
    """Produces (or finds) the screenshot for one symbol/market/timeframe.

    Flow:
        1. Derive key, storage key and CDN URL from one clock reading
        2. CDN already serves it -> return immediately (cache hit)
        3. Claim the key; if someone else owns it, wait and re-check
        4. Owner: lease a renderer, capture, upload, mark complete/failed

    The capture runs in its own task awaited through ``asyncio.shield``:
    a requester that disconnects does not abort the work that joined
    requesters are waiting on.
    """

    def __init__(
        self,
        *,
        coordinator: TaskCoordinatorPort,
        capturer: ChartCapturePort,
        store: ArtifactStorePort,
        oracle: ExistenceOraclePort,
        cdn_base_url: str,
        result_path: str = "screenshots",
        wait_timeout: float = 300.0,
        timezone_name: str = "UTC",
        allow_unbucketed: bool = False,
        write_sidecar: bool = False,
        temp_dir: Path | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._coordinator = coordinator
        self._capturer = capturer
        self._store = store
        self._oracle = oracle
        self._cdn_base_url = cdn_base_url
        self._result_path = result_path
        self._wait_timeout = wait_timeout
        self._tz = ZoneInfo(timezone_name)
        self._allow_unbucketed = allow_unbucketed
        self._write_sidecar = write_sidecar
        self._temp_dir = temp_dir
        self._clock = clock
        # Strong refs so shielded productions outlive their requester.
        self._inflight: set[asyncio.Task[UploadResult]] = set()

    def artifact_spec(self, symbol: str, market: str, timeframe: str) -> ArtifactSpec:
        now = self._clock().astimezone(self._tz)
        return ArtifactSpec.build(
            symbol,
            market,
            timeframe,
            now=now,
            cdn_base_url=self._cdn_base_url,
            result_path=self._result_path,
            allow_unbucketed=self._allow_unbucketed,
        )

    async def execute(self, symbol: str, market: str, timeframe: str) -> ScreenshotResult:
        spec = self.artifact_spec(symbol, market, timeframe)
        bound = log.bind(key=spec.key)

        cached = await self._lookup(spec)
        if cached is not None:
            bound.info("screenshot_cache_hit", cdn_url=spec.cdn_url)
            return cached

        try:
            done = await self._coordinator.try_start(spec.key)
        except TaskAlreadyRunningError:
            bound.info("screenshot_join_running")
            return await self._join(spec)
        except TaskAlreadyCompletedError:
            bound.info("screenshot_already_completed")
            cached = await self._lookup(spec, joined=True)
            if cached is None:
                raise ArtifactMissingError(spec.key, spec.cdn_url) from None
            return cached

        task = asyncio.create_task(self._produce(spec, done))
        self._inflight.add(task)
        task.add_done_callback(self._forget)
        upload = await asyncio.shield(task)
        return ScreenshotResult(cdn_url=spec.cdn_url, upload=upload)

    async def execute_pair(self, symbol: str, market: str) -> dict[str, ScreenshotResult]:
        """Daily and hourly screenshots for one symbol, each deduplicated on its own."""
        results = await asyncio.gather(
            *(self.execute(symbol, market, tf) for tf in PAIR_TIMEFRAMES)
        )
        return dict(zip(PAIR_TIMEFRAMES, results))

    async def drain(self) -> None:
        """Wait for productions still running after their requesters left."""
        if self._inflight:
            log.info("screenshot_drain", inflight=len(self._inflight))
            await asyncio.gather(*self._inflight, return_exceptions=True)

    def _forget(self, task: asyncio.Task[UploadResult]) -> None:
        self._inflight.discard(task)
        # Mark the exception retrieved; the requester (if any) already saw it.
        if not task.cancelled():
            task.exception()

    async def _lookup(self, spec: ArtifactSpec, *, joined: bool = False) -> ScreenshotResult | None:
        meta = await self._oracle.probe(spec.cdn_url)
        if meta is None:
            return None
        upload = UploadResult(
            url=spec.cdn_url,
            key=spec.storage_key,
            size=meta.size,
            uploaded_at=meta.last_modified,
        )
        return ScreenshotResult(
            cdn_url=spec.cdn_url, upload=upload, cache_hit=True, joined=joined
        )

    async def _join(self, spec: ArtifactSpec) -> ScreenshotResult:
        try:
            await self._coordinator.wait_for(spec.key, self._wait_timeout)
        except WaitTimeoutError:
            cached = await self._lookup(spec, joined=True)
            if cached is not None:
                return cached
            log.warning("screenshot_wait_timeout", key=spec.key, timeout=self._wait_timeout)
            raise
        except TaskNotFoundError:
            # Reaped between try_start and wait_for: the peer is done either way.
            log.debug("screenshot_join_record_gone", key=spec.key)

        cached = await self._lookup(spec, joined=True)
        if cached is not None:
            return cached

        status = await self._coordinator.status(spec.key)
        if status is TaskStatus.COMPLETED:
            log.warning("screenshot_missing_after_join", key=spec.key)
            raise ArtifactMissingError(spec.key, spec.cdn_url)
        # The peer failed or its record is gone: nothing to wait for any more.
        log.warning(
            "screenshot_peer_left_nothing",
            key=spec.key,
            status=status.value if status is not None else None,
        )
        raise WaitTimeoutError(spec.key, self._wait_timeout)

    def _temp_path(self, spec: ArtifactSpec) -> Path:
        base = self._temp_dir or Path(tempfile.gettempdir())
        return base / f"{spec.key}.{uuid.uuid4().hex[:8]}.png"

    async def _produce(self, spec: ArtifactSpec, done: asyncio.Event) -> UploadResult:
        path = self._temp_path(spec)
        log.info("screenshot_production_started", key=spec.key)
        try:
            await self._capturer.capture(spec, path)
            upload = await self._store.upload(path, spec.storage_key)
            if self._write_sidecar:
                await self._upload_sidecar(spec, upload)
        except BaseException as e:
            log.error(
                "screenshot_production_failed",
                key=spec.key,
                error=str(e) or type(e).__name__,
            )
            await self._coordinator.fail(spec.key, done)
            raise
        finally:
            self._remove_temp(path)

        await self._coordinator.complete(spec.key, done)
        log.info(
            "screenshot_production_complete",
            key=spec.key,
            storage_key=upload.key,
            size=upload.size,
        )
        return upload

    async def _upload_sidecar(self, spec: ArtifactSpec, upload: UploadResult) -> None:
        record = {
            "symbol": spec.symbol,
            "market": spec.market,
            "timeframe": spec.timeframe,
            "key": spec.key,
            "cdn_url": spec.cdn_url,
            "storage_key": upload.key,
            "size": upload.size,
            "uploaded_at": upload.uploaded_at.isoformat() if upload.uploaded_at else None,
        }
        try:
            await self._store.upload_json(record, spec.data_storage_key)
        except UploadError as e:
            log.warning("sidecar_upload_failed", key=spec.key, error=str(e))

    @staticmethod
    def _remove_temp(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("temp_file_cleanup_failed", path=str(path), error=str(e))
