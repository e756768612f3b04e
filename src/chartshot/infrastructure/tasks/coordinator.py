"""In-memory, per-key task deduplication.

At most one RUNNING record exists per key. The first caller of
:meth:`TaskCoordinator.try_start` owns the execution; everyone else
joins through :meth:`TaskCoordinator.wait_for` and observes the outcome
once the owner calls :meth:`complete` or :meth:`fail`.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from chartshot.domain.entities.task import TaskRecord, TaskStatus
from chartshot.domain.exceptions import (
    TaskAlreadyCompletedError,
    TaskAlreadyRunningError,
    TaskNotFoundError,
    WaitTimeoutError,
)

log = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskCoordinator:
    """Serializes the key -> record map behind one ``asyncio.Lock``.

    Waiters block on the record's own event, never on the lock.
    Call :meth:`run_forever` as a background task to reap stale records.
    """

    def __init__(
        self,
        *,
        task_timeout: float = 300.0,
        retention: float = 1800.0,
        sweep_interval: float = 60.0,
        clock: Clock = _utcnow,
    ) -> None:
        self._task_timeout = timedelta(seconds=task_timeout)
        self._retention = timedelta(seconds=retention)
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: dict[str, TaskRecord] = {}

    async def try_start(self, key: str) -> asyncio.Event:
        """Claim *key* and return the signal the owner must later fire."""
        async with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is not None:
                if record.status is TaskStatus.COMPLETED:
                    raise TaskAlreadyCompletedError(key)
                if record.status is TaskStatus.RUNNING:
                    if not record.is_expired(now):
                        raise TaskAlreadyRunningError(key)
                    log.warning(
                        "task_reclaimed_expired",
                        key=key,
                        elapsed=record.elapsed(now).total_seconds(),
                    )
                    # Release anyone still waiting on the abandoned run.
                    record.signal()

            fresh = TaskRecord(started_at=now, timeout=self._task_timeout)
            self._records[key] = fresh
            log.debug("task_started", key=key, restarted=record is not None)
            return fresh.done

    async def wait_for(self, key: str, timeout: float) -> None:
        async with self._lock:
            record = self._records.get(key)
        if record is None:
            raise TaskNotFoundError(key)

        try:
            await asyncio.wait_for(record.done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise WaitTimeoutError(key, timeout) from None

    async def complete(self, key: str, done: asyncio.Event | None = None) -> None:
        await self._finish(key, TaskStatus.COMPLETED, done)

    async def fail(self, key: str, done: asyncio.Event | None = None) -> None:
        await self._finish(key, TaskStatus.FAILED, done)

    async def _finish(
        self, key: str, status: TaskStatus, done: asyncio.Event | None
    ) -> None:
        async with self._lock:
            record = self._records.get(key)
            if record is None:
                log.debug("task_finish_unknown_key", key=key, status=status.value)
                return
            if done is not None and record.done is not done:
                # A reclaimed owner must not finish its successor's run.
                log.warning("task_finish_stale_owner", key=key, status=status.value)
                return
            if record.is_terminal:
                return
            record.finish(status, self._clock())
            log.debug(
                "task_finished",
                key=key,
                status=status.value,
                duration=record.elapsed(record.completed_at).total_seconds(),
            )

    async def sweep(self) -> int:
        """Drop expired RUNNING records and terminal records past retention."""
        removed = 0
        async with self._lock:
            now = self._clock()
            for key in list(self._records):
                record = self._records[key]
                if record.status is TaskStatus.RUNNING:
                    if record.is_expired(now):
                        record.signal()
                        del self._records[key]
                        removed += 1
                        log.warning("task_expired", key=key)
                    continue
                finished = record.completed_at or record.started_at
                if now - finished > self._retention:
                    del self._records[key]
                    removed += 1
        if removed:
            log.info("task_sweep", removed=removed, remaining=len(self._records))
        return removed

    async def run_forever(self) -> None:
        """Reaper loop. Cancel the task to stop it."""
        log.info("task_reaper_started", interval=self._sweep_interval)
        try:
            while True:
                await asyncio.sleep(self._sweep_interval)
                try:
                    await self.sweep()
                except Exception:
                    log.error("task_reaper_error", exc_info=True)
        except asyncio.CancelledError:
            log.info("task_reaper_cancelled")
            raise

    async def status(self, key: str) -> TaskStatus | None:
        async with self._lock:
            record = self._records.get(key)
            return record.status if record is not None else None

    async def running_keys(self) -> list[str]:
        async with self._lock:
            return sorted(
                key
                for key, record in self._records.items()
                if record.status is TaskStatus.RUNNING
            )

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            counts = {status.value: 0 for status in TaskStatus}
            for record in self._records.values():
                counts[record.status.value] += 1
            running = sorted(
                key
                for key, record in self._records.items()
                if record.status is TaskStatus.RUNNING
            )
        return {"total": sum(counts.values()), **counts, "running_keys": running}
