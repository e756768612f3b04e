from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta


class TaskStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskRecord:
    """Execution state for one task key.

    ``done`` is broadcast-once: :meth:`signal` may be called from the
    normal completion path, the failure path and the reaper, but the
    event is set exactly once.
    """

    started_at: datetime
    timeout: timedelta
    status: TaskStatus = TaskStatus.RUNNING
    completed_at: datetime | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_terminal(self) -> bool:
        return self.status is not TaskStatus.RUNNING

    def elapsed(self, now: datetime) -> timedelta:
        return now - self.started_at

    def is_expired(self, now: datetime) -> bool:
        """True when RUNNING past its timeout, or the clock went backwards."""
        elapsed = self.elapsed(now)
        return elapsed > self.timeout or elapsed < timedelta(0)

    def finish(self, status: TaskStatus, now: datetime) -> None:
        self.status = status
        self.completed_at = now
        self.signal()

    def signal(self) -> None:
        if not self.done.is_set():
            self.done.set()
