"""Shared test fixtures for the chartshot test suite."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from chartshot.domain.entities import ArtifactMetadata, ArtifactSpec, UploadResult
from chartshot.domain.exceptions import HandleCreationError, UploadError

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"

# ---------------------------------------------------------------------------
# Renderer fakes
# ---------------------------------------------------------------------------


class FakeControl:
    """Refresh control whose busy flag follows a scripted sequence."""

    def __init__(self, busy: Sequence[bool] = (), *, unreadable: bool = False) -> None:
        self._busy = list(busy)
        self._unreadable = unreadable
        self.clicks = 0
        self.busy_checks = 0

    async def text(self) -> str:
        return "刷新"

    async def click(self) -> None:
        self.clicks += 1

    async def is_busy(self) -> bool:
        self.busy_checks += 1
        if self._unreadable:
            return False
        if self._busy:
            return self._busy.pop(0)
        return False


@dataclass
class FakeSession:
    landing_url: str | None = None
    control: FakeControl | None = None
    navigate_error: Exception | None = None
    load_error: Exception | None = None
    screenshot_error: Exception | None = None
    navigated: list[str] = field(default_factory=list)
    closed: bool = False

    async def navigate(self, url: str) -> None:
        if self.navigate_error is not None:
            raise self.navigate_error
        self.navigated.append(url)

    async def wait_loaded(self) -> None:
        if self.load_error is not None:
            raise self.load_error

    async def current_url(self) -> str:
        if self.landing_url is not None:
            return self.landing_url
        return self.navigated[-1] if self.navigated else "about:blank"

    async def find_control(
        self, selectors: Sequence[str], labels: Sequence[str]
    ) -> FakeControl | None:
        return self.control

    async def screenshot(self, path: Path) -> None:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(PNG_BYTES)

    async def close(self) -> None:
        self.closed = True


class FakeHandle:
    """Renderer handle with the real counter semantics and no browser."""

    def __init__(
        self,
        name: str = "fake-0",
        *,
        max_sessions: int = 1,
        healthy: bool = True,
        session_factory: Callable[[], FakeSession] = FakeSession,
    ) -> None:
        self.name = name
        self.max_sessions = max_sessions
        self.healthy = healthy
        self.session_factory = session_factory
        self.sessions: list[FakeSession] = []
        self.close_calls = 0
        self._lock = threading.Lock()
        self._active = 0
        self._closed = False

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    def is_healthy(self) -> bool:
        return self.healthy and not self._closed

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

    async def open_session(self) -> FakeSession:
        session = self.session_factory()
        self.sessions.append(session)
        return session

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakeHandleFactory:
    def __init__(self, *, fail_at: int | None = None, max_sessions: int = 1) -> None:
        self.fail_at = fail_at
        self.max_sessions = max_sessions
        self.created: list[FakeHandle] = []
        self.aclose_calls = 0

    async def create_handle(self, index: int) -> FakeHandle:
        if self.fail_at is not None and index == self.fail_at:
            raise HandleCreationError(f"boom at {index}")
        handle = FakeHandle(f"fake-{index}", max_sessions=self.max_sessions)
        self.created.append(handle)
        return handle

    async def aclose(self) -> None:
        self.aclose_calls += 1


# ---------------------------------------------------------------------------
# Storage fakes
# ---------------------------------------------------------------------------


class FakeOracle:
    """CDN stand-in: a set of URLs that currently "exist"."""

    def __init__(self, existing: Sequence[str] = ()) -> None:
        self.existing: dict[str, ArtifactMetadata] = {
            url: ArtifactMetadata(url=url) for url in existing
        }
        self.probes: list[str] = []

    def publish(self, url: str, *, size: int = 0, last_modified: datetime | None = None) -> None:
        self.existing[url] = ArtifactMetadata(url=url, size=size, last_modified=last_modified)

    async def exists(self, url: str) -> bool:
        return await self.probe(url) is not None

    async def probe(self, url: str) -> ArtifactMetadata | None:
        self.probes.append(url)
        return self.existing.get(url)


class FakeStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[tuple[Path, str]] = []
        self.json_uploads: list[tuple[Any, str]] = []
        self.seen_files: list[bytes] = []

    async def upload(self, local_path: Path, key: str) -> UploadResult:
        if self.fail:
            raise UploadError(key, "store unavailable")
        self.seen_files.append(local_path.read_bytes())
        self.uploads.append((local_path, key))
        return UploadResult(
            url=f"https://bucket.s3.us-east-1.amazonaws.com/{key}",
            key=key,
            size=len(self.seen_files[-1]),
            uploaded_at=datetime(2025, 1, 15, 10, 15, tzinfo=timezone.utc),
        )

    async def upload_json(self, data: Any, key: str) -> UploadResult:
        self.json_uploads.append((data, key))
        return UploadResult(url=f"https://bucket/{key}", key=key, size=1, uploaded_at=None)


class FakeCapturer:
    """Writes a PNG, optionally blocking on a gate, optionally failing.

    ``oracle`` is told about the CDN URL after a successful capture,
    the way the real CDN starts serving an object once it is uploaded.
    """

    def __init__(
        self,
        *,
        oracle: FakeOracle | None = None,
        gate: asyncio.Event | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.oracle = oracle
        self.gate = gate
        self.error = error
        self.calls: list[str] = []
        self.started = asyncio.Event()

    async def capture(self, spec: ArtifactSpec, output_path: Path) -> Path:
        self.calls.append(spec.key)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(PNG_BYTES)
        if self.oracle is not None:
            self.oracle.publish(spec.cdn_url, size=len(PNG_BYTES))
        return output_path


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def failing_store() -> FakeStore:
    return FakeStore(fail=True)


@pytest.fixture()
def make_handle() -> Callable[..., FakeHandle]:
    return FakeHandle


@pytest.fixture()
def make_factory() -> Callable[..., FakeHandleFactory]:
    return FakeHandleFactory


@pytest.fixture()
def make_session() -> Callable[..., FakeSession]:
    return FakeSession


@pytest.fixture()
def make_control() -> Callable[..., FakeControl]:
    return FakeControl


@pytest.fixture()
def make_capturer() -> Callable[..., FakeCapturer]:
    return FakeCapturer


@pytest.fixture()
def make_clock() -> Callable[[datetime], FakeClock]:
    return FakeClock


@pytest.fixture()
def fixed_now() -> datetime:
    """2025-01-15 10:15:00 UTC (a Wednesday, ISO week 3)."""
    return datetime(2025, 1, 15, 10, 15, 0, tzinfo=timezone.utc)
