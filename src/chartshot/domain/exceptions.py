"""Chartshot error taxonomy."""

from __future__ import annotations


class ChartshotError(Exception):
    """Base class for all chartshot errors."""


# ---------------------------------------------------------------------------
# Renderer pool
# ---------------------------------------------------------------------------


class PoolError(ChartshotError):
    """Base class for renderer pool errors."""


class PoolClosedError(PoolError):
    """Raised when a handle is requested from a closed pool."""

    def __init__(self) -> None:
        super().__init__("renderer pool is closed")


class PoolExhaustedError(PoolError):
    """Raised when no handle frees up before the acquire timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"no renderer handle available within {timeout:.1f}s")
        self.timeout = timeout


class HandleCreationError(PoolError):
    """Raised when a renderer handle cannot be launched or bootstrapped."""


# ---------------------------------------------------------------------------
# Task coordination
# ---------------------------------------------------------------------------


class TaskError(ChartshotError):
    """Base class for coordinator errors. Carries the task key."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class TaskAlreadyRunningError(TaskError):
    def __init__(self, key: str) -> None:
        super().__init__(key, f"task {key} is already running")


class TaskAlreadyCompletedError(TaskError):
    def __init__(self, key: str) -> None:
        super().__init__(key, f"task {key} is already completed")


class TaskNotFoundError(TaskError):
    def __init__(self, key: str) -> None:
        super().__init__(key, f"task {key} not found")


class WaitTimeoutError(TaskError):
    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(key, f"wait for task {key} timed out after {timeout:.1f}s")
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Artifact production
# ---------------------------------------------------------------------------


class CaptureError(ChartshotError):
    """Raised when a hard capture step (navigate, screenshot) fails."""

    def __init__(self, stage: str, message: str, *, key: str | None = None) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.key = key


class UploadError(ChartshotError):
    """Raised when the object store rejects an upload."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"upload of {key} failed: {message}")
        self.key = key


class ArtifactMissingError(ChartshotError):
    """Raised when a finished task left no artifact behind on the CDN."""

    def __init__(self, key: str, url: str) -> None:
        super().__init__(f"expected artifact for {key} is missing at {url}")
        self.key = key
        self.url = url


class UnsupportedTimeframeError(ChartshotError):
    """Raised for timeframes without a dedup bucket."""

    def __init__(self, timeframe: str) -> None:
        super().__init__(f"unsupported timeframe: {timeframe!r}")
        self.timeframe = timeframe


class InvalidSymbolError(ChartshotError):
    """Raised when symbol/market input cannot be parsed."""
