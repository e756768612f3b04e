from .artifact import (
    BUCKETED_TIMEFRAMES,
    ArtifactMetadata,
    ArtifactSpec,
    ScreenshotResult,
    UploadResult,
    bucket_suffix,
    parse_symbol_market,
    task_key,
)
from .task import TaskRecord, TaskStatus

__all__ = [
    "BUCKETED_TIMEFRAMES",
    "ArtifactMetadata",
    "ArtifactSpec",
    "ScreenshotResult",
    "TaskRecord",
    "TaskStatus",
    "UploadResult",
    "bucket_suffix",
    "parse_symbol_market",
    "task_key",
]
