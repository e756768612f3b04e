"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "chartshot",
    "environment": "dev",
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "browser": {
        "pool_size": 1,
        "max_sessions": 20,
        "headless": True,
        "renderer_processes": 16,
        "webgl_contexts": 8,
        "memory_limit_mb": 2048,
        "acquire_timeout_seconds": 120.0,
        "poll_interval_seconds": 0.1,
        "replace_backoff_seconds": 5.0,
    },
    "site": {
        "base_url": "https://mafit.fun",
        "refresh_timeout_seconds": 30.0,
        "refresh_poll_interval_seconds": 0.5,
        "settle_delay_seconds": 1.0,
    },
    "cdn": {
        "result_path": "screenshots",
        "existence_timeout_seconds": 10.0,
    },
    "s3": {
        "region": "us-east-1",
        "upload_timeout_seconds": 120.0,
    },
    "tasks": {
        "task_timeout_seconds": 300.0,
        "wait_timeout_seconds": 300.0,
        "retention_seconds": 1800.0,
        "sweep_interval_seconds": 60.0,
        "timezone": "UTC",
        "allow_unbucketed_timeframes": False,
        "write_metadata_sidecar": False,
    },
}
