from __future__ import annotations

from .load import load_config
from .schema import (
    AppConfig,
    BrowserConfig,
    CdnConfig,
    ChartSiteConfig,
    EnvOverrides,
    S3Config,
    TaskConfig,
)

__all__ = [
    "AppConfig",
    "BrowserConfig",
    "CdnConfig",
    "ChartSiteConfig",
    "EnvOverrides",
    "S3Config",
    "TaskConfig",
    "load_config",
]
