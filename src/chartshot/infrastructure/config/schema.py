"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

_PLACEHOLDER_VALUES = frozenset(
    {"", "your_jwt_access_token_here", "your_sidebar_sheet_here"}
)


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class BrowserConfig(BaseModel):
    """Renderer pool sizing and Chromium tuning."""

    pool_size: int = Field(default=1, description="Number of Chromium processes.")
    max_sessions: int = Field(
        default=20,
        description="Max concurrent pages per Chromium process.",
    )
    headless: bool = Field(default=True, description="Run Chromium headless.")
    executable_path: Optional[Path] = Field(
        default=None,
        description="Chromium binary. Falls back to CHROME_PATH / CHROME_BIN.",
    )
    renderer_processes: int = Field(
        default=16, description="--renderer-process-limit"
    )
    webgl_contexts: int = Field(
        default=8, description="--max-active-webgl-contexts"
    )
    memory_limit_mb: int = Field(
        default=2048, description="V8 old-space ceiling in MB."
    )
    viewport_width: int = Field(default=1920)
    viewport_height: int = Field(default=1080)
    locale: str = Field(default="zh-CN")
    accept_language: str = Field(default="zh-CN,zh;q=0.9,en;q=0.8")
    user_agent: Optional[str] = Field(
        default=None, description="Override the browser User-Agent."
    )
    navigation_timeout_ms: int = Field(
        default=60_000, description="Per-navigation timeout."
    )
    acquire_timeout_seconds: float = Field(
        default=120.0,
        description="How long a capture waits for a free handle.",
    )
    poll_interval_seconds: float = Field(
        default=0.1,
        description="Rescan interval while every handle is saturated.",
    )
    replace_backoff_seconds: float = Field(
        default=5.0,
        description="Minimum gap between attempts to relaunch a crashed handle.",
    )

    @field_validator("executable_path", mode="before")
    @classmethod
    def _validate_executable(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return _normalize_path(v)

    @field_validator(
        "pool_size",
        "max_sessions",
        "renderer_processes",
        "webgl_contexts",
        "memory_limit_mb",
        "navigation_timeout_ms",
    )
    @classmethod
    def _validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator(
        "acquire_timeout_seconds", "poll_interval_seconds", "replace_backoff_seconds"
    )
    @classmethod
    def _validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class ChartSiteConfig(BaseModel):
    """The third-party chart web app being captured."""

    base_url: str = Field(
        default="https://mafit.fun",
        description="Chart site origin (also used for the session bootstrap).",
    )
    jwt_access_token: str = Field(
        default="",
        description="Seeded into localStorage['jwt_access_token'].",
    )
    sidebar_sheet: str = Field(
        default="",
        description="Seeded into localStorage['sidebarSheet'].",
    )
    market_suffixes: dict[str, str] = Field(
        default={"hk": ".HK", "cn": ".SS"},
        description="Symbol suffix appended per market in chart URLs.",
    )
    login_marker: str = Field(
        default="/login",
        description="URL fragment that means the session was bounced to login.",
    )
    refresh_selectors: list[str] = Field(
        default=[
            "#\\:rk\\:",
            "button:has-text('刷新')",
            "button:has-text('Refresh')",
            "button[class*='refresh']",
            "button[class*='Refresh']",
        ],
        description="Candidate selectors for the chart refresh control.",
    )
    refresh_labels: list[str] = Field(
        default=["刷新", "Refresh"],
        description="Text a candidate must contain to count as the refresh control.",
    )
    refresh_start_delay_seconds: float = Field(default=1.0)
    refresh_poll_interval_seconds: float = Field(default=0.5)
    refresh_timeout_seconds: float = Field(default=30.0)
    settle_delay_seconds: float = Field(default=1.0)

    @property
    def has_session_state(self) -> bool:
        return (
            self.jwt_access_token not in _PLACEHOLDER_VALUES
            and self.sidebar_sheet not in _PLACEHOLDER_VALUES
        )

    def chart_url(self, symbol: str, market: str, timeframe: str) -> str:
        suffix = self.market_suffixes.get(market, "")
        if suffix and not symbol.endswith(suffix):
            symbol = f"{symbol}{suffix}"
        base = self.base_url.rstrip("/")
        return f"{base}/apps/quote/folder/{market}/{symbol}/{timeframe}"


class CdnConfig(BaseModel):
    base_url: str = Field(
        default="https://cdn.example.com",
        description="Public CDN origin in front of the bucket.",
    )
    result_path: str = Field(
        default="screenshots",
        description="Path under the CDN origin where screenshots live.",
    )
    existence_timeout_seconds: float = Field(
        default=10.0, description="HEAD check timeout."
    )


class S3Config(BaseModel):
    region: str = Field(default="us-east-1")
    bucket: str = Field(default="")
    image_prefix: str = Field(
        default="",
        description="Key prefix prepended to every uploaded object.",
    )
    access_key_id: Optional[str] = Field(default=None)
    secret_access_key: Optional[str] = Field(default=None)
    endpoint_url: Optional[str] = Field(
        default=None, description="Custom endpoint (MinIO, R2, ...)."
    )
    upload_timeout_seconds: float = Field(default=120.0)


class TaskConfig(BaseModel):
    """Dedup coordinator timings."""

    task_timeout_seconds: float = Field(
        default=300.0,
        description="RUNNING records older than this are treated as abandoned.",
    )
    wait_timeout_seconds: float = Field(
        default=300.0,
        description="How long a joiner waits on an in-flight execution.",
    )
    retention_seconds: float = Field(
        default=1800.0,
        description="How long terminal records stay visible to late joiners.",
    )
    sweep_interval_seconds: float = Field(
        default=60.0, description="Reaper interval."
    )
    timezone: str = Field(
        default="UTC",
        description="IANA zone used for day/hour/week buckets.",
    )
    allow_unbucketed_timeframes: bool = Field(
        default=False,
        description=(
            "Accept timeframes other than 1d/1h/1wk. Such requests get a "
            "per-second bucket and are never deduplicated."
        ),
    )
    write_metadata_sidecar: bool = Field(
        default=False,
        description="Also upload a data/{key}.json record next to each screenshot.",
    )
    temp_dir: Optional[Path] = Field(
        default=None,
        description="Where screenshots are written before upload (default: system temp).",
    )

    @field_validator("temp_dir", mode="before")
    @classmethod
    def _validate_temp_dir(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return _normalize_path(v)

    @field_validator(
        "task_timeout_seconds",
        "wait_timeout_seconds",
        "retention_seconds",
        "sweep_interval_seconds",
    )
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (server/browser/site/cdn/s3/tasks/logging).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    # General
    app_name: str = Field(default="chartshot", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # Server (YAML section: server.*)
    server_host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("server_host", AliasPath("server", "host")),
    )
    server_port: int = Field(
        default=8080,
        validation_alias=AliasChoices("server_port", AliasPath("server", "port")),
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    site: ChartSiteConfig = Field(default_factory=ChartSiteConfig)
    cdn: CdnConfig = Field(default_factory=CdnConfig)
    s3: S3Config = Field(default_factory=S3Config)
    tasks: TaskConfig = Field(default_factory=TaskConfig)

    @field_validator("server_port")
    @classmethod
    def _validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("server_port must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        Secrets are masked.
        """
        s3 = self.s3.model_dump(mode="json")
        if s3.get("secret_access_key"):
            s3["secret_access_key"] = "***"
        site = self.site.model_dump(mode="json")
        if site.get("jwt_access_token"):
            site["jwt_access_token"] = "***"
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "server": {"host": self.server_host, "port": self.server_port},
            "logging": {"level": self.log_level, "format": self.log_format},
            "browser": self.browser.model_dump(mode="json"),
            "site": site,
            "cdn": self.cdn.model_dump(mode="json"),
            "s3": s3,
            "tasks": self.tasks.model_dump(mode="json"),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Intended usage:
    - load.py creates EnvOverrides() to read CHARTSHOT_* variables,
      converts to dict of set values, merges into YAML/defaults,
      then validates AppConfig.

    Supported env var examples (flat, explicit):
    - CHARTSHOT_LOG_LEVEL
    - CHARTSHOT_BROWSER_POOL_SIZE
    - CHARTSHOT_SITE_JWT_ACCESS_TOKEN
    - CHARTSHOT_S3_BUCKET or AWS_S3_BUCKET
    - CHARTSHOT_CDN_BASE_URL or CDN_BASE_URL
    - CHROME_PATH / CHROME_BIN
    """

    model_config = SettingsConfigDict(
        env_prefix="CHARTSHOT_",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    server_host: Optional[str] = None
    server_port: Optional[int] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    browser_pool_size: Optional[int] = None
    browser_max_sessions: Optional[int] = None
    browser_headless: Optional[bool] = None
    browser_executable_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHARTSHOT_BROWSER_EXECUTABLE_PATH", "CHROME_PATH", "CHROME_BIN"
        ),
    )

    site_base_url: Optional[str] = None
    site_jwt_access_token: Optional[str] = None
    site_sidebar_sheet: Optional[str] = None

    cdn_base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CHARTSHOT_CDN_BASE_URL", "CDN_BASE_URL"),
    )

    s3_region: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CHARTSHOT_S3_REGION", "AWS_REGION"),
    )
    s3_bucket: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CHARTSHOT_S3_BUCKET", "AWS_S3_BUCKET"),
    )
    s3_access_key_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHARTSHOT_S3_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"
        ),
    )
    s3_secret_access_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "CHARTSHOT_S3_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY"
        ),
    )

    tasks_timezone: Optional[str] = None

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
