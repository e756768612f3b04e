"""Artifact identity: time buckets, task keys, storage names.

The naming scheme must be bit-exact across processes, otherwise two
instances sharing one CDN never see each other's screenshots:

    {symbol}_{market}_1d_{YYYYMMDD}.png
    {symbol}_{market}_1h_{YYYYMMDD}_{HH}.png
    {symbol}_{market}_1wk_{ISOYear}_{ISOWeek:02}.png
    {symbol}_{market}_{timeframe}_{YYYYMMDD_HHMMSS}.png   (unbucketed)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chartshot.domain.exceptions import InvalidSymbolError, UnsupportedTimeframeError

BUCKETED_TIMEFRAMES: frozenset[str] = frozenset({"1d", "1h", "1wk"})

SCREENSHOT_PREFIX = "screenshots"
DATA_PREFIX = "data"


def bucket_suffix(timeframe: str, now: datetime, *, allow_unbucketed: bool = True) -> str:
    """Quantize *now* into the bucket suffix for *timeframe*."""
    if timeframe == "1d":
        return f"1d_{now:%Y%m%d}"
    if timeframe == "1h":
        return f"1h_{now:%Y%m%d}_{now.hour:02d}"
    if timeframe == "1wk":
        iso_year, iso_week, _ = now.isocalendar()
        return f"1wk_{iso_year}_{iso_week:02d}"
    if not allow_unbucketed:
        raise UnsupportedTimeframeError(timeframe)
    # Second granularity: every request is its own bucket.
    return f"{timeframe}_{now:%Y%m%d_%H%M%S}"


def task_key(
    symbol: str,
    market: str,
    timeframe: str,
    now: datetime,
    *,
    allow_unbucketed: bool = True,
) -> str:
    """Deterministic dedup fingerprint for one logical artifact."""
    suffix = bucket_suffix(timeframe, now, allow_unbucketed=allow_unbucketed)
    return f"{symbol}_{market}_{suffix}"


def parse_symbol_market(value: str) -> tuple[str, str]:
    """Split ``"NVDA.us"`` into ``("NVDA", "us")`` on the last dot."""
    symbol, dot, market = value.rpartition(".")
    if not dot or not symbol or not market:
        raise InvalidSymbolError(f"invalid symbol.market format: {value!r}")
    return symbol, market


@dataclass(frozen=True)
class ArtifactSpec:
    """Every name derived from one (symbol, market, timeframe, now) tuple.

    Computed from a single clock reading so the task key, storage key
    and CDN URL can never straddle a bucket boundary.
    """

    symbol: str
    market: str
    timeframe: str
    key: str
    cdn_url: str

    @classmethod
    def build(
        cls,
        symbol: str,
        market: str,
        timeframe: str,
        *,
        now: datetime,
        cdn_base_url: str,
        result_path: str,
        allow_unbucketed: bool = False,
    ) -> ArtifactSpec:
        key = task_key(
            symbol, market, timeframe, now, allow_unbucketed=allow_unbucketed
        )
        base = cdn_base_url.rstrip("/")
        path = result_path.strip("/")
        cdn_url = f"{base}/{path}/{key}.png" if path else f"{base}/{key}.png"
        return cls(
            symbol=symbol,
            market=market,
            timeframe=timeframe,
            key=key,
            cdn_url=cdn_url,
        )

    @property
    def filename(self) -> str:
        return f"{self.key}.png"

    @property
    def storage_key(self) -> str:
        return f"{SCREENSHOT_PREFIX}/{self.filename}"

    @property
    def data_storage_key(self) -> str:
        return f"{DATA_PREFIX}/{self.key}.json"


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one object-store upload."""

    url: str
    key: str
    size: int
    uploaded_at: datetime | None


@dataclass(frozen=True)
class ArtifactMetadata:
    """What a HEAD request tells us about an already stored artifact."""

    url: str
    size: int = 0
    last_modified: datetime | None = None


@dataclass(frozen=True)
class ScreenshotResult:
    """Use case response: where the artifact is served plus provenance.

    ``joined`` is set when another request produced the artifact while
    this one waited.
    """

    cdn_url: str
    upload: UploadResult
    cache_hit: bool = False
    joined: bool = False

    @property
    def url(self) -> str:
        return self.cdn_url
