"""Screenshot endpoints."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chartshot.domain.entities import ScreenshotResult, parse_symbol_market
from chartshot.domain.exceptions import (
    ArtifactMissingError,
    CaptureError,
    ChartshotError,
    HandleCreationError,
    InvalidSymbolError,
    PoolClosedError,
    PoolExhaustedError,
    TaskAlreadyCompletedError,
    UnsupportedTimeframeError,
    UploadError,
    WaitTimeoutError,
)
from chartshot.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["screenshot"])

# Symbols and markets end up in object keys and URLs.
_COMPONENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,31}$")

_STATUS_BY_ERROR: tuple[tuple[type[ChartshotError], int], ...] = (
    (InvalidSymbolError, 400),
    (UnsupportedTimeframeError, 400),
    (TaskAlreadyCompletedError, 409),
    (ArtifactMissingError, 409),
    (WaitTimeoutError, 504),
    (PoolExhaustedError, 504),
    (PoolClosedError, 503),
    (HandleCreationError, 503),
    (CaptureError, 502),
    (UploadError, 502),
)


class ScreenshotRequest(BaseModel):
    symbol: str = Field(..., description="Ticker, e.g. NVDA or 00700.")
    market: str = Field(..., description="Market code, e.g. us, hk, cn.")
    timeframe: str = Field(default="1d", description="1d, 1h or 1wk.")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate_component(name: str, value: str) -> str:
    if not _COMPONENT_RE.match(value):
        raise InvalidSymbolError(f"invalid {name}: {value!r}")
    return value


def status_for(exc: ChartshotError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _failure(exc: ChartshotError, **context: Any) -> JSONResponse:
    status = status_for(exc)
    log_method = log.warning if status < 500 else log.error
    log_method(
        "screenshot_request_failed",
        status=status,
        error=str(exc),
        error_type=type(exc).__name__,
        **context,
    )
    return JSONResponse(
        status_code=status,
        content={
            "success": False,
            "message": str(exc),
            "error": type(exc).__name__,
            "timestamp": _now_iso(),
        },
    )


def _result_payload(result: ScreenshotResult) -> dict[str, Any]:
    upload = result.upload
    return {
        "cdn_url": result.cdn_url,
        "storage_key": upload.key,
        "storage_url": upload.url,
        "size": upload.size,
        "uploaded_at": upload.uploaded_at.isoformat() if upload.uploaded_at else None,
        "cache_hit": result.cache_hit,
        "joined": result.joined,
    }


async def _screenshot(
    request: Request, symbol: str, market: str, timeframe: str
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    log.info("screenshot_request", symbol=symbol, market=market, timeframe=timeframe)
    try:
        _validate_component("symbol", symbol)
        _validate_component("market", market)
        result = await state.screenshot_uc.execute(symbol, market, timeframe)
    except ChartshotError as e:
        return _failure(e, symbol=symbol, market=market, timeframe=timeframe)

    message = "screenshot served from cache" if result.cache_hit else "screenshot captured"
    return JSONResponse(
        content={
            "success": True,
            "message": message,
            **_result_payload(result),
            "timestamp": _now_iso(),
        }
    )


@router.get("/screenshot/{symbol}/{market}/{timeframe}")
async def get_screenshot(
    symbol: str, market: str, timeframe: str, request: Request
) -> JSONResponse:
    """Return the CDN URL of the chart screenshot, capturing it if needed."""
    return await _screenshot(request, symbol, market, timeframe)


@router.post("/screenshot")
async def post_screenshot(body: ScreenshotRequest, request: Request) -> JSONResponse:
    return await _screenshot(request, body.symbol, body.market, body.timeframe)


@router.get("/analysis/{symbol_market}")
async def analysis(symbol_market: str, request: Request) -> JSONResponse:
    """Daily and hourly screenshots for ``SYMBOL.market`` (split on the last dot)."""
    state = cast(AppState, request.app.state)
    try:
        symbol, market = parse_symbol_market(symbol_market)
        _validate_component("symbol", symbol)
        _validate_component("market", market)
        results = await state.screenshot_uc.execute_pair(symbol, market)
    except ChartshotError as e:
        return _failure(e, symbol_market=symbol_market)

    return JSONResponse(
        content={
            "success": True,
            "message": "analysis screenshots ready",
            "symbol": symbol,
            "market": market,
            "daily": _result_payload(results["1d"]),
            "hourly": _result_payload(results["1h"]),
            "timestamp": _now_iso(),
        }
    )
