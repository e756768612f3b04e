"""Tests for the screenshot and analysis endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chartshot.domain.entities import ScreenshotResult, UploadResult
from chartshot.domain.exceptions import (
    ArtifactMissingError,
    CaptureError,
    PoolClosedError,
    PoolExhaustedError,
    UnsupportedTimeframeError,
    UploadError,
    WaitTimeoutError,
)
from chartshot.interfaces.api.screenshot.router import router, status_for
from chartshot.interfaces.app_state import AppState

CDN = "https://cdn.example.com/screenshots"


def _result(name: str, *, cache_hit: bool = False, joined: bool = False) -> ScreenshotResult:
    return ScreenshotResult(
        cdn_url=f"{CDN}/{name}",
        upload=UploadResult(
            url=f"https://charts.s3.us-east-1.amazonaws.com/screenshots/{name}",
            key=f"screenshots/{name}",
            size=2048,
            uploaded_at=datetime(2025, 1, 15, 10, 15, tzinfo=timezone.utc),
        ),
        cache_hit=cache_hit,
        joined=joined,
    )


@pytest.fixture()
def use_case() -> MagicMock:
    uc = MagicMock()
    uc.execute = AsyncMock(return_value=_result("NVDA_us_1d_20250115.png"))
    uc.execute_pair = AsyncMock(
        return_value={
            "1d": _result("NVDA_us_1d_20250115.png", cache_hit=True),
            "1h": _result("NVDA_us_1h_20250115_10.png"),
        }
    )
    return uc


@pytest.fixture()
def client(use_case: MagicMock) -> TestClient:
    app = FastAPI()
    app.state = AppState()
    app.state.screenshot_uc = use_case
    app.include_router(router, prefix="/api/v1")
    return TestClient(app)


class TestGetScreenshot:
    def test_captured(self, client: TestClient, use_case: MagicMock) -> None:
        resp = client.get("/api/v1/screenshot/NVDA/us/1d")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "screenshot captured"
        assert data["cdn_url"] == f"{CDN}/NVDA_us_1d_20250115.png"
        assert data["storage_key"] == "screenshots/NVDA_us_1d_20250115.png"
        assert data["size"] == 2048
        assert data["uploaded_at"] == "2025-01-15T10:15:00+00:00"
        assert data["cache_hit"] is False
        assert "timestamp" in data
        use_case.execute.assert_awaited_once_with("NVDA", "us", "1d")

    def test_cache_hit_message(self, client: TestClient, use_case: MagicMock) -> None:
        use_case.execute.return_value = _result("x.png", cache_hit=True)
        data = client.get("/api/v1/screenshot/NVDA/us/1d").json()
        assert data["message"] == "screenshot served from cache"
        assert data["cache_hit"] is True

    def test_invalid_symbol_rejected_before_use_case(
        self, client: TestClient, use_case: MagicMock
    ) -> None:
        resp = client.get("/api/v1/screenshot/..evil/us/1d")
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidSymbolError"
        use_case.execute.assert_not_awaited()

    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (UnsupportedTimeframeError("5m"), 400),
            (ArtifactMissingError("k", f"{CDN}/k.png"), 409),
            (WaitTimeoutError("k", 300), 504),
            (PoolExhaustedError(120), 504),
            (PoolClosedError(), 503),
            (CaptureError("navigate", "net::ERR_TIMED_OUT", key="k"), 502),
            (UploadError("k", "denied"), 502),
        ],
    )
    def test_error_mapping(
        self, client: TestClient, use_case: MagicMock, error: Exception, status: int
    ) -> None:
        use_case.execute.side_effect = error
        resp = client.get("/api/v1/screenshot/NVDA/us/5m")
        assert resp.status_code == status
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == type(error).__name__
        assert body["message"]


class TestPostScreenshot:
    def test_defaults_to_daily(self, client: TestClient, use_case: MagicMock) -> None:
        resp = client.post("/api/v1/screenshot", json={"symbol": "00700", "market": "hk"})
        assert resp.status_code == 200
        use_case.execute.assert_awaited_once_with("00700", "hk", "1d")

    def test_missing_field_is_422(self, client: TestClient) -> None:
        assert client.post("/api/v1/screenshot", json={"symbol": "NVDA"}).status_code == 422


class TestAnalysis:
    def test_daily_and_hourly(self, client: TestClient, use_case: MagicMock) -> None:
        resp = client.get("/api/v1/analysis/NVDA.us")
        assert resp.status_code == 200
        data = resp.json()
        assert data["symbol"] == "NVDA"
        assert data["market"] == "us"
        assert data["daily"]["cache_hit"] is True
        assert data["hourly"]["cdn_url"] == f"{CDN}/NVDA_us_1h_20250115_10.png"
        use_case.execute_pair.assert_awaited_once_with("NVDA", "us")

    def test_splits_on_last_dot(self, client: TestClient, use_case: MagicMock) -> None:
        client.get("/api/v1/analysis/BRK.B.us")
        use_case.execute_pair.assert_awaited_once_with("BRK.B", "us")

    def test_missing_market(self, client: TestClient, use_case: MagicMock) -> None:
        resp = client.get("/api/v1/analysis/NVDA")
        assert resp.status_code == 400
        use_case.execute_pair.assert_not_awaited()


class TestStatusFor:
    def test_unknown_error_is_500(self) -> None:
        from chartshot.domain.exceptions import ChartshotError

        assert status_for(ChartshotError("?")) == 500
