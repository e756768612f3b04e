"""Tests for the structlog/uvicorn logging configuration builders."""

from __future__ import annotations

import logging

import structlog

from chartshot.infrastructure.config import AppConfig
from chartshot.infrastructure.logging.setup import (
    UVICORN_LOGGING_CONFIG,
    _add_record_created_timestamp_utc,
    _drop_color_message,
    _LevelRangeFilter,
    _renderer,
    build_logging_config,
)


def _record(level: int) -> logging.LogRecord:
    return logging.LogRecord("t", level, __file__, 1, "msg", None, None)


class TestBuildLoggingConfig:
    def test_applies_level_everywhere(self) -> None:
        cfg = build_logging_config(AppConfig(log_level="WARNING"))
        assert cfg["root"]["level"] == "WARNING"
        assert all(lc["level"] == "WARNING" for lc in cfg["loggers"].values())

    def test_does_not_mutate_template(self) -> None:
        build_logging_config(AppConfig(log_level="DEBUG"))
        assert UVICORN_LOGGING_CONFIG["formatters"] == {}
        assert UVICORN_LOGGING_CONFIG["loggers"]["uvicorn"]["level"] == "INFO"

    def test_structlog_formatter_registered(self) -> None:
        cfg = build_logging_config(AppConfig())
        assert cfg["formatters"]["structlog"]["()"] is structlog.stdlib.ProcessorFormatter


class TestRenderer:
    def test_json_in_prod(self) -> None:
        renderer = _renderer(AppConfig(environment="prod"))
        assert isinstance(renderer, structlog.processors.JSONRenderer)

    def test_console_in_dev(self) -> None:
        renderer = _renderer(AppConfig(environment="dev"))
        assert isinstance(renderer, structlog.dev.ConsoleRenderer)


class TestProcessors:
    def test_drops_uvicorn_color_message(self) -> None:
        out = _drop_color_message(None, None, {"event": "x", "color_message": "\x1b[1mx"})
        assert out == {"event": "x"}

    def test_stamps_foreign_records_in_utc(self) -> None:
        record = _record(logging.INFO)
        record.created = 0.0
        out = _add_record_created_timestamp_utc(None, None, {"_record": record})
        assert out["timestamp"] == "1970-01-01T00:00:00Z"


class TestLevelRangeFilter:
    def test_stdout_range(self) -> None:
        f = _LevelRangeFilter(max_level=logging.WARNING)
        assert f.filter(_record(logging.INFO)) is True
        assert f.filter(_record(logging.ERROR)) is False

    def test_stderr_range(self) -> None:
        f = _LevelRangeFilter(min_level=logging.ERROR)
        assert f.filter(_record(logging.WARNING)) is False
        assert f.filter(_record(logging.CRITICAL)) is True
