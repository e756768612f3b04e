from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

import structlog
import uvicorn

from chartshot.domain.exceptions import ChartshotError
from chartshot.infrastructure.config import AppConfig, load_config
from chartshot.infrastructure.logging.setup import configure_logging
from chartshot.interfaces.app import create_app
from chartshot.interfaces.composition import open_services

log = structlog.get_logger(__name__)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=None, help="Path to YAML config file.")
    parser.add_argument("--dotenv", default=None, help="Path to .env file.")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level.",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )
    parser.add_argument(
        "--pool-size",
        default=None,
        type=int,
        help="Number of Chromium processes.",
    )
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window (debugging).",
    )


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chartshot")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API (default).")
    _add_config_args(serve)
    serve.add_argument("--host", default=None, help="Bind host.")
    serve.add_argument("--port", default=None, type=int, help="Bind port.")

    capture = sub.add_parser("capture", help="Capture and upload once, then exit.")
    _add_config_args(capture)
    capture.add_argument("symbol", help="Ticker, e.g. NVDA.")
    capture.add_argument("market", help="Market code, e.g. us.")
    capture.add_argument(
        "timeframes",
        nargs="*",
        default=["1d", "1h"],
        help="Timeframes to capture (default: 1d 1h).",
    )

    args = list(argv) if argv is not None else []
    if not args or args[0] not in {"serve", "capture", "-h", "--help"}:
        args = ["serve", *args]
    return parser.parse_args(args)


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    if args.pool_size is not None:
        overrides["browser_pool_size"] = args.pool_size
    if args.headful:
        overrides["browser_headless"] = False
    if getattr(args, "host", None):
        overrides["server_host"] = args.host
    if getattr(args, "port", None):
        overrides["server_port"] = args.port
    return overrides


def _load(args: argparse.Namespace) -> AppConfig:
    return load_config(
        config_path=Path(args.config) if args.config else None,
        dotenv_path=Path(args.dotenv) if args.dotenv else None,
        cli_overrides=_cli_overrides(args),
    )


async def run_capture(
    config: AppConfig, symbol: str, market: str, timeframes: Sequence[str]
) -> list[dict[str, Any]]:
    """Capture each timeframe in turn; one failure does not stop the rest."""
    rows: list[dict[str, Any]] = []
    async with open_services(config, run_reaper=False) as services:
        for timeframe in timeframes:
            try:
                result = await services.screenshot_uc.execute(symbol, market, timeframe)
            except ChartshotError as e:
                log.error("capture_failed", timeframe=timeframe, error=str(e))
                rows.append({"timeframe": timeframe, "success": False, "error": str(e)})
                continue
            rows.append(
                {
                    "timeframe": timeframe,
                    "success": True,
                    "cdn_url": result.cdn_url,
                    "storage_key": result.upload.key,
                    "size": result.upload.size,
                    "cache_hit": result.cache_hit,
                }
            )
    return rows


def start(argv: Iterable[str] | None = None) -> int:
    """Process entrypoint: load config exactly once, then dispatch."""
    if argv is None:
        argv = sys.argv[1:]

    args = _parse_args(argv)
    config = _load(args)
    log_config = configure_logging(config)

    if args.command == "capture":
        rows = asyncio.run(run_capture(config, args.symbol, args.market, args.timeframes))
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return 0 if all(row["success"] for row in rows) else 1

    uvicorn.run(
        create_app(config),
        host=config.server_host,
        port=config.server_port,
        log_config=log_config,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(start())
