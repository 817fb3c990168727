#!/usr/bin/env python3
"""
Entry point for the network quality monitor. Loads config, prints a startup
summary and runs the monitor loop until SIGINT/SIGTERM.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict

PROJECT_ROOT = Path(__file__).resolve().parent
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from netquality.config_loader import load_config
from netquality.database import Database
from netquality.models import NetQualityError
from netquality.monitor_loop import Monitor
from netquality.notifier import Notifier
from netquality.prober import ConnectivityProber
from netquality.runtime_info import build_runtime_info, startup_summary
from netquality.speedtester import SpeedTester
from netquality.thresholds import parse_thresholds

__version__ = "0.1.0"


def setup_logging(log_path: Path, verbose: bool = False) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_path, encoding="utf-8"),
    ]
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
    )
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Network quality monitor: connectivity checks, speed tests and alerts.")
    parser.add_argument("--config", help="Path to config JSON, applied over any config.json found.")
    parser.add_argument("--url", dest="urls", action="append", help="URL to check (repeatable).")
    parser.add_argument("--replace-urls", action="store_true", help="Use only the given URLs instead of adding them to the defaults.")
    parser.add_argument("--expected-download", type=float, help="Expected download speed in Mbps.")
    parser.add_argument("--expected-upload", type=float, help="Expected upload speed in Mbps (enables upload tests).")
    parser.add_argument("--download-thresholds", help="Download thresholds as V,S,M,MF percentages (default: 30,50,65,85).")
    parser.add_argument("--upload-thresholds", help="Upload thresholds as V,S,M,MF percentages (default: 30,50,65,85).")
    parser.add_argument("--connectivity-delay", type=float, help="Seconds between connectivity checks.")
    parser.add_argument("--speed-delay", type=float, help="Seconds between speed tests.")
    parser.add_argument("--connectivity-timeout", type=float, help="Per-URL connectivity timeout in seconds.")
    parser.add_argument("--outage-backoff", type=float, help="Backoff step in seconds while connectivity is down.")
    parser.add_argument("--outage-backoff-max", type=float, help="Maximum backoff in seconds while connectivity is down.")
    parser.add_argument("--db-path", help="SQLite database path.")
    parser.add_argument("--speedtest-cli-path", help="Path to the Ookla speedtest binary.")
    parser.add_argument("--telegram-token", help="Telegram bot token.")
    parser.add_argument("--telegram-chat-id", help="Telegram chat id.")
    parser.add_argument("--otel-endpoint", help="OTLP/HTTP traces endpoint for notifications.")
    parser.add_argument("--min-download-threshold", help="Notify when download is at or below this category.")
    parser.add_argument("--min-upload-threshold", help="Notify when upload is at or below this category.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides = {key: value for key, value in vars(args).items() if key != "config"}
    for key in ("download_thresholds", "upload_thresholds"):
        if overrides.get(key):
            overrides[key] = parse_thresholds(overrides[key])
    return overrides


async def run_monitor(monitor: Monitor, stop_event: threading.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())
    await monitor.run(stop_event)


def main() -> None:
    args = parse_args()
    try:
        config, config_label = load_config(
            args.config,
            overrides=build_overrides(args),
            search_dirs=[PROJECT_ROOT, Path.cwd()],
        )
    except NetQualityError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_path, config.verbose)

    print(startup_summary(__version__, config_label, config))
    logging.info("Config source: %s", config_label)
    for label, value in build_runtime_info(config):
        logging.info("%s: %s", label, value)

    try:
        monitor = Monitor(
            config,
            db=Database(config.storage.db_path),
            notifier=Notifier.from_config(config.notifications),
            prober=ConnectivityProber(config.connectivity.timeout.total_seconds()),
            speedtester=SpeedTester(cli_path=config.speed.speedtest_cli_path),
        )
        asyncio.run(run_monitor(monitor, threading.Event()))
    except NetQualityError as exc:
        logging.error("%s", exc)
        sys.exit(1)
    except Exception as exc:
        logging.error("Fatal error: %s: %s", type(exc).__name__, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
