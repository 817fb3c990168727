from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import speedtest

from netquality.models import Config, SpeedMeasurement, SpeedResult, ThresholdCategory
from netquality.thresholds import classify, classify_optional


class SpeedTester:
    """Bandwidth measurement via the Ookla binary, falling back to speedtest-cli."""

    def __init__(self, timeout: float = 240, cli_path: Optional[Path] = None) -> None:
        self.timeout = timeout
        self.cli_path = cli_path

    async def measure(self, download_only: bool) -> SpeedMeasurement:
        return await asyncio.to_thread(self.run, download_only)

    def run(self, download_only: bool) -> SpeedMeasurement:
        if self.cli_path:
            result = self._run_ookla(self.cli_path, download_only)
            if result.success:
                return result
            logging.info("Speedtest CLI failed (%s); falling back to speedtest-cli library.", result.error)
        return self._run_library(download_only)

    def _run_ookla(self, path: Path, download_only: bool) -> SpeedMeasurement:
        cmd = [str(path), "--format", "json", "--accept-license", "--accept-gdpr"]
        if download_only:
            cmd.append("--download-only")

        start = time.monotonic()
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return _failed("speedtest", "speedtest timed out", start)
        except OSError as exc:
            return _failed("speedtest", f"could not start speedtest: {exc}", start)

        if completed.returncode != 0:
            output = ((completed.stdout or "") + (completed.stderr or "")).strip()
            return _failed("speedtest", output or f"speedtest failed with code {completed.returncode}", start)

        download_mbps, upload_mbps = self._parse_output(completed.stdout or "")
        if download_mbps is None:
            raw = (completed.stdout or "")[:4000].strip().replace("\n", " ")
            return _failed("speedtest", "Could not parse speedtest output; raw: " + (raw or "empty"), start)

        return SpeedMeasurement(
            download_mbps=download_mbps,
            upload_mbps=None if download_only else upload_mbps,
            elapsed_ms=_elapsed_ms(start),
            tool="speedtest",
        )

    def _run_library(self, download_only: bool) -> SpeedMeasurement:
        start = time.monotonic()
        try:
            st = speedtest.Speedtest(secure=True, timeout=self.timeout)
            st.get_best_server()
            download_mbps = st.download() / 1_000_000
            upload_mbps = None if download_only else st.upload() / 1_000_000
        except (speedtest.SpeedtestException, OSError) as exc:
            return _failed("speedtest-cli", f"{type(exc).__name__}: {exc}", start)
        except Exception as exc:
            logging.exception("Unexpected error from speedtest-cli")
            return _failed("speedtest-cli", f"{type(exc).__name__}: {exc}", start)

        return SpeedMeasurement(
            download_mbps=download_mbps,
            upload_mbps=upload_mbps,
            elapsed_ms=_elapsed_ms(start),
            tool="speedtest-cli",
        )

    def _parse_output(self, output: str) -> Tuple[Optional[float], Optional[float]]:
        """Ookla JSON reports bandwidth in bytes per second."""
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            return None, None

        download = (data.get("download") or {}).get("bandwidth")
        upload = (data.get("upload") or {}).get("bandwidth")
        download_mbps = bytes_per_sec_to_mbps(download) if download is not None else None
        upload_mbps = bytes_per_sec_to_mbps(upload) if upload is not None else None
        return download_mbps, upload_mbps


def bytes_per_sec_to_mbps(bytes_per_sec: float) -> float:
    return float(bytes_per_sec) * 8 / 1_000_000


async def measure_speed(config: Config, tester: SpeedTester) -> SpeedResult:
    measurement = await tester.measure(download_only=not config.speed.upload_enabled)
    if not measurement.success:
        logging.warning("Speed test failed (%s): %s", measurement.tool or "none", measurement.error or "unknown error")
    return build_speed_result(config, measurement)


def build_speed_result(config: Config, measurement: SpeedMeasurement) -> SpeedResult:
    speed = config.speed
    if not measurement.success:
        return SpeedResult(
            timestamp=datetime.now(timezone.utc),
            download_mbps=0.0,
            upload_mbps=None,
            download_threshold=ThresholdCategory.VERY_SLOW,
            upload_threshold=None,
            success=False,
            elapsed_ms=measurement.elapsed_ms,
        )

    upload_mbps = measurement.upload_mbps if speed.upload_enabled else None
    return SpeedResult(
        timestamp=datetime.now(timezone.utc),
        download_mbps=measurement.download_mbps,
        upload_mbps=upload_mbps,
        download_threshold=classify(measurement.download_mbps, speed.expected_download_mbps, speed.download_thresholds),
        upload_threshold=classify_optional(upload_mbps, speed.expected_upload_mbps, speed.upload_thresholds),
        success=True,
        elapsed_ms=measurement.elapsed_ms,
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _failed(tool: str, error: str, start: float) -> SpeedMeasurement:
    return SpeedMeasurement(
        download_mbps=0.0,
        upload_mbps=None,
        elapsed_ms=_elapsed_ms(start),
        success=False,
        tool=tool,
        error=error,
    )
