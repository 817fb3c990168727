from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional

import pytest

from netquality.config_loader import build_config
from netquality.models import Config, ConnectivityResult, SpeedMeasurement, SpeedResult, ThresholdCategory

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    def _make(data: Optional[dict] = None, **overrides: Any) -> Config:
        merged = {
            "expected_download": 100.0,
            "db_path": str(tmp_path / "netquality.db"),
            "urls": ["https://a.example", "https://b.example"],
            "replace_urls": True,
        }
        merged.update(overrides)
        return build_config(data or {}, merged)

    return _make


def connectivity(success: bool = True, url: str = "https://a.example", when: datetime = T0) -> ConnectivityResult:
    return ConnectivityResult(
        timestamp=when,
        url=url,
        result="204" if success else "timeout",
        elapsed_ms=12 if success else 1000,
        success=success,
    )


def speed_result(
    download_mbps: float,
    download_threshold: ThresholdCategory,
    upload_mbps: Optional[float] = None,
    upload_threshold: Optional[ThresholdCategory] = None,
    success: bool = True,
    when: datetime = T0,
) -> SpeedResult:
    return SpeedResult(
        timestamp=when,
        download_mbps=download_mbps,
        upload_mbps=upload_mbps,
        download_threshold=download_threshold,
        upload_threshold=upload_threshold,
        success=success,
        elapsed_ms=20_000,
    )


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeProber:
    """Replays queued outcomes; True is a reachable URL, False a timed-out round."""

    def __init__(self, outcomes: List[bool], on_probe: Optional[Callable[[], None]] = None) -> None:
        self.outcomes = list(outcomes)
        self.on_probe = on_probe
        self.calls = 0
        self.closed = False

    async def probe(self, urls, cursor):
        self.calls += 1
        if self.on_probe is not None:
            self.on_probe()
        ok = self.outcomes.pop(0) if self.outcomes else True
        result = connectivity(success=ok, url=urls[cursor % len(urls)], when=datetime.now(timezone.utc))
        return result, (cursor + 1) % len(urls)

    async def aclose(self) -> None:
        self.closed = True


class FakeSpeedTester:
    def __init__(self, measurements: List[SpeedMeasurement]) -> None:
        self.measurements = list(measurements)
        self.calls: List[bool] = []

    async def measure(self, download_only: bool) -> SpeedMeasurement:
        self.calls.append(download_only)
        return self.measurements.pop(0)


class RecordingChannel:
    name = "Recording"

    def __init__(self) -> None:
        self.messages: List[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True
