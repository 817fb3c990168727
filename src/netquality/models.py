from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import List, Optional


class NetQualityError(Exception):
    pass


class ConfigError(NetQualityError):
    pass


class DatabaseError(NetQualityError):
    pass


class NotificationError(NetQualityError):
    pass


class ThresholdCategory(Enum):
    VERY_SLOW = "very_slow"
    SLOW = "slow"
    MEDIUM = "medium"
    MEDIUM_FAST = "medium_fast"
    EXPECTED = "expected"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @property
    def label(self) -> str:
        return _LABELS[self]

    def is_at_or_below(self, minimum: "ThresholdCategory") -> bool:
        """True when this category is as bad as, or worse than, `minimum`."""
        return self.rank <= minimum.rank

    @classmethod
    def parse(cls, value: str) -> "ThresholdCategory":
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            choices = ", ".join(c.value for c in cls)
            raise ConfigError(f"Unknown threshold category '{value}' (expected one of: {choices})") from None


_SEVERITY_ORDER = [
    ThresholdCategory.VERY_SLOW,
    ThresholdCategory.SLOW,
    ThresholdCategory.MEDIUM,
    ThresholdCategory.MEDIUM_FAST,
    ThresholdCategory.EXPECTED,
]

_LABELS = {
    ThresholdCategory.VERY_SLOW: "Very Slow",
    ThresholdCategory.SLOW: "Slow",
    ThresholdCategory.MEDIUM: "Medium",
    ThresholdCategory.MEDIUM_FAST: "Medium Fast",
    ThresholdCategory.EXPECTED: "Expected",
}


@dataclass(frozen=True)
class Thresholds:
    """Upper bounds, in percent of the expected speed, of the four slow tiers."""

    very_slow: float = 30.0
    slow: float = 50.0
    medium: float = 65.0
    medium_fast: float = 85.0

    def validate(self) -> None:
        values = [self.very_slow, self.slow, self.medium, self.medium_fast]
        if any(v < 0 or v > 100 for v in values):
            raise ConfigError("threshold values must be between 0 and 100")
        if values != sorted(values):
            raise ConfigError("threshold values must be in ascending order")


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str


@dataclass(frozen=True)
class ConnectivityConfig:
    urls: List[str]
    delay: timedelta
    timeout: timedelta
    outage_backoff: timedelta
    outage_backoff_max: timedelta


@dataclass(frozen=True)
class SpeedConfig:
    expected_download_mbps: float
    expected_upload_mbps: Optional[float]
    delay: timedelta
    download_thresholds: Thresholds = field(default_factory=Thresholds)
    upload_thresholds: Thresholds = field(default_factory=Thresholds)
    speedtest_cli_path: Optional[Path] = None

    @property
    def upload_enabled(self) -> bool:
        return self.expected_upload_mbps is not None


@dataclass(frozen=True)
class NotificationConfig:
    telegram: Optional[TelegramConfig] = None
    otel_endpoint: Optional[str] = None
    min_download_threshold: ThresholdCategory = ThresholdCategory.MEDIUM
    min_upload_threshold: ThresholdCategory = ThresholdCategory.SLOW


@dataclass(frozen=True)
class StorageConfig:
    db_path: Path
    cleanup_enabled: bool = True
    cleanup_interval: timedelta = timedelta(days=1)
    retention: timedelta = timedelta(days=365)


@dataclass(frozen=True)
class Config:
    connectivity: ConnectivityConfig
    speed: SpeedConfig
    notifications: NotificationConfig
    storage: StorageConfig
    log_path: Path = Path("logs/netquality.log")
    verbose: bool = False


@dataclass
class ConnectivityResult:
    timestamp: datetime
    url: str
    result: str
    elapsed_ms: int
    success: bool


@dataclass
class SpeedMeasurement:
    download_mbps: float
    upload_mbps: Optional[float]
    elapsed_ms: int
    success: bool = True
    tool: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SpeedResult:
    timestamp: datetime
    download_mbps: float
    upload_mbps: Optional[float]
    download_threshold: ThresholdCategory
    upload_threshold: Optional[ThresholdCategory]
    success: bool
    elapsed_ms: int


@dataclass
class OutageInfo:
    started_at: datetime
    ended_at: datetime

    @property
    def duration(self) -> timedelta:
        return self.ended_at - self.started_at


@dataclass
class CleanupStats:
    sessions_deleted: int
    connectivity_deleted: int
    speed_deleted: int
