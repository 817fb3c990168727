from __future__ import annotations

from datetime import timedelta
from typing import List, Tuple

from netquality.models import Config


def _secs(value: timedelta) -> str:
    return f"{value.total_seconds():g}s"


def build_runtime_info(config: Config) -> List[Tuple[str, str]]:
    storage = config.storage
    connectivity = config.connectivity
    notifications = config.notifications

    if storage.cleanup_enabled:
        cleanup = f"enabled (every {storage.cleanup_interval.total_seconds() / 86400:g} days, keep {storage.retention.days} days)"
    else:
        cleanup = "disabled"

    expected_upload = config.speed.expected_upload_mbps
    return [
        ("Database", str(storage.db_path)),
        ("DB cleanup", cleanup),
        ("Connectivity delay", _secs(connectivity.delay)),
        ("Connectivity timeout", _secs(connectivity.timeout)),
        ("Outage backoff", f"{_secs(connectivity.outage_backoff)} (max {_secs(connectivity.outage_backoff_max)})"),
        ("Speed delay", _secs(config.speed.delay)),
        ("Expected download", f"{config.speed.expected_download_mbps:.2f} Mbps"),
        ("Expected upload", f"{expected_upload:.2f} Mbps" if expected_upload is not None else "disabled"),
        ("URL checks", f"{len(connectivity.urls)} targets"),
        ("Telegram", "enabled" if notifications.telegram else "disabled"),
        ("OpenTelemetry", notifications.otel_endpoint or "disabled"),
        ("Min notify download", notifications.min_download_threshold.label),
        ("Min notify upload", notifications.min_upload_threshold.label),
    ]


def startup_summary(version: str, config_label: str, config: Config) -> str:
    """One line printed on start; details go to the log."""
    upload = config.speed.expected_upload_mbps
    return (
        f"NetQuality v{version} started (config: {config_label}; db: {config.storage.db_path}; "
        f"{len(config.connectivity.urls)} URLs; expected {config.speed.expected_download_mbps:g}"
        + (f"/{upload:g}" if upload is not None else "")
        + " Mbps)"
    )
