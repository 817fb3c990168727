from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from netquality.models import (
    ConfigError,
    Config,
    ConnectivityConfig,
    NotificationConfig,
    SpeedConfig,
    StorageConfig,
    TelegramConfig,
    ThresholdCategory,
    Thresholds,
)

CONFIG_FILENAME = "config.json"

DEFAULT_URLS = [
    "https://www.google.com/generate_204",
    "https://www.cloudflare.com/cdn-cgi/trace",
    "https://1.1.1.1",
    "https://8.8.8.8",
]

DEFAULT_CONNECTIVITY_DELAY_SECS = 60
DEFAULT_CONNECTIVITY_TIMEOUT_SECS = 1
DEFAULT_OUTAGE_BACKOFF_SECS = 10
DEFAULT_OUTAGE_BACKOFF_MAX_SECS = 3600
DEFAULT_SPEED_DELAY_SECS = 14400
DEFAULT_MIN_DOWNLOAD_THRESHOLD = ThresholdCategory.MEDIUM
DEFAULT_MIN_UPLOAD_THRESHOLD = ThresholdCategory.SLOW
DEFAULT_DB_PATH = "data/netquality.db"
DEFAULT_LOG_PATH = "logs/netquality.log"
DEFAULT_CLEANUP_INTERVAL_DAYS = 1
DEFAULT_RETENTION_DAYS = 365


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    search_dirs: Optional[Sequence[Path]] = None,
) -> Tuple[Config, str]:
    """Build the validated runtime config.

    `config.json` files found in `search_dirs` are merged in order, then the
    explicit `path` on top, then the command-line `overrides`. Returns the
    config and a label describing which files were used.
    """
    paths = _resolve_config_paths(path, search_dirs if search_dirs is not None else [Path.cwd()])
    data: Dict[str, Any] = {}
    for config_path in paths:
        data = _merge(data, _read_json(config_path))

    config = build_config(data, overrides or {})
    label = " + ".join(str(p) for p in paths) if paths else "defaults"
    return config, label


def build_config(data: Mapping[str, Any], overrides: Mapping[str, Any]) -> Config:
    return Config(
        connectivity=_parse_connectivity(data.get("connectivity") or {}, overrides),
        speed=_parse_speed(data.get("speed") or {}, overrides),
        notifications=_parse_notifications(data.get("notifications") or {}, overrides),
        storage=_parse_storage(data.get("storage") or {}, overrides),
        log_path=Path(data.get("log_path") or DEFAULT_LOG_PATH),
        verbose=bool(overrides.get("verbose") or data.get("verbose", False)),
    )


def dedupe_urls(urls: Sequence[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for url in urls:
        trimmed = str(url).strip()
        key = trimmed.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(trimmed)
    return result


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def _resolve_config_paths(path: Optional[str], search_dirs: Sequence[Path]) -> List[Path]:
    paths: List[Path] = []
    seen = set()
    for directory in search_dirs:
        candidate = Path(directory) / CONFIG_FILENAME
        if candidate.exists() and candidate.resolve() not in seen:
            seen.add(candidate.resolve())
            paths.append(candidate)

    if path:
        explicit = Path(path)
        if not explicit.exists():
            raise ConfigError(f"Config file not found: {explicit}")
        if explicit.resolve() not in seen:
            paths.append(explicit)
    return paths


def _merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _pick(overrides: Mapping[str, Any], key: str, section: Mapping[str, Any], file_key: str, default: Any = None) -> Any:
    value = overrides.get(key)
    if value is not None:
        return value
    return _get(section, file_key, default)


def _get(section: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """A file value, where an explicit null means the default."""
    value = section.get(key)
    return default if value is None else value


def _number(value: Any, name: str, unit: str = "") -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number{unit}, got {value!r}") from None


def _positive_seconds(value: Any, name: str) -> timedelta:
    seconds = _number(value, name, " of seconds")
    if seconds <= 0:
        raise ConfigError(f"{name} must be greater than zero.")
    return timedelta(seconds=seconds)


def _parse_connectivity(section: Mapping[str, Any], overrides: Mapping[str, Any]) -> ConnectivityConfig:
    delay = _positive_seconds(
        _pick(overrides, "connectivity_delay", section, "delay_secs", DEFAULT_CONNECTIVITY_DELAY_SECS),
        "Connectivity delay",
    )
    timeout = _positive_seconds(
        _pick(overrides, "connectivity_timeout", section, "timeout_secs", DEFAULT_CONNECTIVITY_TIMEOUT_SECS),
        "Connectivity timeout",
    )
    backoff = _positive_seconds(
        _pick(overrides, "outage_backoff", section, "outage_backoff_secs", DEFAULT_OUTAGE_BACKOFF_SECS),
        "Outage backoff",
    )
    backoff_max = _positive_seconds(
        _pick(overrides, "outage_backoff_max", section, "outage_backoff_max_secs", DEFAULT_OUTAGE_BACKOFF_MAX_SECS),
        "Outage backoff max",
    )
    if backoff_max < backoff:
        raise ConfigError("Outage backoff max must be >= outage backoff.")

    url_mode = "replace" if overrides.get("replace_urls") else str(section.get("url_mode") or "merge").lower()
    if url_mode not in ("merge", "replace"):
        raise ConfigError(f"Unknown url_mode '{url_mode}' (expected 'merge' or 'replace')")

    user_urls = overrides.get("urls") or section.get("urls") or []
    if isinstance(user_urls, str):
        user_urls = [user_urls]
    elif not isinstance(user_urls, (list, tuple)):
        raise ConfigError(f"Connectivity urls must be a list of URLs, got {user_urls!r}")
    user_urls = list(user_urls)
    if url_mode == "merge":
        urls = DEFAULT_URLS + user_urls
    else:
        urls = user_urls or list(DEFAULT_URLS)

    urls = dedupe_urls(urls)
    if not urls:
        raise ConfigError("Connectivity URL list cannot be empty.")

    return ConnectivityConfig(
        urls=urls,
        delay=delay,
        timeout=timeout,
        outage_backoff=backoff,
        outage_backoff_max=backoff_max,
    )


def _parse_thresholds(raw: Any, name: str) -> Thresholds:
    if raw is None:
        return Thresholds()
    if isinstance(raw, Thresholds):
        thresholds = raw
    elif isinstance(raw, Mapping):
        try:
            thresholds = Thresholds(
                very_slow=float(raw["very_slow"]),
                slow=float(raw["slow"]),
                medium=float(raw["medium"]),
                medium_fast=float(raw["medium_fast"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid {name}: {exc}") from exc
    else:
        raise ConfigError(f"Invalid {name}: expected an object with very_slow/slow/medium/medium_fast")
    try:
        thresholds.validate()
    except ConfigError as exc:
        raise ConfigError(f"Invalid {name}: {exc}") from exc
    return thresholds


def _parse_speed(section: Mapping[str, Any], overrides: Mapping[str, Any]) -> SpeedConfig:
    expected_download = _pick(overrides, "expected_download", section, "expected_download_mbps")
    if expected_download is None:
        raise ConfigError("Expected download speed is required.")
    expected_download = _number(expected_download, "Expected download speed")
    if expected_download <= 0:
        raise ConfigError("Expected download speed must be greater than zero.")

    expected_upload = _pick(overrides, "expected_upload", section, "expected_upload_mbps")
    if expected_upload is not None:
        expected_upload = _number(expected_upload, "Expected upload speed")
        if expected_upload <= 0:
            raise ConfigError("Expected upload speed must be greater than zero.")

    delay = _positive_seconds(
        _pick(overrides, "speed_delay", section, "delay_secs", DEFAULT_SPEED_DELAY_SECS),
        "Speed delay",
    )

    cli_path = _pick(overrides, "speedtest_cli_path", section, "speedtest_cli_path")
    speedtest_cli_path = Path(cli_path) if cli_path else None
    if speedtest_cli_path is not None and not speedtest_cli_path.exists():
        raise ConfigError(f"Speedtest CLI binary not found: {speedtest_cli_path}")

    return SpeedConfig(
        expected_download_mbps=expected_download,
        expected_upload_mbps=expected_upload,
        delay=delay,
        download_thresholds=_parse_thresholds(
            _pick(overrides, "download_thresholds", section, "download_thresholds"), "download thresholds"
        ),
        upload_thresholds=_parse_thresholds(
            _pick(overrides, "upload_thresholds", section, "upload_thresholds"), "upload thresholds"
        ),
        speedtest_cli_path=speedtest_cli_path,
    )


def _parse_category(value: Any, default: ThresholdCategory) -> ThresholdCategory:
    if value is None:
        return default
    if isinstance(value, ThresholdCategory):
        return value
    return ThresholdCategory.parse(value)


def _parse_notifications(section: Mapping[str, Any], overrides: Mapping[str, Any]) -> NotificationConfig:
    telegram_section = section.get("telegram") or {}
    token = overrides.get("telegram_token") or telegram_section.get("bot_token") or None
    chat_id = overrides.get("telegram_chat_id") or telegram_section.get("chat_id") or None
    if bool(token) != bool(chat_id):
        raise ConfigError("Telegram configuration requires both bot_token and chat_id.")
    telegram = TelegramConfig(bot_token=str(token), chat_id=str(chat_id)) if token else None

    return NotificationConfig(
        telegram=telegram,
        otel_endpoint=_pick(overrides, "otel_endpoint", section, "otel_endpoint") or None,
        min_download_threshold=_parse_category(
            _pick(overrides, "min_download_threshold", section, "min_download_threshold"),
            DEFAULT_MIN_DOWNLOAD_THRESHOLD,
        ),
        min_upload_threshold=_parse_category(
            _pick(overrides, "min_upload_threshold", section, "min_upload_threshold"),
            DEFAULT_MIN_UPLOAD_THRESHOLD,
        ),
    )


def _parse_storage(section: Mapping[str, Any], overrides: Mapping[str, Any]) -> StorageConfig:
    db_path = Path(_pick(overrides, "db_path", section, "db_path", DEFAULT_DB_PATH))
    interval_days = _number(
        _get(section, "cleanup_interval_days", DEFAULT_CLEANUP_INTERVAL_DAYS), "Storage cleanup interval days"
    )
    retention_days = _number(_get(section, "retention_days", DEFAULT_RETENTION_DAYS), "Storage retention days")
    if interval_days <= 0:
        raise ConfigError("Storage cleanup interval days must be greater than zero.")
    if retention_days <= 0:
        raise ConfigError("Storage retention days must be greater than zero.")
    return StorageConfig(
        db_path=db_path,
        cleanup_enabled=bool(_get(section, "cleanup_enabled", True)),
        cleanup_interval=timedelta(days=interval_days),
        retention=timedelta(days=retention_days),
    )
