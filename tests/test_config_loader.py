from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from netquality.config_loader import DEFAULT_URLS, dedupe_urls, load_config
from netquality.models import ConfigError, ThresholdCategory, Thresholds


def _write(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_defaults_apply_without_files(tmp_path: Path) -> None:
    config, label = load_config(overrides={"expected_download": 100}, search_dirs=[tmp_path])

    assert label == "defaults"
    assert config.connectivity.urls == DEFAULT_URLS
    assert config.connectivity.delay == timedelta(seconds=60)
    assert config.connectivity.timeout == timedelta(seconds=1)
    assert config.connectivity.outage_backoff == timedelta(seconds=10)
    assert config.connectivity.outage_backoff_max == timedelta(seconds=3600)
    assert config.speed.delay == timedelta(seconds=14400)
    assert config.speed.expected_upload_mbps is None
    assert not config.speed.upload_enabled
    assert config.speed.download_thresholds == Thresholds()
    assert config.notifications.telegram is None
    assert config.notifications.min_download_threshold is ThresholdCategory.MEDIUM
    assert config.notifications.min_upload_threshold is ThresholdCategory.SLOW
    assert config.storage.db_path == Path("data/netquality.db")
    assert config.storage.cleanup_enabled
    assert config.storage.retention == timedelta(days=365)


def test_expected_download_is_required(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Expected download"):
        load_config(search_dirs=[tmp_path])


def test_user_urls_merge_with_defaults_and_dedupe(tmp_path: Path) -> None:
    _write(
        tmp_path / "config.json",
        {
            "connectivity": {"urls": ["https://example.com", " HTTPS://WWW.GOOGLE.COM/generate_204 ", ""]},
            "speed": {"expected_download_mbps": 50},
        },
    )
    config, label = load_config(search_dirs=[tmp_path])

    assert label == str(tmp_path / "config.json")
    assert config.connectivity.urls == DEFAULT_URLS + ["https://example.com"]


def test_replace_urls_uses_only_user_list(tmp_path: Path) -> None:
    config, _ = load_config(
        overrides={"expected_download": 100, "urls": ["https://a.example", "https://A.example/"], "replace_urls": True},
        search_dirs=[tmp_path],
    )
    assert config.connectivity.urls == ["https://a.example", "https://A.example/"]


def test_replace_mode_without_urls_falls_back_to_defaults(tmp_path: Path) -> None:
    _write(tmp_path / "config.json", {"connectivity": {"url_mode": "replace"}, "speed": {"expected_download_mbps": 10}})
    config, _ = load_config(search_dirs=[tmp_path])
    assert config.connectivity.urls == DEFAULT_URLS


def test_dedupe_urls_keeps_first_spelling() -> None:
    assert dedupe_urls(["https://X.example", "https://x.example", "  ", "https://y.example"]) == [
        "https://X.example",
        "https://y.example",
    ]


def test_precedence_search_dirs_then_explicit_then_overrides(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(project / "config.json", {"connectivity": {"delay_secs": 30, "timeout_secs": 3}, "speed": {"expected_download_mbps": 100}})
    explicit = _write(tmp_path / "custom.json", {"connectivity": {"delay_secs": 45}})

    config, label = load_config(str(explicit), search_dirs=[project])
    assert config.connectivity.delay == timedelta(seconds=45)
    assert config.connectivity.timeout == timedelta(seconds=3)
    assert label == f"{project / 'config.json'} + {explicit}"

    config, _ = load_config(str(explicit), overrides={"connectivity_delay": 90}, search_dirs=[project])
    assert config.connectivity.delay == timedelta(seconds=90)


def test_same_file_in_search_dirs_is_read_once(tmp_path: Path) -> None:
    _write(tmp_path / "config.json", {"speed": {"expected_download_mbps": 100}})
    _, label = load_config(str(tmp_path / "config.json"), search_dirs=[tmp_path, tmp_path])
    assert label == str(tmp_path / "config.json")


def test_missing_explicit_config_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.json"), overrides={"expected_download": 100}, search_dirs=[])


def test_invalid_json_is_a_config_error(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_config(search_dirs=[tmp_path])


def test_telegram_needs_token_and_chat_id(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Telegram"):
        load_config(overrides={"expected_download": 100, "telegram_token": "123:abc"}, search_dirs=[tmp_path])

    config, _ = load_config(
        overrides={"expected_download": 100, "telegram_token": "123:abc", "telegram_chat_id": 42},
        search_dirs=[tmp_path],
    )
    assert config.notifications.telegram.bot_token == "123:abc"
    assert config.notifications.telegram.chat_id == "42"


def test_backoff_max_must_cover_backoff(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="backoff"):
        load_config(
            overrides={"expected_download": 100, "outage_backoff": 30, "outage_backoff_max": 10},
            search_dirs=[tmp_path],
        )


@pytest.mark.parametrize(
    "overrides",
    [
        {"expected_download": 0},
        {"expected_download": 100, "expected_upload": -5},
        {"expected_download": 100, "connectivity_delay": 0},
        {"expected_download": 100, "speed_delay": -1},
        {"expected_download": 100, "min_download_threshold": "warp"},
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, overrides: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(overrides=overrides, search_dirs=[tmp_path])


def test_thresholds_and_floors_from_file(tmp_path: Path) -> None:
    _write(
        tmp_path / "config.json",
        {
            "speed": {
                "expected_download_mbps": 100,
                "expected_upload_mbps": 20,
                "download_thresholds": {"very_slow": 10, "slow": 20, "medium": 30, "medium_fast": 40},
            },
            "notifications": {"min_download_threshold": "very_slow", "min_upload_threshold": "Medium Fast"},
        },
    )
    config, _ = load_config(search_dirs=[tmp_path])

    assert config.speed.upload_enabled
    assert config.speed.download_thresholds == Thresholds(10, 20, 30, 40)
    assert config.speed.upload_thresholds == Thresholds()
    assert config.notifications.min_download_threshold is ThresholdCategory.VERY_SLOW
    assert config.notifications.min_upload_threshold is ThresholdCategory.MEDIUM_FAST


def test_threshold_override_replaces_file_value(tmp_path: Path) -> None:
    _write(
        tmp_path / "config.json",
        {"speed": {"expected_download_mbps": 100, "download_thresholds": {"very_slow": 10, "slow": 20, "medium": 30, "medium_fast": 40}}},
    )
    config, _ = load_config(overrides={"download_thresholds": Thresholds(5, 6, 7, 8)}, search_dirs=[tmp_path])
    assert config.speed.download_thresholds == Thresholds(5, 6, 7, 8)


def test_unordered_file_thresholds_are_rejected(tmp_path: Path) -> None:
    _write(
        tmp_path / "config.json",
        {"speed": {"expected_download_mbps": 100, "upload_thresholds": {"very_slow": 50, "slow": 20, "medium": 30, "medium_fast": 40}}},
    )
    with pytest.raises(ConfigError, match="upload thresholds"):
        load_config(search_dirs=[tmp_path])


def test_speedtest_cli_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Speedtest CLI"):
        load_config(
            overrides={"expected_download": 100, "speedtest_cli_path": str(tmp_path / "speedtest")},
            search_dirs=[tmp_path],
        )

    binary = tmp_path / "speedtest"
    binary.write_text("", encoding="utf-8")
    config, _ = load_config(
        overrides={"expected_download": 100, "speedtest_cli_path": str(binary)},
        search_dirs=[tmp_path],
    )
    assert config.speed.speedtest_cli_path == binary


def test_storage_settings_from_file(tmp_path: Path) -> None:
    _write(
        tmp_path / "config.json",
        {
            "speed": {"expected_download_mbps": 100},
            "storage": {"db_path": "db/custom.db", "cleanup_enabled": False, "cleanup_interval_days": 2, "retention_days": 30},
        },
    )
    config, _ = load_config(search_dirs=[tmp_path])

    assert config.storage.db_path == Path("db/custom.db")
    assert not config.storage.cleanup_enabled
    assert config.storage.cleanup_interval == timedelta(days=2)
    assert config.storage.retention == timedelta(days=30)

    with pytest.raises(ConfigError, match="retention"):
        _write(tmp_path / "config.json", {"speed": {"expected_download_mbps": 100}, "storage": {"retention_days": 0}})
        load_config(search_dirs=[tmp_path])


@pytest.mark.parametrize(
    "data, message",
    [
        ({"speed": {"expected_download_mbps": "fast"}}, "Expected download speed must be a number"),
        ({"speed": {"expected_download_mbps": 100, "expected_upload_mbps": "lots"}}, "Expected upload speed must be a number"),
        ({"speed": {"expected_download_mbps": 100}, "storage": {"retention_days": "a year"}}, "retention days must be a number"),
        ({"speed": {"expected_download_mbps": 100}, "storage": {"cleanup_interval_days": [1]}}, "interval days must be a number"),
        ({"speed": {"expected_download_mbps": 100}, "connectivity": {"delay_secs": "soon"}}, "number of seconds"),
    ],
)
def test_non_numeric_values_are_config_errors(tmp_path: Path, data: dict, message: str) -> None:
    _write(tmp_path / "config.json", data)
    with pytest.raises(ConfigError, match=message):
        load_config(search_dirs=[tmp_path])


def test_single_url_string_is_one_url(tmp_path: Path) -> None:
    _write(
        tmp_path / "config.json",
        {"connectivity": {"urls": "https://x.example", "url_mode": "replace"}, "speed": {"expected_download_mbps": 100}},
    )
    config, _ = load_config(search_dirs=[tmp_path])
    assert config.connectivity.urls == ["https://x.example"]


def test_urls_must_be_a_list(tmp_path: Path) -> None:
    _write(tmp_path / "config.json", {"connectivity": {"urls": {"a": 1}}, "speed": {"expected_download_mbps": 100}})
    with pytest.raises(ConfigError, match="list of URLs"):
        load_config(search_dirs=[tmp_path])


def test_later_file_null_resets_to_default(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(project / "config.json", {"speed": {"expected_download_mbps": 100, "expected_upload_mbps": 20, "delay_secs": 60}})
    explicit = _write(tmp_path / "custom.json", {"speed": {"expected_upload_mbps": None, "delay_secs": None}})

    config, _ = load_config(str(explicit), search_dirs=[project])

    assert not config.speed.upload_enabled
    assert config.speed.delay == timedelta(seconds=14400)
    assert config.speed.expected_download_mbps == 100
