from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import T0, connectivity, speed_result

from netquality.database import Database
from netquality.history import export_history, find_outages, load_history, plot_history, summarize
from netquality.models import ThresholdCategory as C


@pytest.fixture
def history_db(tmp_path: Path) -> Path:
    path = tmp_path / "netquality.db"
    db = Database(path)
    pattern = [True, False, False, True, True, False]
    for i, ok in enumerate(pattern):
        c_id = db.insert_connectivity(connectivity(ok, when=T0 + timedelta(minutes=i)))
        s_id = None
        if i == 0:
            s_id = db.insert_speed(speed_result(90.0, C.EXPECTED, when=T0))
        elif i == 3:
            s_id = db.insert_speed(speed_result(40.0, C.SLOW, when=T0 + timedelta(minutes=3)))
        elif i == 4:
            s_id = db.insert_speed(speed_result(0.0, C.VERY_SLOW, success=False, when=T0 + timedelta(minutes=4)))
        db.insert_session(c_id, s_id)
    db.close()
    return path


def test_load_history_reads_all_tables(history_db: Path) -> None:
    bundle = load_history(history_db)

    assert len(bundle.connectivity) == 6
    assert len(bundle.speed) == 3
    assert len(bundle.sessions) == 6
    assert bundle.connectivity["timestamp"].iloc[0] == T0
    assert bundle.sessions["speed_timestamp"].isna().sum() == 3


def test_load_history_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_history(tmp_path / "missing.db")


def test_find_outages_includes_open_run(history_db: Path) -> None:
    outages = find_outages(load_history(history_db).connectivity)

    assert list(outages["failed_checks"]) == [2, 1]
    assert outages["start_ts"].iloc[0] == T0 + timedelta(minutes=1)
    assert outages["end_ts"].iloc[0] == T0 + timedelta(minutes=2)
    assert list(outages["duration_seconds"]) == [60.0, 0.0]


def test_find_outages_empty(history_db: Path) -> None:
    bundle = load_history(history_db)
    healthy = bundle.connectivity[bundle.connectivity["success"] == 1]
    outages = find_outages(healthy)

    assert outages.empty
    assert list(outages.columns) == ["start_ts", "end_ts", "failed_checks", "duration_seconds"]


def test_summarize(history_db: Path) -> None:
    row = summarize(load_history(history_db)).iloc[0]

    assert row["total_checks"] == 6
    assert row["failures"] == 3
    assert row["fail_pct"] == 50.0
    assert row["outage_events"] == 2
    assert row["outage_seconds"] == 60.0
    assert row["speed_tests"] == 3
    assert row["speed_failures"] == 1
    assert row["download_mean_mbps"] == 65.0
    assert row["download_expected"] == 1
    assert row["download_slow"] == 1
    assert row["download_very_slow"] == 0
    assert row["upload_expected"] == 0


def test_export_history_writes_json(history_db: Path, tmp_path: Path) -> None:
    output = tmp_path / "out" / "history.json"
    result = export_history(load_history(history_db), output_path=output)

    on_disk = json.loads(output.read_text(encoding="utf-8"))
    assert on_disk["summary"]["total_checks"] == 6
    assert on_disk == json.loads(json.dumps(result, default=str))
    assert [p["y"] for p in result["connectivitySeries"]] == [12, None, None, 12, 12, None]
    assert [p["y"] for p in result["speedSeries"]["download"]] == [90.0, 40.0]
    assert result["speedSeries"]["upload"] == []
    assert len(result["outages"]) == 2
    assert result["outages"][0]["failed_checks"] == 2


def test_plot_history_writes_png(history_db: Path, tmp_path: Path) -> None:
    output = plot_history(load_history(history_db), tmp_path / "plots" / "history.png")

    assert output.exists()
    assert output.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_plot_history_leaves_pyplot_untouched(history_db: Path, tmp_path: Path) -> None:
    import matplotlib
    import matplotlib.pyplot as plt

    backend = matplotlib.rcParams["backend"]
    figures = plt.get_fignums()

    plot_history(load_history(history_db), tmp_path / "history.png")

    assert matplotlib.rcParams["backend"] == backend
    assert plt.get_fignums() == figures
