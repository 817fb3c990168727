"""Read-side helpers for looking back over a netquality database.

Provides a small API:
- load_history(db_path)
- find_outages(connectivity)
- summarize(bundle)
- export_history(bundle, output_path=None)
- plot_history(bundle, output_path)
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from math import floor, log10
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from matplotlib.axes import Axes
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from netquality.models import ThresholdCategory

OUTAGE_COLUMNS = ["start_ts", "end_ts", "failed_checks", "duration_seconds"]


@dataclass
class HistoryBundle:
    db_path: Path
    connectivity: pd.DataFrame
    speed: pd.DataFrame
    sessions: pd.DataFrame


def _read(conn: sqlite3.Connection, query: str, ts_columns: List[str]) -> pd.DataFrame:
    df = pd.read_sql_query(query, conn)
    for col in ts_columns:
        df[col] = pd.to_datetime(df[col], utc=True, format="ISO8601")
    return df


def load_history(db_path: Path) -> HistoryBundle:
    """Load every table the monitor writes into DataFrames."""
    db_path = Path(db_path)
    if not db_path.exists():
        raise FileNotFoundError(f"No database found at {db_path}. Run the monitor first.")

    with closing(sqlite3.connect(db_path)) as conn:
        connectivity = _read(
            conn,
            """
            SELECT activity_id, timestamp, url, result, elapsed_time, success
            FROM activity_connectivity
            ORDER BY timestamp ASC
            """,
            ["timestamp"],
        )
        speed = _read(
            conn,
            """
            SELECT activity_id, timestamp, download_speed, upload_speed,
                   download_threshold, upload_threshold, success, elapsed_time
            FROM activity_speed
            ORDER BY timestamp ASC
            """,
            ["timestamp"],
        )
        sessions = _read(
            conn,
            "SELECT * FROM session_activity_view ORDER BY session_id ASC",
            ["connectivity_timestamp", "speed_timestamp"],
        )

    return HistoryBundle(db_path=db_path, connectivity=connectivity, speed=speed, sessions=sessions)


def find_outages(connectivity: pd.DataFrame) -> pd.DataFrame:
    """Contiguous runs of failed connectivity checks.

    A run still open at the end of the data is reported with its last failure
    as the end.
    """
    rows: List[dict] = []
    in_outage = False
    start = end = None
    fail_count = 0

    def close_run() -> None:
        rows.append(
            {
                "start_ts": start,
                "end_ts": end,
                "failed_checks": fail_count,
                "duration_seconds": (end - start).total_seconds(),
            }
        )

    for _, row in connectivity.sort_values("timestamp").iterrows():
        if row["success"] == 0:
            if not in_outage:
                start = row["timestamp"]
                in_outage = True
                fail_count = 0
            fail_count += 1
            end = row["timestamp"]
        elif in_outage:
            close_run()
            in_outage = False
    if in_outage:
        close_run()

    return pd.DataFrame(rows, columns=OUTAGE_COLUMNS)


def _sem(std: float, n: int) -> float:
    return std / np.sqrt(max(n, 1))


def summarize(bundle: HistoryBundle) -> pd.DataFrame:
    """One-row summary of connectivity failures, outages and measured speeds."""
    connectivity = bundle.connectivity
    total = len(connectivity)
    failures = int((connectivity["success"] == 0).sum())
    outages = find_outages(connectivity)

    speed_ok = bundle.speed[bundle.speed["success"] == 1]
    download = pd.to_numeric(speed_ok["download_speed"], errors="coerce").dropna()
    upload = pd.to_numeric(speed_ok["upload_speed"], errors="coerce").dropna()

    row: Dict[str, object] = {
        "first_ts": connectivity["timestamp"].min() if total else pd.NaT,
        "last_ts": connectivity["timestamp"].max() if total else pd.NaT,
        "total_checks": total,
        "failures": failures,
        "fail_pct": 100 * failures / max(total, 1),
        "outage_events": len(outages),
        "outage_seconds": float(outages["duration_seconds"].sum()) if not outages.empty else 0.0,
        "speed_tests": len(bundle.speed),
        "speed_failures": int((bundle.speed["success"] == 0).sum()),
        "download_mean_mbps": download.mean(),
        "download_std_mbps": download.std(),
        "download_sem_mbps": _sem(download.std(), len(download)),
        "upload_mean_mbps": upload.mean(),
        "upload_std_mbps": upload.std(),
        "upload_sem_mbps": _sem(upload.std(), len(upload)),
    }

    download_counts = speed_ok["download_threshold"].value_counts()
    upload_counts = speed_ok["upload_threshold"].value_counts()
    for category in ThresholdCategory:
        row[f"download_{category.value}"] = int(download_counts.get(category.label, 0))
        row[f"upload_{category.value}"] = int(upload_counts.get(category.label, 0))

    return pd.DataFrame([row])


def _round_sigfigs(value: Optional[float], sig: int = 3) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    if value == 0:
        return 0.0
    return round(value, sig - int(floor(log10(abs(value)))) - 1)


def _jsonable(value: object) -> object:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, (np.integer, int)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, (np.floating, float)):
        return _round_sigfigs(float(value))
    return value


def export_history(bundle: HistoryBundle, output_path: Optional[Path] = None) -> Dict:
    """Export the history as a JSON-friendly dict.

    Returns a dictionary with:
    - summary: the single summary row from `summarize`
    - connectivitySeries: one point per check; failures carry a null `y`
    - speedSeries: download and upload points from successful tests
    - outages: failure runs with start/end/duration
    """
    summary = {key: _jsonable(value) for key, value in summarize(bundle).iloc[0].items()}

    connectivity_series = [
        {
            "x": row["timestamp"].isoformat(),
            "y": int(row["elapsed_time"]) if row["success"] == 1 else None,
            "url": row["url"],
            "result": row["result"],
        }
        for _, row in bundle.connectivity.iterrows()
    ]

    download_data = []
    upload_data = []
    for _, row in bundle.speed[bundle.speed["success"] == 1].iterrows():
        ts_iso = row["timestamp"].isoformat()
        download_data.append({"x": ts_iso, "y": _round_sigfigs(row["download_speed"]), "category": row["download_threshold"]})
        if pd.notna(row["upload_speed"]):
            upload_data.append({"x": ts_iso, "y": _round_sigfigs(row["upload_speed"]), "category": row["upload_threshold"]})

    outages = [
        {key: _jsonable(value) for key, value in row.items()}
        for _, row in find_outages(bundle.connectivity).iterrows()
    ]

    result = {
        "database": str(bundle.db_path),
        "summary": summary,
        "connectivitySeries": connectivity_series,
        "speedSeries": {"download": download_data, "upload": upload_data},
        "outages": outages,
    }

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(result, f, indent=2, default=str)

    return result


def _add_legend_if_handles(ax: Axes) -> None:
    handles, _ = ax.get_legend_handles_labels()
    if handles:
        ax.legend(loc="upper left")


def plot_history(bundle: HistoryBundle, output_path: Path) -> Path:
    """Response times with failure markers on top, measured Mbps below.

    Renders on its own Agg canvas; the process-wide pyplot backend is left alone.
    """
    fig = Figure(figsize=(14, 8))
    FigureCanvasAgg(fig)
    ax_conn, ax_speed = fig.subplots(2, 1, sharex=True)

    connectivity = bundle.connectivity.sort_values("timestamp")
    # NaN for failures so the line breaks across dead space.
    elapsed = connectivity["elapsed_time"].where(connectivity["success"] == 1)
    ax_conn.plot(connectivity["timestamp"], elapsed, label="response ms")
    fails = connectivity[connectivity["success"] == 0]
    if not fails.empty:
        ax_conn.scatter(fails["timestamp"], [0] * len(fails), color="tab:red", marker="x", s=25, label="failed check")
    for _, outage in find_outages(bundle.connectivity).iterrows():
        ax_conn.axvspan(outage["start_ts"], outage["end_ts"], color="tab:red", alpha=0.12, lw=0)
    ax_conn.set_ylabel("ms")
    ax_conn.set_title("Connectivity (failures at 0 ms)")
    ax_conn.grid(True)
    _add_legend_if_handles(ax_conn)

    speed_ok = bundle.speed[bundle.speed["success"] == 1].sort_values("timestamp")
    if not speed_ok.empty:
        ax_speed.plot(speed_ok["timestamp"], speed_ok["download_speed"], label="download", linestyle="-", marker="o")
        if speed_ok["upload_speed"].notna().any():
            ax_speed.plot(speed_ok["timestamp"], speed_ok["upload_speed"], label="upload", linestyle="--", marker="o")
    ax_speed.set_ylabel("Mbps")
    ax_speed.set_xlabel("Time")
    ax_speed.grid(True)
    _add_legend_if_handles(ax_speed)

    fig.tight_layout()
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path)
    return output_path
