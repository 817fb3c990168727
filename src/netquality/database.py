from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from netquality.models import CleanupStats, ConnectivityResult, DatabaseError, SpeedResult

SCHEMA = """
CREATE TABLE IF NOT EXISTS activity_connectivity (
    activity_id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    url TEXT NOT NULL,
    result TEXT NOT NULL,
    elapsed_time INTEGER NOT NULL,
    success INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS activity_speed (
    activity_id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    download_speed REAL NOT NULL,
    upload_speed REAL,
    download_threshold TEXT NOT NULL,
    upload_threshold TEXT,
    success INTEGER NOT NULL,
    elapsed_time INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS sessions (
    session_id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_session_id INTEGER,
    connectivity_id INTEGER,
    speed_id INTEGER,
    FOREIGN KEY(connectivity_id) REFERENCES activity_connectivity(activity_id),
    FOREIGN KEY(speed_id) REFERENCES activity_speed(activity_id),
    FOREIGN KEY(parent_session_id) REFERENCES sessions(session_id)
);
CREATE VIEW IF NOT EXISTS session_activity_view AS
SELECT
    s.session_id,
    s.parent_session_id,
    c.timestamp AS connectivity_timestamp,
    c.url AS connectivity_url,
    c.result AS connectivity_result,
    c.elapsed_time AS connectivity_elapsed_time,
    c.success AS connectivity_success,
    sp.timestamp AS speed_timestamp,
    sp.download_speed,
    sp.upload_speed,
    sp.download_threshold,
    sp.upload_threshold,
    sp.success AS speed_success,
    sp.elapsed_time AS speed_elapsed_time
FROM sessions s
LEFT JOIN activity_connectivity c ON c.activity_id = s.connectivity_id
LEFT JOIN activity_speed sp ON sp.activity_id = s.speed_id;
"""


class Database:
    def __init__(self, path: Path, check_same_thread: bool = False) -> None:
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.path, check_same_thread=check_same_thread)
            self.conn.row_factory = sqlite3.Row
            self._init_db()
        except (OSError, sqlite3.Error) as exc:
            raise DatabaseError(f"Failed to initialize SQLite database at {self.path}: {exc}") from exc

    def _init_db(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def insert_connectivity(self, result: ConnectivityResult) -> int:
        return self._insert(
            "connectivity activity",
            """
            INSERT INTO activity_connectivity (timestamp, url, result, elapsed_time, success)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                result.timestamp.isoformat(),
                result.url,
                result.result,
                int(result.elapsed_ms),
                int(result.success),
            ),
        )

    def insert_speed(self, result: SpeedResult) -> int:
        return self._insert(
            "speed activity",
            """
            INSERT INTO activity_speed (
                timestamp, download_speed, upload_speed, download_threshold,
                upload_threshold, success, elapsed_time
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                result.timestamp.isoformat(),
                result.download_mbps,
                result.upload_mbps,
                result.download_threshold.label,
                result.upload_threshold.label if result.upload_threshold else None,
                int(result.success),
                int(result.elapsed_ms),
            ),
        )

    def insert_session(
        self,
        connectivity_id: Optional[int],
        speed_id: Optional[int],
        parent_session_id: Optional[int] = None,
    ) -> int:
        return self._insert(
            "session",
            "INSERT INTO sessions (parent_session_id, connectivity_id, speed_id) VALUES (?, ?, ?)",
            (parent_session_id, connectivity_id, speed_id),
        )

    def _insert(self, what: str, sql: str, params: tuple) -> int:
        try:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to store {what}: {exc}") from exc
        return int(cur.lastrowid)

    def fetch_connectivity(self, activity_id: int) -> Optional[sqlite3.Row]:
        cur = self.conn.execute(
            """
            SELECT activity_id, timestamp, url, result, elapsed_time, success
            FROM activity_connectivity
            WHERE activity_id = ?
            """,
            (activity_id,),
        )
        return cur.fetchone()

    def fetch_speed(self, activity_id: int) -> Optional[sqlite3.Row]:
        cur = self.conn.execute(
            """
            SELECT activity_id, timestamp, download_speed, upload_speed, download_threshold,
                   upload_threshold, success, elapsed_time
            FROM activity_speed
            WHERE activity_id = ?
            """,
            (activity_id,),
        )
        return cur.fetchone()

    def fetch_recent_sessions(self, limit: int = 200) -> List[sqlite3.Row]:
        cur = self.conn.execute(
            """
            SELECT *
            FROM session_activity_view
            ORDER BY session_id DESC
            LIMIT ?
            """,
            (limit,),
        )
        rows = cur.fetchall()
        rows.reverse()
        return rows

    def cleanup(self, retention: timedelta, now: Optional[datetime] = None) -> CleanupStats:
        """Delete history older than `retention`.

        Sessions go first when every activity they reference is older than the
        cutoff; activity rows are only removed once no session references them.
        """
        cutoff = ((now or datetime.now(timezone.utc)) - retention).isoformat()
        try:
            with self.conn:
                sessions_deleted = self.conn.execute(
                    """
                    DELETE FROM sessions
                    WHERE session_id IN (
                        SELECT s.session_id
                        FROM sessions s
                        LEFT JOIN activity_connectivity c ON c.activity_id = s.connectivity_id
                        LEFT JOIN activity_speed sp ON sp.activity_id = s.speed_id
                        WHERE (c.timestamp IS NULL OR c.timestamp < ?)
                          AND (sp.timestamp IS NULL OR sp.timestamp < ?)
                    )
                    """,
                    (cutoff, cutoff),
                ).rowcount
                connectivity_deleted = self.conn.execute(
                    """
                    DELETE FROM activity_connectivity
                    WHERE timestamp < ?
                      AND activity_id NOT IN (
                          SELECT connectivity_id FROM sessions WHERE connectivity_id IS NOT NULL
                      )
                    """,
                    (cutoff,),
                ).rowcount
                speed_deleted = self.conn.execute(
                    """
                    DELETE FROM activity_speed
                    WHERE timestamp < ?
                      AND activity_id NOT IN (
                          SELECT speed_id FROM sessions WHERE speed_id IS NOT NULL
                      )
                    """,
                    (cutoff,),
                ).rowcount
        except sqlite3.Error as exc:
            raise DatabaseError(f"Database cleanup failed: {exc}") from exc

        return CleanupStats(
            sessions_deleted=sessions_deleted,
            connectivity_deleted=connectivity_deleted,
            speed_deleted=speed_deleted,
        )

    def close(self) -> None:
        try:
            self.conn.close()
        except sqlite3.Error:
            pass
