"""SQLite-based alert store: connection management, schema init, and CRUD.

All database operations use parameterized queries to prevent SQL injection.
The connection is opened with check_same_thread=False because the scheduler
job and request handlers share it; a lock serializes statements on it. The
schema is auto-created on first access via CREATE TABLE IF NOT EXISTS
(idempotent).
"""

import logging
import sqlite3
import threading
from datetime import datetime

from src.config import get_settings
from src.watchdog.models import WatchdogAlert

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS watchdog_alerts (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    id           TEXT NOT NULL UNIQUE,
    unit_id      TEXT NOT NULL,
    alert_type   TEXT NOT NULL,
    message      TEXT NOT NULL,
    acknowledged INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_unit_type ON watchdog_alerts(unit_id, alert_type, acknowledged);
CREATE INDEX IF NOT EXISTS idx_alerts_created ON watchdog_alerts(created_at);
"""


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.
                 Pass ":memory:" for in-memory databases (tests).

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.

    Raises:
        ValueError: If alert persistence is not configured (empty db path).
    """
    if db_path is None:
        db_path = get_settings().alert_db_path
    if not db_path:
        msg = "Alert store not configured (ALERT_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Get a connection with schema already initialized. Convenience wrapper."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn


# ---------------------------------------------------------------------------
# Alerts CRUD
# ---------------------------------------------------------------------------


def save_alert(conn: sqlite3.Connection, alert: WatchdogAlert) -> None:
    conn.execute(
        """INSERT INTO watchdog_alerts
           (id, unit_id, alert_type, message, acknowledged, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (
            alert.id,
            alert.unit_id,
            alert.alert_type,
            alert.message,
            int(alert.acknowledged),
            alert.created_at.isoformat(),
        ),
    )
    conn.commit()


def get_alert(conn: sqlite3.Connection, alert_id: str) -> WatchdogAlert | None:
    row = conn.execute("SELECT * FROM watchdog_alerts WHERE id = ?", (alert_id,)).fetchone()
    if row is None:
        return None
    return _row_to_alert(row)


def find_unacknowledged(conn: sqlite3.Connection, unit_id: str, alert_type: str) -> WatchdogAlert | None:
    """Return the open (unacknowledged) alert of ``alert_type`` for a unit, if any."""
    row = conn.execute(
        """SELECT * FROM watchdog_alerts
           WHERE unit_id = ? AND alert_type = ? AND acknowledged = 0
           ORDER BY seq DESC LIMIT 1""",
        (unit_id, alert_type),
    ).fetchone()
    if row is None:
        return None
    return _row_to_alert(row)


def acknowledge_alert(conn: sqlite3.Connection, alert_id: str) -> WatchdogAlert | None:
    """Mark an alert acknowledged. Only the flag changes; returns None if not found."""
    conn.execute("UPDATE watchdog_alerts SET acknowledged = 1 WHERE id = ?", (alert_id,))
    conn.commit()
    return get_alert(conn, alert_id)


def list_alerts(
    conn: sqlite3.Connection,
    *,
    unit_id: str | None = None,
    acknowledged: bool | None = None,
    limit: int = 50,
) -> list[WatchdogAlert]:
    """List alerts, most recent first."""
    conditions: list[str] = []
    params: list[object] = []

    if unit_id:
        conditions.append("unit_id = ?")
        params.append(unit_id)
    if acknowledged is not None:
        conditions.append("acknowledged = ?")
        params.append(int(acknowledged))

    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)
    rows = conn.execute(
        f"SELECT * FROM watchdog_alerts{where} ORDER BY created_at DESC, seq DESC LIMIT ?",
        params,
    ).fetchall()
    return [_row_to_alert(r) for r in rows]


def _row_to_alert(row: sqlite3.Row) -> WatchdogAlert:
    return WatchdogAlert(
        id=row["id"],
        unit_id=row["unit_id"],
        alert_type=row["alert_type"],
        message=row["message"],
        acknowledged=bool(row["acknowledged"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SqliteAlertStore:
    """AlertStore backed by one shared SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    @classmethod
    def open(cls, db_path: str | None = None) -> "SqliteAlertStore":
        return cls(get_initialized_connection(db_path))

    def insert(self, alert: WatchdogAlert) -> None:
        with self._lock:
            save_alert(self._conn, alert)

    def find_unacknowledged(self, unit_id: str, alert_type: str) -> WatchdogAlert | None:
        with self._lock:
            return find_unacknowledged(self._conn, unit_id, alert_type)

    def acknowledge(self, alert_id: str) -> WatchdogAlert | None:
        with self._lock:
            return acknowledge_alert(self._conn, alert_id)

    def query(
        self,
        *,
        unit_id: str | None = None,
        acknowledged: bool | None = None,
        limit: int = 50,
    ) -> list[WatchdogAlert]:
        with self._lock:
            return list_alerts(self._conn, unit_id=unit_id, acknowledged=acknowledged, limit=limit)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
