"""SQLite database for controller schedule state and status history.

Uses WAL mode so the web dashboard can read history while the display
writes it. Each controller owns exactly one row of controller_state (keyed
by its label) and is its only writer. All functions are synchronous.
"""

import json
import sqlite3
import time
from pathlib import Path
from typing import Callable, Optional

from errors import PersistenceError
from schedule_state import ScheduleState

DB_PATH = Path(__file__).parent / "lily_data.db"


def get_connection(db_path: Path = DB_PATH) -> sqlite3.Connection:
    """Get a database connection with WAL mode and row factory."""
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path = DB_PATH):
    """Create tables if they don't exist."""
    conn = get_connection(db_path)
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS controller_state (
            key TEXT PRIMARY KEY,
            value TEXT,
            saved_at REAL
        );

        CREATE TABLE IF NOT EXISTS status_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp REAL NOT NULL,
            label TEXT NOT NULL,
            source_id INTEGER,
            event TEXT,
            level INTEGER,
            ready_at REAL
        );
        CREATE INDEX IF NOT EXISTS idx_events_label_time
            ON status_events(label, timestamp);
    """)
    conn.commit()
    conn.close()


class StateStore:
    """Durable key-value blob holding one controller's ScheduleState."""

    def __init__(self, key: str, db_path: Path = DB_PATH,
                 log: Optional[Callable] = None):
        self.key = key
        self.db_path = Path(db_path)
        self._log = log
        self._ready = False

    def _ensure_schema(self):
        if not self._ready:
            init_db(self.db_path)
            self._ready = True

    def load(self) -> Optional[ScheduleState]:
        """Return the last saved state, or None if absent or unreadable.

        A corrupt blob is treated exactly like a missing one.
        """
        try:
            self._ensure_schema()
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT value FROM controller_state WHERE key = ?",
                    (self.key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            self._warn(f"[STATE] Could not read {self.db_path}: {e}")
            return None

        if row is None:
            return None
        try:
            return ScheduleState.from_dict(json.loads(row["value"]))
        except (TypeError, ValueError) as e:
            self._warn(f"[STATE] Stored state for '{self.key}' unreadable ({e}), starting fresh")
            return None

    def save(self, state: ScheduleState):
        """Upsert the state. Idempotent; raises PersistenceError on failure."""
        try:
            self._ensure_schema()
            conn = get_connection(self.db_path)
            try:
                conn.execute(
                    "INSERT INTO controller_state (key, value, saved_at) "
                    "VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "value = excluded.value, saved_at = excluded.saved_at",
                    (self.key, json.dumps(state.to_dict()), time.time())
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            # Schema may have been lost with the file; recheck next time
            self._ready = False
            raise PersistenceError(f"could not save state '{self.key}': {e}") from e

    def set_logger(self, log: Optional[Callable]):
        """Route load warnings to log(text, style)."""
        self._log = log

    def _warn(self, text: str):
        if self._log:
            self._log(text, style="yellow")


def insert_event(label: str, event: str, level: Optional[int] = None,
                 ready_at: Optional[float] = None,
                 source_id: Optional[int] = None,
                 timestamp: Optional[float] = None,
                 db_path: Path = DB_PATH):
    """Insert one received status event."""
    conn = get_connection(db_path)
    conn.execute(
        "INSERT INTO status_events "
        "(timestamp, label, source_id, event, level, ready_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (timestamp if timestamp is not None else time.time(),
         label, source_id, event, level, ready_at)
    )
    conn.commit()
    conn.close()


def get_history(label: str = None, minutes: int = 30,
                limit: int = 500, db_path: Path = DB_PATH) -> list[dict]:
    """Get historical status events, optionally filtered by label and time window."""
    conn = get_connection(db_path)
    since = time.time() - (minutes * 60)
    if label:
        rows = conn.execute(
            "SELECT * FROM status_events "
            "WHERE label = ? AND timestamp > ? "
            "ORDER BY timestamp DESC LIMIT ?",
            (label, since, limit)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM status_events "
            "WHERE timestamp > ? "
            "ORDER BY timestamp DESC LIMIT ?",
            (since, limit)
        ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def purge_old_events(days: int = 7, db_path: Path = DB_PATH) -> int:
    """Delete events older than N days. Returns the number of rows removed."""
    conn = get_connection(db_path)
    cutoff = time.time() - (days * 86400)
    cur = conn.execute("DELETE FROM status_events WHERE timestamp < ?", (cutoff,))
    conn.commit()
    conn.close()
    return cur.rowcount
