from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteAlertDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS alerts (
                  id TEXT PRIMARY KEY,
                  subject_id TEXT NOT NULL,
                  kind TEXT NOT NULL,
                  payload_json TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'new',
                  lifecycle_json TEXT NOT NULL,
                  reviewer_notes TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS alert_transitions (
                  id TEXT PRIMARY KEY,
                  alert_id TEXT NOT NULL REFERENCES alerts(id),
                  from_status TEXT NOT NULL,
                  to_status TEXT NOT NULL,
                  reviewer_notes TEXT,
                  actor_id TEXT,
                  created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_alerts_kind_created
                  ON alerts(kind, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_alerts_subject
                  ON alerts(subject_id, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_alert_transitions_alert
                  ON alert_transitions(alert_id, created_at);
                """
            )
