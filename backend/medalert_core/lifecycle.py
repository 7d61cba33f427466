from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from typing import Any

from alert_store.database import SQLiteAlertDB
from alert_store.time_utils import monotonic_after

from .errors import AlertNotFound, InvalidTransitionError, PersistenceError, ReadError
from .models import KIND_SOS, STATUS_NEW, Alert

logger = logging.getLogger(__name__)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        subject_id=row["subject_id"],
        kind=row["kind"],
        payload=json.loads(row["payload_json"]),
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        reviewer_notes=row["reviewer_notes"],
        lifecycle=json.loads(row["lifecycle_json"]),
    )


class AlertLifecycleService:
    _SOS_TRANSITIONS = {
        "new": {"acknowledged", "resolved"},
        "acknowledged": {"acknowledged", "resolved"},
        "resolved": set(),
    }
    _FRAUD_TRANSITIONS = {
        "new": {"reviewing", "dismissed", "action_taken"},
        "reviewing": {"reviewing", "dismissed", "action_taken"},
        "dismissed": set(),
        "action_taken": set(),
    }

    def __init__(self, db: SQLiteAlertDB) -> None:
        self._db = db
        self._clock_lock = threading.Lock()
        self._last_stamp: str | None = None

    def _next_stamp(self) -> str:
        # Strictly increasing so alerts created in the same clock tick still order.
        with self._clock_lock:
            self._last_stamp = monotonic_after(self._last_stamp)
            return self._last_stamp

    @classmethod
    def transitions_for(cls, kind: str) -> dict[str, set[str]]:
        return cls._SOS_TRANSITIONS if kind == KIND_SOS else cls._FRAUD_TRANSITIONS

    @classmethod
    def check_transition(cls, kind: str, current: str, next_state: str) -> None:
        if next_state == STATUS_NEW:
            raise InvalidTransitionError("Alerts cannot be moved back to 'new'.")
        allowed_next = cls.transitions_for(kind).get(current, set())
        if next_state not in allowed_next:
            raise InvalidTransitionError(f"Invalid transition for {kind}: {current} -> {next_state}")

    def create(
        self,
        *,
        subject_id: str,
        kind: str,
        payload: dict[str, Any],
        alert_id: str | None = None,
    ) -> Alert:
        now = self._next_stamp()
        new_id = alert_id or uuid.uuid4().hex
        lifecycle = [STATUS_NEW]
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO alerts (
                      id, subject_id, kind, payload_json, status, lifecycle_json,
                      reviewer_notes, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)
                    """,
                    (new_id, subject_id, kind, _json_dumps(payload), STATUS_NEW, json.dumps(lifecycle), now, now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to persist {kind} alert.") from exc
        logger.info("alert created id=%s kind=%s subject=%s", new_id, kind, subject_id)
        return Alert(
            id=new_id,
            subject_id=subject_id,
            kind=kind,
            payload=dict(payload),
            status=STATUS_NEW,
            created_at=now,
            updated_at=now,
            lifecycle=lifecycle,
        )

    def exists(self, alert_id: str) -> bool:
        try:
            with self._db.connection() as conn:
                row = conn.execute("SELECT 1 FROM alerts WHERE id = ?", (alert_id,)).fetchone()
        except sqlite3.Error as exc:
            raise ReadError("Failed to read alerts.") from exc
        return row is not None

    def get(self, alert_id: str) -> Alert:
        try:
            with self._db.connection() as conn:
                row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
        except sqlite3.Error as exc:
            raise ReadError(f"Failed to read alert {alert_id}.") from exc
        if not row:
            raise AlertNotFound(alert_id)
        return _row_to_alert(row)

    def list_by_kinds(self, kinds: tuple[str, ...]) -> list[Alert]:
        placeholders = ", ".join("?" for _ in kinds)
        try:
            with self._db.connection() as conn:
                rows = conn.execute(
                    f"""
                    SELECT *
                    FROM alerts
                    WHERE kind IN ({placeholders})
                    ORDER BY created_at DESC, id DESC
                    """,
                    tuple(kinds),
                ).fetchall()
        except sqlite3.Error as exc:
            raise ReadError("Failed to read alerts.") from exc
        return [_row_to_alert(row) for row in rows]

    def transition(
        self,
        *,
        alert_id: str,
        next_state: str,
        reviewer_notes: str | None = None,
        actor_id: str | None = None,
    ) -> Alert:
        if next_state == STATUS_NEW:
            raise InvalidTransitionError("Alerts cannot be moved back to 'new'.")
        try:
            with self._db.connection() as conn:
                row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
                if not row:
                    raise AlertNotFound(alert_id)
                current = row["status"]
                self.check_transition(row["kind"], current, next_state)

                lifecycle = json.loads(row["lifecycle_json"])
                lifecycle.append(next_state)
                now = monotonic_after(row["updated_at"])
                # Last writer wins: no version check against concurrent reviewers.
                conn.execute(
                    """
                    UPDATE alerts
                    SET status = ?,
                        lifecycle_json = ?,
                        reviewer_notes = COALESCE(?, reviewer_notes),
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (next_state, json.dumps(lifecycle), reviewer_notes, now, alert_id),
                )
                conn.execute(
                    """
                    INSERT INTO alert_transitions (
                      id, alert_id, from_status, to_status, reviewer_notes, actor_id, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (uuid.uuid4().hex, alert_id, current, next_state, reviewer_notes, actor_id, now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to update alert {alert_id}.") from exc

        logger.info("alert transitioned id=%s %s -> %s", alert_id, current, next_state)
        alert = _row_to_alert(row)
        alert.status = next_state
        alert.lifecycle = lifecycle
        alert.updated_at = now
        if reviewer_notes is not None:
            alert.reviewer_notes = reviewer_notes
        return alert

    def transitions_of(self, alert_id: str) -> list[dict[str, Any]]:
        try:
            with self._db.connection() as conn:
                rows = conn.execute(
                    """
                    SELECT from_status, to_status, reviewer_notes, actor_id, created_at
                    FROM alert_transitions
                    WHERE alert_id = ?
                    ORDER BY created_at ASC
                    """,
                    (alert_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise ReadError(f"Failed to read transitions for alert {alert_id}.") from exc
        return [dict(row) for row in rows]
