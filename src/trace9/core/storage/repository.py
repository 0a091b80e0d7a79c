"""Trace-9 repository: CRUD operations for targets, daily logs and interventions.

The repository mediates between domain objects (UserTargets, DailyLog,
Intervention) and the SQLite database, using FieldEncryptor to
encrypt/decrypt the free-text symptom label.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from trace9.core.storage.database import TraceDatabase
from trace9.core.storage.encryption import FieldEncryptor
from trace9.core.storage.models import (
    FLAG_FIELDS,
    RAW_FIELDS,
    TARGET_FIELDS,
    DailyLog,
    Intervention,
    UserTargets,
)

logger = logging.getLogger(__name__)

_BOOL_TARGET_FIELDS = {"is_baseline_complete", "onboarding_complete"}
_LOG_FIELDS = set(RAW_FIELDS) | set(FLAG_FIELDS) | {"symptom_name"}
_INTERVENTION_FIELDS = {"hypothesis_text", "start_date", "end_date", "result", "completed_at"}


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def _flag_text(value: Any) -> str:
    """Store flag enums by their plain value ('RED', not 'Flag.RED')."""
    return getattr(value, "value", value)


class TraceRepository:
    """CRUD repository for the Trace-9 log store.

    Usage::

        db = TraceDatabase(":memory:")
        db.initialize()
        encryptor = FieldEncryptor(key="...")
        repo = TraceRepository(db, encryptor)

        repo.create_user_targets("user-1")
        log = repo.create_daily_log("user-1", {...})
        window = repo.get_daily_logs("user-1", "2026-02-01", "2026-02-08")
    """

    def __init__(self, database: TraceDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _check_columns(fields: dict[str, Any], allowed: set[str], table: str) -> None:
        unknown = set(fields) - allowed
        if unknown:
            raise RepositoryError(
                f"Unknown {table} fields: {sorted(unknown)}. Valid: {sorted(allowed)}"
            )

    # ------------------------------------------------------------------
    # User targets
    # ------------------------------------------------------------------

    def get_user_targets(self, user_id: str) -> UserTargets | None:
        row = self._db.connection.execute(
            "SELECT * FROM user_targets WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_targets(row)

    def create_user_targets(self, user_id: str, **fields: Any) -> UserTargets:
        """Create the targets row for a user (once, at onboarding).

        Raises:
            RepositoryError: If the user already has targets or a field is unknown.
        """
        self._check_columns(fields, set(TARGET_FIELDS), "user_targets")
        targets = UserTargets(id=self._new_id(), user_id=user_id, **fields)
        now = self._now_iso()

        conn = self._db.connection
        try:
            conn.execute(
                """INSERT INTO user_targets (
                    id, user_id, protein_target, gut_target, sun_target, exercise_target,
                    sleep_baseline, rhr_baseline, hrv_baseline,
                    is_baseline_complete, onboarding_complete, active_intervention_id,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    targets.id,
                    user_id,
                    targets.protein_target,
                    targets.gut_target,
                    targets.sun_target,
                    targets.exercise_target,
                    targets.sleep_baseline,
                    targets.rhr_baseline,
                    targets.hrv_baseline,
                    int(targets.is_baseline_complete),
                    int(targets.onboarding_complete),
                    targets.active_intervention_id,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(f"Targets already exist for user {user_id!r}") from exc
        conn.commit()
        logger.info("Created targets for user %s", user_id)
        return self.get_user_targets(user_id)

    def update_user_targets(self, user_id: str, fields: dict[str, Any]) -> UserTargets:
        """Apply a partial update to a user's targets.

        Raises:
            RepositoryError: If the user has no targets or a field is unknown.
        """
        self._check_columns(fields, set(TARGET_FIELDS), "user_targets")
        if self.get_user_targets(user_id) is None:
            raise RepositoryError(f"No targets for user {user_id!r}")
        if fields:
            values = [
                int(v) if k in _BOOL_TARGET_FIELDS else v for k, v in fields.items()
            ]
            # Column names are safe, validated above against known set
            assignments = ", ".join(f"{k} = ?" for k in fields)
            conn = self._db.connection
            conn.execute(
                f"UPDATE user_targets SET {assignments}, updated_at = ? WHERE user_id = ?",
                (*values, self._now_iso(), user_id),
            )
            conn.commit()
        return self.get_user_targets(user_id)

    # ------------------------------------------------------------------
    # Daily logs
    # ------------------------------------------------------------------

    def get_daily_log(self, user_id: str, date: str) -> DailyLog | None:
        row = self._db.connection.execute(
            "SELECT * FROM daily_logs WHERE user_id = ? AND date = ?", (user_id, date)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_log(row)

    def get_daily_logs(
        self,
        user_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[DailyLog]:
        """Query a user's logs with optional inclusive date bounds.

        Returns:
            Logs ordered oldest first. Callers that need ordering should
            still sort; other store implementations make no guarantee.
        """
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if start_date:
            conditions.append("date >= ?")
            params.append(start_date)
        if end_date:
            conditions.append("date <= ?")
            params.append(end_date)

        query = f"SELECT * FROM daily_logs WHERE {' AND '.join(conditions)} ORDER BY date ASC"
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_log(row) for row in rows]

    def create_daily_log(self, user_id: str, fields: dict[str, Any]) -> DailyLog:
        """Insert a fully flagged log.

        Raises:
            RepositoryError: If a log already exists for that date, or
                required values are missing.
        """
        date = fields.get("date")
        missing = [name for name in (*RAW_FIELDS, *FLAG_FIELDS) if fields.get(name) is None]
        if not date or missing:
            raise RepositoryError(f"Daily log is incomplete; missing {missing or ['date']}")

        log_id = self._new_id()
        conn = self._db.connection
        try:
            conn.execute(
                """INSERT INTO daily_logs (
                    id, user_id, date,
                    sleep, rhr, hrv, protein, gut, sun, exercise, symptom_score,
                    symptom_name_enc,
                    sleep_flag, rhr_flag, hrv_flag, protein_flag,
                    gut_flag, sun_flag, exercise_flag, symptom_flag,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    log_id,
                    user_id,
                    date,
                    *(fields[name] for name in RAW_FIELDS),
                    self._enc.encrypt(fields.get("symptom_name")),
                    *(_flag_text(fields[name]) for name in FLAG_FIELDS),
                    self._now_iso(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(f"A log already exists for {user_id!r} on {date}") from exc
        conn.commit()
        logger.info("Saved daily log %s (user=%s, date=%s)", log_id, user_id, date)
        return self._get_log_by_id(log_id)

    def update_daily_log(self, log_id: str, fields: dict[str, Any]) -> DailyLog:
        """Apply a partial update to a stored log. The date is immutable.

        Raises:
            RepositoryError: If the log does not exist or a field is unknown.
        """
        fields = {k: v for k, v in fields.items() if k not in ("id", "user_id", "date", "created_at")}
        self._check_columns(fields, _LOG_FIELDS, "daily_logs")
        if self._get_log_by_id(log_id) is None:
            raise RepositoryError(f"Daily log {log_id!r} not found")

        if fields:
            columns: list[str] = []
            values: list[Any] = []
            for name, value in fields.items():
                if name == "symptom_name":
                    columns.append("symptom_name_enc = ?")
                    values.append(self._enc.encrypt(value))
                elif name in FLAG_FIELDS:
                    columns.append(f"{name} = ?")
                    values.append(_flag_text(value))
                else:
                    columns.append(f"{name} = ?")
                    values.append(value)
            conn = self._db.connection
            conn.execute(
                f"UPDATE daily_logs SET {', '.join(columns)} WHERE id = ?",
                (*values, log_id),
            )
            conn.commit()
        return self._get_log_by_id(log_id)

    def delete_daily_log(self, log_id: str) -> bool:
        """Delete a log. Returns True if a row was removed."""
        conn = self._db.connection
        cursor = conn.execute("DELETE FROM daily_logs WHERE id = ?", (log_id,))
        conn.commit()
        if cursor.rowcount:
            logger.info("Deleted daily log %s", log_id)
        return cursor.rowcount > 0

    def _get_log_by_id(self, log_id: str) -> DailyLog | None:
        row = self._db.connection.execute(
            "SELECT * FROM daily_logs WHERE id = ?", (log_id,)
        ).fetchone()
        return self._row_to_log(row) if row is not None else None

    # ------------------------------------------------------------------
    # Interventions
    # ------------------------------------------------------------------

    def get_intervention(self, intervention_id: str) -> Intervention | None:
        row = self._db.connection.execute(
            "SELECT * FROM interventions WHERE id = ?", (intervention_id,)
        ).fetchone()
        return self._row_to_intervention(row) if row is not None else None

    def get_interventions(self, user_id: str) -> list[Intervention]:
        """All of a user's interventions, newest start date first."""
        rows = self._db.connection.execute(
            """SELECT * FROM interventions WHERE user_id = ?
               ORDER BY start_date DESC, created_at DESC""",
            (user_id,),
        ).fetchall()
        return [self._row_to_intervention(row) for row in rows]

    def get_active_intervention(self, user_id: str) -> Intervention | None:
        """The most recent non-terminal intervention, if any."""
        row = self._db.connection.execute(
            """SELECT * FROM interventions WHERE user_id = ? AND result IS NULL
               ORDER BY start_date DESC, created_at DESC LIMIT 1""",
            (user_id,),
        ).fetchone()
        return self._row_to_intervention(row) if row is not None else None

    def create_intervention(
        self,
        user_id: str,
        hypothesis_text: str,
        start_date: str,
        end_date: str,
    ) -> Intervention:
        intervention_id = self._new_id()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO interventions
               (id, user_id, hypothesis_text, start_date, end_date, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (intervention_id, user_id, hypothesis_text, start_date, end_date, self._now_iso()),
        )
        conn.commit()
        logger.info(
            "Saved intervention %s (user=%s, %s..%s)", intervention_id, user_id, start_date, end_date
        )
        return self.get_intervention(intervention_id)

    def update_intervention(self, intervention_id: str, fields: dict[str, Any]) -> Intervention:
        """Apply a partial update to an intervention.

        Raises:
            RepositoryError: If the intervention does not exist or a field is unknown.
        """
        self._check_columns(fields, _INTERVENTION_FIELDS, "interventions")
        if self.get_intervention(intervention_id) is None:
            raise RepositoryError(f"Intervention {intervention_id!r} not found")
        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            conn = self._db.connection
            conn.execute(
                f"UPDATE interventions SET {assignments} WHERE id = ?",
                (*fields.values(), intervention_id),
            )
            conn.commit()
        return self.get_intervention(intervention_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_targets(row: Any) -> UserTargets:
        return UserTargets(
            id=row["id"],
            user_id=row["user_id"],
            protein_target=row["protein_target"],
            gut_target=row["gut_target"],
            sun_target=row["sun_target"],
            exercise_target=row["exercise_target"],
            sleep_baseline=row["sleep_baseline"],
            rhr_baseline=row["rhr_baseline"],
            hrv_baseline=row["hrv_baseline"],
            is_baseline_complete=bool(row["is_baseline_complete"]),
            onboarding_complete=bool(row["onboarding_complete"]),
            active_intervention_id=row["active_intervention_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_log(self, row: Any) -> DailyLog:
        """Convert a database row to a DailyLog with the symptom label decrypted."""
        return DailyLog(
            id=row["id"],
            user_id=row["user_id"],
            date=row["date"],
            sleep=row["sleep"],
            rhr=row["rhr"],
            hrv=row["hrv"],
            protein=row["protein"],
            gut=row["gut"],
            sun=row["sun"],
            exercise=row["exercise"],
            symptom_score=row["symptom_score"],
            symptom_name=self._enc.decrypt(row["symptom_name_enc"]),
            **{name: row[name] for name in FLAG_FIELDS},
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_intervention(row: Any) -> Intervention:
        return Intervention(
            id=row["id"],
            user_id=row["user_id"],
            hypothesis_text=row["hypothesis_text"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            result=row["result"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
        )
