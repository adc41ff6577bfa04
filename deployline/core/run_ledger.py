"""Append-only execution ledger backed by SQLite.

Holds every stage/action transition and the final status of every
pipeline execution. Rows are only ever inserted, except for the single
``finish`` update that seals an execution's terminal status.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from deployline.models.events import EventKind, TransitionEvent
from deployline.models.results import PipelineResult
from deployline.models.stages import StageStatus

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_EXECUTIONS = """
CREATE TABLE IF NOT EXISTS executions (
    execution_id   TEXT PRIMARY KEY,
    event_id       TEXT NOT NULL,
    repository     TEXT NOT NULL DEFAULT '',
    revision       TEXT NOT NULL,
    status         TEXT NOT NULL,
    error_kind     TEXT NOT NULL DEFAULT '',
    error_message  TEXT NOT NULL DEFAULT '',
    started_at     TEXT NOT NULL,
    finished_at    TEXT NOT NULL DEFAULT '',
    result_json    TEXT NOT NULL DEFAULT ''
);
"""

_CREATE_TRANSITIONS = """
CREATE TABLE IF NOT EXISTS transitions (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_id   TEXT NOT NULL,
    kind           TEXT NOT NULL,
    stage          TEXT NOT NULL DEFAULT '',
    action         TEXT NOT NULL DEFAULT '',
    status         TEXT NOT NULL,
    timestamp_utc  TEXT NOT NULL,
    details_json   TEXT NOT NULL DEFAULT '{}'
);
"""

_CREATE_IDX_TRANSITIONS = """
CREATE INDEX IF NOT EXISTS idx_transitions_execution ON transitions(execution_id, id);
"""

_CREATE_IDX_EVENTS = """
CREATE INDEX IF NOT EXISTS idx_executions_event ON executions(event_id);
"""


class ExecutionSummary(BaseModel):
    """One row of the executions table."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    event_id: str
    repository: str
    revision: str
    status: StageStatus
    error_kind: str = ""
    error_message: str = ""
    started_at: datetime
    finished_at: datetime | None = None


class RunLedger:
    """Persists transitions and final execution status.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_EXECUTIONS)
            conn.execute(_CREATE_TRANSITIONS)
            conn.execute(_CREATE_IDX_TRANSITIONS)
            conn.execute(_CREATE_IDX_EVENTS)
            conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_execution_start(
        self,
        execution_id: str,
        *,
        event_id: str,
        repository: str,
        revision: str,
        started_at: datetime,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO executions
                    (execution_id, event_id, repository, revision, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    execution_id,
                    event_id,
                    repository,
                    revision,
                    StageStatus.RUNNING.value,
                    started_at.isoformat(),
                ),
            )
            conn.commit()

    def record_execution_finish(self, result: PipelineResult) -> None:
        """Seal an execution with its terminal status and full result."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE executions
                   SET status = ?, error_kind = ?, error_message = ?,
                       finished_at = ?, result_json = ?
                 WHERE execution_id = ? AND finished_at = ''
                """,
                (
                    result.status.value,
                    result.error.kind.value if result.error else "",
                    result.error.message if result.error else "",
                    result.finished_at.isoformat(),
                    result.model_dump_json(),
                    result.execution_id,
                ),
            )
            conn.commit()

    def record_transition(self, event: TransitionEvent) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO transitions
                    (execution_id, kind, stage, action, status, timestamp_utc, details_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.execution_id,
                    event.kind.value,
                    event.stage,
                    event.action,
                    event.status.value,
                    event.timestamp_utc.isoformat(),
                    json.dumps(event.details, default=str),
                ),
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Queries (read-only)
    # ------------------------------------------------------------------

    def get_transitions(self, execution_id: str) -> list[TransitionEvent]:
        """All transitions for an execution, in recording order."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT execution_id, kind, stage, action, status, timestamp_utc, details_json
                  FROM transitions WHERE execution_id = ? ORDER BY id ASC
                """,
                (execution_id,),
            ).fetchall()
        return [
            TransitionEvent(
                execution_id=row[0],
                kind=EventKind(row[1]),
                stage=row[2],
                action=row[3],
                status=StageStatus(row[4]),
                timestamp_utc=row[5],
                details=json.loads(row[6]),
            )
            for row in rows
        ]

    def has_event(self, event_id: str) -> bool:
        """Whether an execution was ever started for trigger *event_id*."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM executions WHERE event_id = ? LIMIT 1", (event_id,)
            ).fetchone()
        return row is not None

    def get_execution(self, execution_id: str) -> ExecutionSummary | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM executions WHERE execution_id = ?", (execution_id,)
            ).fetchone()
        return self._row_to_summary(row) if row else None

    def get_result(self, execution_id: str) -> PipelineResult | None:
        """The sealed ``PipelineResult``, or None while still running."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT result_json FROM executions WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
        if not row or not row[0]:
            return None
        return PipelineResult.model_validate_json(row[0])

    def list_executions(self, limit: int = 50) -> list[ExecutionSummary]:
        """Most recent executions first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM executions ORDER BY started_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_summary(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_summary(row: tuple[Any, ...]) -> ExecutionSummary:
        (
            execution_id,
            event_id,
            repository,
            revision,
            status,
            error_kind,
            error_message,
            started_at,
            finished_at,
            _result_json,
        ) = row
        return ExecutionSummary(
            execution_id=execution_id,
            event_id=event_id,
            repository=repository,
            revision=revision,
            status=StageStatus(status),
            error_kind=error_kind,
            error_message=error_message,
            started_at=started_at,
            finished_at=finished_at or None,
        )
