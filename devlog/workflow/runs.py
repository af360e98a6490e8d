"""Persisted WorkflowRun state (workflow_runs table)."""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable

from devlog.infrastructure.database import Database, retry_on_db_lock
from devlog.models import RunStatus, StoreResult, WorkflowRun, WorkflowStage


class RunStore:
    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self.db = db
        self.clock = clock

    @retry_on_db_lock()
    def save(self, run: WorkflowRun) -> None:
        """
        Insert or update the run row.

        Side Effects:
            - Writes to workflow_runs
        """
        now = self.clock()
        result = json.dumps(run.result.to_wire()) if run.result is not None else None
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO workflow_runs (workflow_id, date, stage, status, error, result,
                                           created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(workflow_id) DO UPDATE SET
                    stage = excluded.stage,
                    status = excluded.status,
                    error = excluded.error,
                    result = excluded.result,
                    updated_at = excluded.updated_at
                """,
                (
                    run.workflow_id,
                    run.date,
                    run.stage.value,
                    run.status.value,
                    run.error,
                    result,
                    now,
                    now,
                ),
            )

    def get(self, workflow_id: str) -> WorkflowRun | None:
        row = self.db.execute(
            "SELECT * FROM workflow_runs WHERE workflow_id = ?", (workflow_id,), fetch="one"
        )
        return None if row is None else self._row_to_run(row)

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> WorkflowRun:
        result = json.loads(row["result"]) if row["result"] else None
        return WorkflowRun(
            workflow_id=row["workflow_id"],
            date=row["date"],
            stage=WorkflowStage(row["stage"]),
            status=RunStatus(row["status"]),
            error=row["error"],
            result=StoreResult.model_validate(result) if result else None,
        )
