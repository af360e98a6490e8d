"""
Append-only StepEvent log (workflow_events table).

Timestamps come from a per-run LogicalClock rather than the wall clock, so
a run's events are ordered and their timestamps never go backwards even
when the host clock jumps. created_at (wall clock) is kept only for the
"recent events" query.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from devlog.infrastructure.database import Database, retry_on_db_lock
from devlog.models import StepEvent
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter

logger = get_logger(__name__)


class LogicalClock:
    """Yields {date}T00:00:00.000Z, then one second later on every tick."""

    def __init__(self, date: str):
        self._origin = datetime.strptime(date, "%Y-%m-%d")
        self._ticks = 0
        self._lock = threading.Lock()

    def tick(self) -> str:
        with self._lock:
            moment = self._origin + timedelta(seconds=self._ticks)
            self._ticks += 1
        return moment.strftime("%Y-%m-%dT%H:%M:%S") + ".000Z"


class EventStore:
    """SQLite-backed event log shared by every run in the process."""

    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self.db = db
        self.clock = clock
        self._lock = threading.Lock()

    def append(
        self,
        workflow_id: str,
        event_type: str,
        step: str,
        timestamp: str,
        details: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> StepEvent:
        """
        Append one event; its sequence is the next position in the run's log.

        Side Effects:
            - Inserts one row into workflow_events
        """
        with self._lock:
            event = self._insert(workflow_id, event_type, step, timestamp, details or {}, error)
        counter(f"workflow.events.{event_type}")
        return event

    @retry_on_db_lock()
    def _insert(
        self,
        workflow_id: str,
        event_type: str,
        step: str,
        timestamp: str,
        details: dict[str, Any],
        error: str | None,
    ) -> StepEvent:
        with self.db.transaction() as conn:
            conn.execute("BEGIN IMMEDIATE")
            sequence = conn.execute(
                "SELECT COALESCE(MAX(sequence) + 1, 0) FROM workflow_events WHERE workflow_id = ?",
                (workflow_id,),
            ).fetchone()[0]
            event = StepEvent(
                type=event_type,
                step=step,
                details=details,
                error=error,
                timestamp=timestamp,
                sequence=sequence,
            )
            conn.execute(
                """
                INSERT INTO workflow_events (workflow_id, sequence, type, step, details,
                                             error, timestamp, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    workflow_id,
                    sequence,
                    event.type,
                    event.step,
                    json.dumps(event.details, default=str),
                    event.error,
                    event.timestamp,
                    self.clock(),
                ),
            )
        return event

    def list_events(self, workflow_id: str, limit: int = 500) -> list[StepEvent]:
        """Events of one run in log order."""
        rows = self.db.execute(
            "SELECT * FROM workflow_events WHERE workflow_id = ? ORDER BY sequence LIMIT ?",
            (workflow_id, limit),
        )
        return [self._row_to_event(row) for row in rows or []]

    def list_recent(self, limit: int = 50) -> list[dict[str, Any]]:
        """Newest events across all runs, each tagged with its workflowId."""
        rows = self.db.execute(
            "SELECT * FROM workflow_events ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [
            {"workflowId": row["workflow_id"], **self._row_to_event(row).to_wire()}
            for row in rows or []
        ]

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> StepEvent:
        return StepEvent(
            type=row["type"],
            step=row["step"],
            details=json.loads(row["details"] or "{}"),
            error=row["error"],
            timestamp=row["timestamp"],
            sequence=row["sequence"],
        )


class StepRecorder:
    """Writes one run's started/completed/failed events with logical timestamps."""

    def __init__(self, store: EventStore, workflow_id: str, date: str):
        self.store = store
        self.workflow_id = workflow_id
        self.clock = LogicalClock(date)

    def started(self, step: str, **details: Any) -> StepEvent:
        return self._append("started", step, details)

    def completed(self, step: str, **details: Any) -> StepEvent:
        return self._append("completed", step, details)

    def failed(self, step: str, error: BaseException | str, **details: Any) -> StepEvent:
        return self._append("failed", step, details, error=str(error))

    def _append(
        self, event_type: str, step: str, details: dict[str, Any], error: str | None = None
    ) -> StepEvent:
        event = self.store.append(
            self.workflow_id, event_type, step, self.clock.tick(), details, error
        )
        logger.debug("%s %s %s", self.workflow_id, event_type, step)
        return event
