"""
Persistence sink for finished daily reports (logs table).

Each stored report gets version = 1 + the number of reports already stored
for its date, so re-running a day keeps earlier versions.
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from collections.abc import Callable
from typing import Any

from devlog.errors import StorageError
from devlog.infrastructure.database import Database, retry_on_db_lock
from devlog.models import GlobalSynthesis, StoreResult
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event

logger = get_logger(__name__)


def build_metadata(synthesis: GlobalSynthesis, version: int) -> dict[str, Any]:
    wire = synthesis.to_wire()
    return {
        "totalCommits": synthesis.metrics.total_commits,
        "totalRepos": synthesis.metrics.total_repos,
        "languages": synthesis.metrics.primary_languages,
        "topProjects": [r.repository for r in synthesis.repo_summaries],
        "crossRepoPatterns": synthesis.cross_repo_patterns,
        "technicalThemes": synthesis.technical_themes,
        "codeQualityTrend": synthesis.metrics.code_quality_trend,
        "productivityScore": synthesis.metrics.productivity_score,
        "repoSummaries": wire["repoSummaries"],
        "suggestions": wire.get("suggestions", []),
        "haiku": synthesis.haiku,
        "version": version,
    }


class SQLiteAnalysisSink:
    """PersistenceSink writing to the logs table."""

    def __init__(
        self,
        db: Database,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.db = db
        self.clock = clock
        self.id_factory = id_factory

    def store_analysis(self, synthesis: GlobalSynthesis, raw_data: dict[str, Any]) -> StoreResult:
        """
        Raises:
            StorageError: On any database failure

        Side Effects:
            - Inserts one row into logs
        """
        try:
            result = self._insert(synthesis, raw_data)
        except sqlite3.Error as e:
            counter("storage.store_analysis.error")
            logger.error("Failed to store analysis for %s: %s", synthesis.date, e)
            raise StorageError(f"failed to store analysis for {synthesis.date}: {e}") from e

        counter("storage.store_analysis.success")
        log_event("storage.analysis_stored", date=synthesis.date, version=result.version)
        return result

    @retry_on_db_lock()
    def _insert(self, synthesis: GlobalSynthesis, raw_data: dict[str, Any]) -> StoreResult:
        log_id = self.id_factory()
        with self.db.transaction() as conn:
            # IMMEDIATE takes the write lock before counting so versions never collide
            conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute(
                "SELECT COUNT(*) FROM logs WHERE date = ?", (synthesis.date,)
            ).fetchone()[0]
            version = existing + 1
            conn.execute(
                """
                INSERT INTO logs (id, date, log_type, title, summary, bullets, raw_data,
                                  metadata, version, created_at)
                VALUES (?, ?, 'global', ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    log_id,
                    synthesis.date,
                    synthesis.title,
                    synthesis.narrative,
                    json.dumps(synthesis.highlights),
                    json.dumps(raw_data),
                    json.dumps(build_metadata(synthesis, version)),
                    version,
                    self.clock(),
                ),
            )
        return StoreResult(log_id=log_id, version=version, stored=True)

    def get_log(self, log_id: str) -> dict[str, Any] | None:
        row = self.db.execute("SELECT * FROM logs WHERE id = ?", (log_id,), fetch="one")
        return None if row is None else self._row_to_dict(row)

    def list_logs(
        self, start_date: str | None = None, end_date: str | None = None, limit: int = 30
    ) -> list[dict[str, Any]]:
        """Reports with start_date <= date <= end_date, newest date and version first."""
        clauses: list[str] = []
        params: list[Any] = []
        if start_date:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("date <= ?")
            params.append(end_date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.execute(
            f"SELECT * FROM logs {where} ORDER BY date DESC, version DESC LIMIT ?",
            (*params, limit),
            fetch="all",
        )
        return [self._row_to_dict(row) for row in rows or []]

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "logId": row["id"],
            "date": row["date"],
            "logType": row["log_type"],
            "title": row["title"],
            "summary": row["summary"],
            "bullets": json.loads(row["bullets"] or "[]"),
            "rawData": json.loads(row["raw_data"] or "null"),
            "metadata": json.loads(row["metadata"] or "null"),
            "version": row["version"],
            "createdAt": row["created_at"],
        }
