"""
Database schema initialization for devlog.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from devlog.observability.logging import get_logger

logger = get_logger(__name__)

EXPECTED_TABLES = ("logs", "settings", "ai_cache", "workflow_runs", "workflow_events")


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
    - Creates the parent directory if needed
    - Creates tables and indexes that do not exist yet
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS logs (
                id TEXT PRIMARY KEY,
                date TEXT NOT NULL,
                log_type TEXT DEFAULT 'global',
                title TEXT,
                summary TEXT,
                bullets TEXT,
                raw_data TEXT,
                metadata TEXT,
                version INTEGER NOT NULL,
                created_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_logs_date ON logs(date);

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ai_cache (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL NOT NULL,
                created_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_ai_cache_expires ON ai_cache(expires_at);

            CREATE TABLE IF NOT EXISTS workflow_runs (
                workflow_id TEXT PRIMARY KEY,
                date TEXT NOT NULL,
                stage TEXT NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                result TEXT,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS workflow_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                type TEXT NOT NULL,
                step TEXT NOT NULL,
                details TEXT,
                error TEXT,
                timestamp TEXT NOT NULL,
                created_at REAL NOT NULL,
                UNIQUE(workflow_id, sequence)
            );

            CREATE INDEX IF NOT EXISTS idx_workflow_events_workflow
                ON workflow_events(workflow_id, sequence);
            CREATE INDEX IF NOT EXISTS idx_workflow_events_created
                ON workflow_events(created_at);
        """)
        conn.commit()
    finally:
        conn.close()

    logger.debug("Database schema ready at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Raises:
        ValueError: If any expected table is missing
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    present = {row[0] for row in rows}
    missing = [name for name in EXPECTED_TABLES if name not in present]
    if missing:
        raise ValueError(f"Missing tables: {', '.join(missing)}")
    return True
