"""
Key/value settings backed by the settings table.

Holds the per-agent instructions the analysis stages read at run start.
A fresh database is bootstrapped from a YAML seed file (see
devlog/data/instructions.yaml); existing values are never overwritten by a
seed unless asked.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from pathlib import Path

import yaml

from devlog.contracts import SettingsStore
from devlog.errors import ConfigurationError
from devlog.infrastructure.database import Database, retry_on_db_lock
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter

logger = get_logger(__name__)


class SQLiteSettingsStore:
    def __init__(self, db: Database):
        self.db = db

    @retry_on_db_lock()
    def get_by_key(self, key: str) -> str | None:
        row = self.db.execute("SELECT value FROM settings WHERE key = ?", (key,), fetch="one")
        return None if row is None else row["value"]

    @retry_on_db_lock()
    def set_by_key(self, key: str, value: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, time.time()),
            )

    def seed_from_yaml(self, path: Path, overwrite: bool = False) -> int:
        """
        Load settings from a YAML mapping of key -> string.

        Returns:
            Number of keys written

        Side Effects:
            - Writes to the settings table
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"settings seed {path} must be a mapping")

        written = 0
        for key, value in data.items():
            if not overwrite and self.get_by_key(str(key)) is not None:
                continue
            self.set_by_key(str(key), str(value).strip())
            written += 1

        if written:
            counter("settings.seeded", written)
            logger.info("Seeded %d settings from %s", written, path)
        return written


def load_required(store: SettingsStore, keys: Iterable[str]) -> dict[str, str]:
    """
    Fetch every key or fail.

    Raises:
        ConfigurationError: Naming the first missing or empty key
    """
    values: dict[str, str] = {}
    for key in keys:
        value = store.get_by_key(key)
        if not value:
            counter("settings.missing")
            raise ConfigurationError(
                f"Missing settings: {key}. Seed or set instructions before running analysis.",
                key=key,
            )
        values[key] = value
    return values
