"""
Collaborator Protocols

Interfaces the workflow depends on. Each has one production implementation
in this package (GitHub, Gemini, SQLite) and an in-memory fake in the tests.

    sources/github.py      -> ActivitySource
    llm/gemini.py          -> InferenceService
    storage/settings_store -> SettingsStore
    storage/analysis_store -> PersistenceSink
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from devlog.models import DailyActivity, GlobalSynthesis, StoreResult


@dataclass(frozen=True)
class InferenceText:
    """Free-text inference result plus the session that produced it."""

    text: str
    session_id: str


@dataclass(frozen=True)
class InferenceObject:
    """Structured inference result: parsed JSON, or raw text if parsing failed. Not validated."""

    data: Any
    session_id: str


class ActivitySource(Protocol):
    def fetch_daily_activity(self, date: str) -> DailyActivity: ...


class InferenceService(Protocol):
    def generate_text(
        self,
        prompt: str,
        *,
        instructions: str,
        tools_enabled: bool = True,
        max_steps: int = 15,
    ) -> InferenceText:
        """
        Raises:
            TransientInferenceError: Retryable failure (includes the step limit)
        """
        ...

    def generate_object(
        self,
        prompt: str,
        *,
        instructions: str,
        schema_name: str,
        tools_enabled: bool = False,
    ) -> InferenceObject:
        """
        Output that is not valid JSON comes back as the raw text in data;
        llm.decoding decides what to do with it.

        Raises:
            TransientInferenceError: Retryable transport failure
        """
        ...


class SettingsStore(Protocol):
    def get_by_key(self, key: str) -> str | None: ...

    def set_by_key(self, key: str, value: str) -> None: ...


class PersistenceSink(Protocol):
    def store_analysis(self, synthesis: GlobalSynthesis, raw_data: dict[str, Any]) -> StoreResult:
        """
        Raises:
            StorageError: If the report could not be stored
        """
        ...
