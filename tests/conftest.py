"""
Shared fixtures and fakes.

The fakes implement the collaborator protocols in devlog.contracts so the
pipeline runs end to end without Vertex AI, GitHub, or the network.
"""

from __future__ import annotations

import copy
import itertools
import threading
from typing import Any

import pytest

from devlog.config import (
    INSTRUCTIONS_ACTIVITY_SUMMARIZER,
    INSTRUCTIONS_GLOBAL_ANALYSIS,
    INSTRUCTIONS_REPO_ANALYZER,
    OrchestratorConfig,
)
from devlog.contracts import InferenceObject, InferenceText
from devlog.errors import StorageError, TransientInferenceError
from devlog.infrastructure.database import Database
from devlog.infrastructure.retry import RetryController
from devlog.models import CommitRecord, DailyActivity, GlobalSynthesis, StoreResult
from devlog.observability.telemetry import reset_telemetry
from devlog.storage.cache import CacheLayer, MemoryCacheStore
from devlog.storage.settings_store import SQLiteSettingsStore

DATE = "2025-01-14"

INSTRUCTIONS = {
    INSTRUCTIONS_REPO_ANALYZER: "analyze repositories",
    INSTRUCTIONS_ACTIVITY_SUMMARIZER: "find patterns",
    INSTRUCTIONS_GLOBAL_ANALYSIS: "write the log",
}


# ============================================================================
# Builders
# ============================================================================


def make_commit(repository: str, n: int) -> CommitRecord:
    return CommitRecord(
        sha=f"{n:08x}" + repository.encode().hex()[:32].ljust(32, "0"),
        message=f"change {n} in {repository}",
        repository=repository,
        timestamp=f"{DATE}T10:{n % 60:02d}:00Z",
    )


def make_activity(commit_counts: dict[str, int]) -> DailyActivity:
    """Commits for each repository, interleaved in arrival order."""
    commits = [
        make_commit(repo, n) for repo, count in commit_counts.items() for n in range(count)
    ]
    return DailyActivity(
        commits=commits,
        total_commits=len(commits),
        total_repos=len(commit_counts),
        repositories=list(commit_counts),
    )


def summary_payload(repository: str, commit_count: int = 999) -> dict[str, Any]:
    return {
        "repository": repository,
        "commitCount": commit_count,
        "mainFocus": f"work on {repository}",
        "progress": "shipped the feature",
        "technicalHighlights": ["a", "b", "c", "d", "e", "f"],
        "concerns": ["flaky tests"],
        "nextSteps": ["add docs"],
    }


def patterns_payload() -> dict[str, Any]:
    return {
        "patterns": ["refactoring across services"],
        "themes": ["testing"],
        "stackTrends": ["python"],
        "methodologyInsights": [],
        "balanceAssessment": "balanced",
    }


def synthesis_payload(date: str = DATE, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "date": date,
        "title": "A productive day",
        "haiku": "commits fall like rain",
        "narrative": "Lots happened.",
        "highlights": ["one", "two"],
        "repoSummaries": [],
        "crossRepoPatterns": ["refactoring across services"],
        "technicalThemes": ["testing"],
        "suggestions": [
            {"id": "s1", "title": "Add tests", "category": "quality", "priority": "high"}
        ],
        "metrics": {
            "totalCommits": 12345,
            "totalRepos": 99,
            "primaryLanguages": ["Python"],
            "codeQualityTrend": "improving",
            "productivityScore": 7,
        },
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Fakes
# ============================================================================


class FakeInference:
    """
    Scripted InferenceService.

    Text responses are consumed in order from `texts`; object responses from
    `objects[schema_name]`. An exception instance in a queue is raised. Once
    a queue is empty the matching default is used; with no default the call
    raises TransientInferenceError.
    """

    def __init__(self) -> None:
        self.texts: list[Any] = []
        self.objects: dict[str, list[Any]] = {}
        self.default_text: str | None = "batch narrative"
        self.object_defaults: dict[str, Any] = {}
        self.calls: list[dict[str, Any]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def calls_for(self, kind: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]

    def generate_text(
        self,
        prompt: str,
        *,
        instructions: str,
        tools_enabled: bool = True,
        max_steps: int = 15,
    ) -> InferenceText:
        with self._lock:
            self.calls.append(
                {"kind": "text", "prompt": prompt, "tools": tools_enabled, "max_steps": max_steps}
            )
            item = self.texts.pop(0) if self.texts else self.default_text
            session = f"text-{next(self._ids)}"
        if item is None:
            raise TransientInferenceError("no scripted text")
        if isinstance(item, BaseException):
            raise item
        return InferenceText(text=item, session_id=session)

    def generate_object(
        self,
        prompt: str,
        *,
        instructions: str,
        schema_name: str,
        tools_enabled: bool = False,
    ) -> InferenceObject:
        with self._lock:
            self.calls.append(
                {"kind": schema_name, "prompt": prompt, "tools": tools_enabled}
            )
            queue = self.objects.get(schema_name) or []
            if queue:
                item = queue.pop(0)
            elif schema_name in self.object_defaults:
                item = self.object_defaults[schema_name]
            else:
                item = TransientInferenceError(f"no scripted {schema_name}")
            session = f"{schema_name}-{next(self._ids)}"
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(prompt)
        return InferenceObject(data=copy.deepcopy(item), session_id=session)


class FakeActivitySource:
    def __init__(self, activity: DailyActivity | Exception):
        self.activity = activity
        self.dates: list[str] = []

    def fetch_daily_activity(self, date: str) -> DailyActivity:
        self.dates.append(date)
        if isinstance(self.activity, Exception):
            raise self.activity
        return self.activity


class InMemorySettings:
    def __init__(self, values: dict[str, str] | None = None):
        self.values = dict(values or {})

    def get_by_key(self, key: str) -> str | None:
        return self.values.get(key)

    def set_by_key(self, key: str, value: str) -> None:
        self.values[key] = value


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.stored: list[tuple[GlobalSynthesis, dict[str, Any]]] = []

    def store_analysis(self, synthesis: GlobalSynthesis, raw_data: dict[str, Any]) -> StoreResult:
        if self.fail:
            raise StorageError("disk full")
        self.stored.append((synthesis, raw_data))
        return StoreResult(log_id=f"log-{len(self.stored)}", version=len(self.stored), stored=True)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_telemetry()
    yield
    reset_telemetry()


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "devlog.db", pool_size=2)
    yield database
    database.close()


@pytest.fixture
def settings_store(db):
    store = SQLiteSettingsStore(db)
    for key, value in INSTRUCTIONS.items():
        store.set_by_key(key, value)
    return store


@pytest.fixture
def retry():
    controller = RetryController(sleep_fn=lambda _: None)
    yield controller
    controller.shutdown()


@pytest.fixture
def cache_layer():
    return CacheLayer(MemoryCacheStore())


@pytest.fixture
def config():
    return OrchestratorConfig(model_name="test-model")


@pytest.fixture
def inference():
    return FakeInference()
