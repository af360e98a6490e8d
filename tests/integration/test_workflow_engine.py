"""
End-to-end runs of WorkflowEngine against a real SQLite database.

Inference and GitHub are faked; everything else (cache, retry controller,
event log, run store, analysis sink) is the production code.
"""

from __future__ import annotations

import json
import logging
import re

import pytest
from conftest import (
    DATE,
    FakeActivitySource,
    InMemorySettings,
    RecordingSink,
    make_activity,
    patterns_payload,
    summary_payload,
    synthesis_payload,
)

from devlog.analysis.repository import RepositoryAnalyzer
from devlog.config import INSTRUCTIONS_REPO_ANALYZER, OrchestratorConfig
from devlog.errors import ConfigurationError, StorageError
from devlog.models import DailyActivity, RunStatus, WorkflowStage
from devlog.observability.telemetry import get_counter
from devlog.storage.analysis_store import SQLiteAnalysisSink
from devlog.workflow.engine import WorkflowEngine
from devlog.workflow.events import EventStore
from devlog.workflow.runs import RunStore

BUSY_DAY = {"acme/web": 3, "acme/api": 12, "acme/cli": 1}


def summary_for_prompt(prompt: str) -> dict:
    repository = re.search(r"^Repository: (\S+)$", prompt, re.MULTILINE).group(1)
    return summary_payload(repository)


def repository_of(call: dict) -> str:
    return re.search(r"^Repository: (\S+)$", call["prompt"], re.MULTILINE).group(1)


@pytest.fixture
def scripted(inference):
    inference.object_defaults["RepositorySummary"] = summary_for_prompt
    inference.object_defaults["PatternSet"] = patterns_payload()
    inference.object_defaults["GlobalSynthesis"] = synthesis_payload()
    return inference


@pytest.fixture
def stores(db):
    return EventStore(db), RunStore(db), SQLiteAnalysisSink(db)


@pytest.fixture
def make_engine(scripted, settings_store, cache_layer, retry, stores):
    events, runs, sink = stores

    def _make(activity=None, settings=None, persistence=None):
        source = FakeActivitySource(
            make_activity(BUSY_DAY) if activity is None else activity
        )
        engine = WorkflowEngine(
            activity_source=source,
            inference=scripted,
            settings=settings or settings_store,
            sink=persistence or sink,
            cache_layer=cache_layer,
            retry=retry,
            events=events,
            runs=runs,
            config=OrchestratorConfig(model_name="test-model", batch_size=10),
        )
        return engine, source

    return _make


def event_trail(events: EventStore, workflow_id: str) -> list[tuple[str, str]]:
    return [(e.type, e.step) for e in events.list_events(workflow_id)]


def test_busy_day_runs_every_stage_in_order(make_engine, stores, scripted):
    events, runs, sink = stores
    engine, source = make_engine()

    result = engine.run(DATE, "wf_2025-01-14_abc123")

    assert source.dates == [DATE]
    assert result.workflow_id == "wf_2025-01-14_abc123"
    assert result.version == 1
    assert event_trail(events, result.workflow_id) == [
        ("started", "workflow"),
        ("started", "fetch_activity"),
        ("completed", "fetch_activity"),
        ("started", "analyze_repositories"),
        ("started", "repository_analysis:acme/api"),
        ("completed", "repository_analysis:acme/api"),
        ("started", "repository_analysis:acme/web"),
        ("completed", "repository_analysis:acme/web"),
        ("started", "repository_analysis:acme/cli"),
        ("completed", "repository_analysis:acme/cli"),
        ("completed", "analyze_repositories"),
        ("started", "pattern_detection"),
        ("completed", "pattern_detection"),
        ("started", "global_synthesis"),
        ("completed", "global_synthesis"),
        ("started", "store_result"),
        ("completed", "store_result"),
        ("completed", "workflow"),
    ]

    run = runs.get(result.workflow_id)
    assert run.status == RunStatus.COMPLETED
    assert run.stage == WorkflowStage.COMPLETED
    assert run.result.log_id == result.log_id


def test_repositories_analyzed_busiest_first(make_engine, scripted):
    engine, _ = make_engine()

    engine.run(DATE)

    summaries = scripted.calls_for("RepositorySummary")
    assert [repository_of(c) for c in summaries] == ["acme/api", "acme/web", "acme/cli"]
    # acme/api has 12 commits: two batches of at most 10
    assert len(scripted.calls_for("text")) == 4
    assert all(c["tools"] for c in scripted.calls_for("text"))


def test_event_timestamps_and_sequences_are_monotonic(make_engine, stores):
    events, _, _ = stores
    engine, _ = make_engine()

    result = engine.run(DATE)

    logged = events.list_events(result.workflow_id)
    assert [e.sequence for e in logged] == list(range(len(logged)))
    timestamps = [e.timestamp for e in logged]
    assert timestamps[0] == f"{DATE}T00:00:00.000Z"
    assert all(a < b for a, b in zip(timestamps, timestamps[1:]))


def test_stored_report_and_raw_data(make_engine, stores):
    _, _, sink = stores
    engine, _ = make_engine()

    result = engine.run(DATE)

    log = sink.get_log(result.log_id)
    assert log["date"] == DATE
    assert log["title"] == "A productive day"
    assert log["metadata"]["totalCommits"] == 16

    raw = log["rawData"]
    assert raw["workflowId"] == result.workflow_id
    assert raw["stats"]["totalCommits"] == 16
    assert raw["stats"]["totalRepos"] == 3
    assert [r["repository"] for r in raw["repoSummaries"]] == ["acme/api", "acme/web", "acme/cli"]
    assert raw["repoSummaries"][0]["commitCount"] == 12
    assert len(raw["repoSummaries"][0]["technicalHighlights"]) == 5
    assert raw["patterns"] == {"patterns": ["refactoring across services"], "themes": ["testing"]}
    assert "versions" in raw

    session_types = [s["type"] for s in raw["inferenceSessions"]]
    assert session_types == ["repository"] * 3 + ["pattern_detection", "global_synthesis"]
    assert [s.type for s in result.sessions] == session_types


def test_empty_day_stores_report_without_repository_inference(make_engine, stores, scripted):
    _, runs, sink = stores
    engine, _ = make_engine(activity=DailyActivity())

    result = engine.run(DATE)

    assert [c["kind"] for c in scripted.calls] == ["GlobalSynthesis"]
    log = sink.get_log(result.log_id)
    assert log["metadata"]["totalCommits"] == 0
    assert log["rawData"]["repoSummaries"] == []
    assert log["rawData"]["patterns"] == {"patterns": [], "themes": []}
    assert runs.get(result.workflow_id).status == RunStatus.COMPLETED


def test_one_failing_repository_is_left_out(make_engine, stores, monkeypatch):
    events, runs, sink = stores
    original = RepositoryAnalyzer.analyze

    def flaky(self, repository, *args, **kwargs):
        if repository == "acme/api":
            raise RuntimeError("boom")
        return original(self, repository, *args, **kwargs)

    monkeypatch.setattr(RepositoryAnalyzer, "analyze", flaky)
    engine, _ = make_engine()

    result = engine.run(DATE)

    raw = sink.get_log(result.log_id)["rawData"]
    assert [r["repository"] for r in raw["repoSummaries"]] == ["acme/web", "acme/cli"]
    failed = [e for e in events.list_events(result.workflow_id) if e.type == "failed"]
    assert [e.step for e in failed] == ["repository_analysis:acme/api"]
    assert "boom" in failed[0].error
    assert runs.get(result.workflow_id).status == RunStatus.COMPLETED
    assert get_counter("workflow.repository_failed") == 1


def test_failed_summary_uses_fallback_analysis(make_engine, stores, scripted):
    _, _, sink = stores
    scripted.object_defaults.pop("RepositorySummary")
    engine, _ = make_engine(activity=make_activity({"acme/web": 4}))

    result = engine.run(DATE)

    summary = sink.get_log(result.log_id)["rawData"]["repoSummaries"][0]
    assert summary["mainFocus"] == "updates and fixes"
    assert summary["progress"] == "landed 4 commits"
    assert [s.type for s in result.sessions] == ["pattern_detection", "global_synthesis"]


def test_pattern_detection_failure_is_not_fatal(make_engine, stores, scripted, caplog):
    events, runs, sink = stores
    scripted.object_defaults["PatternSet"] = "no json here"
    engine, _ = make_engine()

    with caplog.at_level(logging.INFO, logger="devlog.structured"):
        result = engine.run(DATE)

    log = sink.get_log(result.log_id)
    assert log["metadata"]["crossRepoPatterns"] == []
    assert log["metadata"]["technicalThemes"] == []
    trail = event_trail(events, result.workflow_id)
    assert ("failed", "pattern_detection") in trail
    assert ("completed", "pattern_detection") not in trail
    assert runs.get(result.workflow_id).status == RunStatus.COMPLETED

    logged = [
        json.loads(r.getMessage())
        for r in caplog.records
        if r.name == "devlog.structured"
    ]
    pattern_lines = [
        (line["event"], line.get("recovered"))
        for line in logged
        if line.get("step") == "pattern_detection"
    ]
    assert pattern_lines == [("step_failed", True)]


def test_synthesis_failure_stores_fallback_report(make_engine, stores, scripted):
    _, runs, sink = stores
    scripted.object_defaults.pop("GlobalSynthesis")
    engine, _ = make_engine(activity=make_activity({"acme/web": 3, "acme/api": 1}))

    result = engine.run(DATE)

    log = sink.get_log(result.log_id)
    assert log["title"] == "Daily work • 4 commits across 2 repos"
    assert log["metadata"]["productivityScore"] == 1
    assert [s.type for s in result.sessions] == ["repository", "repository", "pattern_detection"]
    assert runs.get(result.workflow_id).status == RunStatus.COMPLETED


def test_missing_instructions_fail_before_any_inference(make_engine, stores, scripted):
    events, runs, _ = stores
    engine, source = make_engine(
        settings=InMemorySettings({INSTRUCTIONS_REPO_ANALYZER: "analyze repositories"})
    )

    with pytest.raises(ConfigurationError):
        engine.run(DATE, "wf_2025-01-14_cfg000")

    assert scripted.calls == []
    assert source.dates == []
    run = runs.get("wf_2025-01-14_cfg000")
    assert run.status == RunStatus.FAILED
    assert run.stage == WorkflowStage.FAILED
    assert event_trail(events, "wf_2025-01-14_cfg000")[-1] == ("failed", "workflow")


def test_storage_failure_fails_the_run(make_engine, stores):
    events, runs, _ = stores
    engine, _ = make_engine(persistence=RecordingSink(fail=True))

    with pytest.raises(StorageError):
        engine.run(DATE, "wf_2025-01-14_sto000")

    run = runs.get("wf_2025-01-14_sto000")
    assert run.status == RunStatus.FAILED
    assert "disk full" in run.error
    trail = event_trail(events, "wf_2025-01-14_sto000")
    assert trail[-2:] == [("failed", "store_result"), ("failed", "workflow")]


def test_activity_fetch_failure_fails_the_run(make_engine, stores, scripted):
    events, runs, _ = stores
    engine, _ = make_engine(activity=RuntimeError("github down"))

    with pytest.raises(RuntimeError):
        engine.run(DATE, "wf_2025-01-14_gh0000")

    assert scripted.calls == []
    assert runs.get("wf_2025-01-14_gh0000").status == RunStatus.FAILED
    trail = event_trail(events, "wf_2025-01-14_gh0000")
    assert trail[-2:] == [("failed", "fetch_activity"), ("failed", "workflow")]


def test_rerun_reuses_cached_summaries_and_bumps_version(make_engine, scripted):
    engine, _ = make_engine()

    first = engine.run(DATE)
    second = engine.run(DATE)

    assert (first.version, second.version) == (1, 2)
    assert second.workflow_id != first.workflow_id
    assert len(scripted.calls_for("RepositorySummary")) == 3
    assert len(scripted.calls_for("GlobalSynthesis")) == 1
    # batch narratives and pattern detection are not cached
    assert len(scripted.calls_for("text")) == 8
    assert len(scripted.calls_for("PatternSet")) == 2
