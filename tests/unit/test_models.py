"""Tests for model invariants: suggestions, run state machine, compact summaries."""

from __future__ import annotations

import pytest
from conftest import synthesis_payload

from devlog.errors import WorkflowStateError
from devlog.models import (
    GlobalSynthesis,
    RepositoryAnalysis,
    RunStatus,
    StoreResult,
    WorkflowRun,
    WorkflowStage,
)
from devlog.observability.telemetry import get_counter

FORWARD = [
    WorkflowStage.FETCHING_ACTIVITY,
    WorkflowStage.ANALYZING_REPOSITORIES,
    WorkflowStage.DETECTING_PATTERNS,
    WorkflowStage.SYNTHESIZING,
    WorkflowStage.STORING_RESULT,
]


def finished_run() -> WorkflowRun:
    run = WorkflowRun(workflow_id="wf_2025-01-14_abc123", date="2025-01-14")
    for stage in FORWARD:
        run.advance(stage)
    run.complete(StoreResult(log_id="l1", version=1, stored=True))
    return run


class TestSuggestions:
    def test_complete_suggestions_kept(self):
        synthesis = GlobalSynthesis.model_validate(synthesis_payload())
        assert [s.id for s in synthesis.suggestions] == ["s1"]

    def test_one_partial_suggestion_empties_the_list(self):
        payload = synthesis_payload(
            suggestions=[
                {"id": "s1", "title": "Add tests", "category": "quality", "priority": "high"},
                {"id": "s2", "title": "Half done", "category": "", "priority": "low"},
            ]
        )
        synthesis = GlobalSynthesis.model_validate(payload)
        assert synthesis.suggestions == []
        assert get_counter("synthesis.suggestions_rejected") == 1

    def test_missing_field_empties_the_list(self):
        payload = synthesis_payload(suggestions=[{"id": "s1", "title": "No category"}])
        assert GlobalSynthesis.model_validate(payload).suggestions == []

    def test_blank_field_empties_the_list(self):
        payload = synthesis_payload(
            suggestions=[{"id": " ", "title": "t", "category": "c", "priority": "p"}]
        )
        assert GlobalSynthesis.model_validate(payload).suggestions == []

    def test_missing_suggestions_default_to_empty(self):
        payload = synthesis_payload()
        del payload["suggestions"]
        assert GlobalSynthesis.model_validate(payload).suggestions == []

    def test_wire_format_is_camel_case(self):
        wire = GlobalSynthesis.model_validate(synthesis_payload()).to_wire()
        assert "repoSummaries" in wire
        assert "codeQualityTrend" in wire["metrics"]
        assert "source" not in wire
        assert "sessionId" not in wire


class TestWorkflowRun:
    def test_forward_transitions(self):
        run = finished_run()
        assert run.stage == WorkflowStage.COMPLETED
        assert run.status == RunStatus.COMPLETED
        assert run.result.log_id == "l1"
        assert run.is_terminal

    def test_skipping_a_stage_is_rejected(self):
        run = WorkflowRun(workflow_id="wf", date="2025-01-14")
        with pytest.raises(WorkflowStateError):
            run.advance(WorkflowStage.SYNTHESIZING)

    def test_fail_from_any_stage(self):
        run = WorkflowRun(workflow_id="wf", date="2025-01-14")
        run.advance(WorkflowStage.FETCHING_ACTIVITY)
        run.fail("boom")
        assert run.stage == WorkflowStage.FAILED
        assert run.status == RunStatus.FAILED
        assert run.error == "boom"

    def test_completed_run_is_immutable(self):
        run = finished_run()
        with pytest.raises(WorkflowStateError):
            run.fail("late error")
        with pytest.raises(WorkflowStateError):
            run.advance(WorkflowStage.FETCHING_ACTIVITY)
        assert run.status == RunStatus.COMPLETED

    def test_failed_run_is_immutable(self):
        run = WorkflowRun(workflow_id="wf", date="2025-01-14")
        run.fail("boom")
        with pytest.raises(WorkflowStateError):
            run.fail("again")
        with pytest.raises(WorkflowStateError):
            run.complete(StoreResult(log_id="l", version=1, stored=True))
        assert run.error == "boom"


def test_compact_summary_trims_lists():
    analysis = RepositoryAnalysis(
        repository="acme/web",
        commit_count=4,
        main_focus="f",
        progress="p",
        technical_highlights=[str(i) for i in range(8)],
        concerns=["a", "b", "c", "d"],
        next_steps=["x", "y", "z", "w"],
        session_id="s",
    )
    compact = analysis.compact()
    assert compact["technicalHighlights"] == ["0", "1", "2", "3", "4"]
    assert compact["concerns"] == ["a", "b", "c"]
    assert compact["nextSteps"] == ["x", "y", "z"]
    assert "stats" not in compact
    assert "sessionId" not in compact
