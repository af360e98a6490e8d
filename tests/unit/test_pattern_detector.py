"""Tests for PatternDetector defaulting and hard-failure behavior."""

from __future__ import annotations

import pytest
from conftest import DATE, patterns_payload

from devlog.analysis.patterns import PatternDetector
from devlog.errors import PatternDetectionError
from devlog.models import PatternSet, RepositoryAnalysis


def analyses():
    return [
        RepositoryAnalysis(
            repository="acme/web", commit_count=3, main_focus="auth", progress="done"
        ),
        RepositoryAnalysis(
            repository="acme/api", commit_count=1, main_focus="api", progress="started"
        ),
    ]


@pytest.fixture
def detector(inference):
    return PatternDetector(inference, "find patterns")


def test_empty_input_skips_inference(detector, inference):
    assert detector.detect([], DATE) == PatternSet()
    assert inference.calls == []


def test_detects_patterns_without_tools(detector, inference):
    inference.object_defaults["PatternSet"] = patterns_payload()

    patterns = detector.detect(analyses(), DATE)

    assert patterns.patterns == ["refactoring across services"]
    assert patterns.stack_trends == ["python"]
    assert patterns.session_id.startswith("PatternSet-")
    call = inference.calls_for("PatternSet")[0]
    assert call["tools"] is False
    assert "acme/web" in call["prompt"]
    assert "acme/api" in call["prompt"]


def test_missing_fields_are_defaulted(detector, inference):
    inference.object_defaults["PatternSet"] = {"themes": ["testing"], "patterns": None}

    patterns = detector.detect(analyses(), DATE)

    assert patterns.patterns == []
    assert patterns.themes == ["testing"]
    assert patterns.methodology_insights == []
    assert patterns.balance_assessment == ""


def test_unparseable_response_raises(detector, inference):
    inference.object_defaults["PatternSet"] = "the model rambled without JSON"

    with pytest.raises(PatternDetectionError):
        detector.detect(analyses(), DATE)


def test_non_object_response_raises(detector, inference):
    inference.object_defaults["PatternSet"] = ["a", "b"]

    with pytest.raises(PatternDetectionError):
        detector.detect(analyses(), DATE)
