"""Tests for GlobalSynthesizer: primary path, suggestion validity, fallback."""

from __future__ import annotations

import pytest
from conftest import DATE, synthesis_payload

from devlog.analysis.synthesis import GlobalSynthesizer, fallback_synthesis, productivity_score
from devlog.models import ActivityStats, PatternSet, RepositoryAnalysis


def make_analyses(n: int) -> list[RepositoryAnalysis]:
    return [
        RepositoryAnalysis(
            repository=f"acme/repo{i}",
            commit_count=10 - i,
            main_focus=f"focus {i}",
            progress=f"progress {i}",
            technical_highlights=["h"],
        )
        for i in range(n)
    ]


def stats(total_commits: int, total_repos: int) -> ActivityStats:
    return ActivityStats(
        total_commits=total_commits,
        total_repos=total_repos,
        repositories=[f"acme/repo{i}" for i in range(total_repos)],
    )


PATTERNS = PatternSet(patterns=["shared refactor"], themes=["testing"])


@pytest.fixture
def synthesizer(inference, cache_layer, retry, config):
    return GlobalSynthesizer(inference, "write the log", cache_layer, retry, config)


def test_primary_path_overrides_authoritative_fields(synthesizer, inference):
    inference.object_defaults["GlobalSynthesis"] = synthesis_payload(date="1999-01-01")
    analyses = make_analyses(2)

    synthesis = synthesizer.synthesize(DATE, analyses, PATTERNS, stats(19, 2))

    assert synthesis.source == "inference"
    assert synthesis.date == DATE
    assert synthesis.title == "A productive day"
    assert synthesis.metrics.total_commits == 19
    assert synthesis.metrics.total_repos == 2
    assert synthesis.metrics.code_quality_trend == "improving"
    assert [r.repository for r in synthesis.repo_summaries] == ["acme/repo0", "acme/repo1"]
    assert synthesis.repo_summaries[0].commit_count == 10
    assert synthesis.cross_repo_patterns == ["shared refactor"]
    assert [s.id for s in synthesis.suggestions] == ["s1"]
    assert synthesis.session_id.startswith("GlobalSynthesis-")
    assert inference.calls_for("GlobalSynthesis")[0]["tools"] is False


def test_partial_suggestion_replaced_by_empty_list(synthesizer, inference):
    inference.object_defaults["GlobalSynthesis"] = synthesis_payload(
        suggestions=[
            {"id": "s1", "title": "Good", "category": "quality", "priority": "high"},
            {"id": "s2", "title": "", "category": "quality", "priority": "high"},
        ]
    )

    synthesis = synthesizer.synthesize(DATE, make_analyses(1), PATTERNS, stats(5, 1))

    assert synthesis.source == "inference"
    assert synthesis.suggestions == []


def test_fallback_after_exhausted_retries(synthesizer, inference):
    analyses = make_analyses(9)

    synthesis = synthesizer.synthesize(DATE, analyses, PATTERNS, stats(25, 9))

    assert len(inference.calls_for("GlobalSynthesis")) == 3
    assert synthesis.source == "fallback"
    assert synthesis.date == DATE
    assert synthesis.title == "Daily work • 25 commits across 9 repos"
    assert synthesis.narrative == (
        "Worked across 9 repositories with 25 commits. "
        "Key repos show momentum with meaningful progress. "
        "Cross-repo themes were identified to guide next steps."
    )
    assert len(synthesis.highlights) == 8
    assert synthesis.highlights[0] == "acme/repo0: 10 commits — focus 0"
    assert synthesis.highlights[7] == "acme/repo7: 3 commits — focus 7"
    assert len(synthesis.repo_summaries) == 9
    assert synthesis.cross_repo_patterns == ["shared refactor"]
    assert synthesis.technical_themes == ["testing"]
    assert synthesis.suggestions == []
    assert synthesis.metrics.code_quality_trend == "stable"
    assert synthesis.metrics.productivity_score == 3
    assert synthesis.metrics.total_commits == 25
    assert synthesis.metrics.total_repos == 9


def test_schema_invalid_response_falls_back(synthesizer, inference):
    payload = synthesis_payload()
    del payload["metrics"]
    inference.object_defaults["GlobalSynthesis"] = payload

    synthesis = synthesizer.synthesize(DATE, make_analyses(1), PATTERNS, stats(3, 1))

    assert synthesis.source == "fallback"


def test_same_inputs_served_from_cache(synthesizer, inference):
    inference.object_defaults["GlobalSynthesis"] = synthesis_payload()
    analyses = make_analyses(2)

    first = synthesizer.synthesize(DATE, analyses, PATTERNS, stats(19, 2))
    second = synthesizer.synthesize(DATE, analyses, PATTERNS, stats(19, 2))

    assert first == second
    assert len(inference.calls_for("GlobalSynthesis")) == 1


def test_fallback_with_no_repositories():
    synthesis = fallback_synthesis(DATE, [], PatternSet(), stats(0, 0))

    assert synthesis.title == "Daily work • 0 commits across 0 repos"
    assert synthesis.highlights == []
    assert synthesis.repo_summaries == []
    assert synthesis.cross_repo_patterns == []
    assert synthesis.metrics.productivity_score == 1


@pytest.mark.parametrize(
    "total,score",
    [(0, 1), (4, 1), (14, 1), (15, 2), (25, 3), (54, 5), (95, 10), (100, 10), (5000, 10)],
)
def test_productivity_score(total, score):
    assert productivity_score(total) == score
