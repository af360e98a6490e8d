"""
Global Synthesizer - the day's report from repository summaries and patterns.

Primary path: one structured inference call per (date, summaries, patterns,
stats), cached through the globalSynthesis ActionCache and retried by the
RetryController. The response is strictly validated; suggestions are
all-or-nothing (see GlobalSynthesis.all_or_nothing).

Fields the caller already knows are authoritative and overwrite whatever the
model returned: date, repoSummaries, crossRepoPatterns and technicalThemes
(from the PatternSet), metrics.totalCommits, metrics.totalRepos.

Fallback path: when the primary path fails for any reason other than
configuration, the report is built from the statistics alone. It goes
through the same model validation and cannot fail it.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

from devlog.config import HIGHLIGHT_REPO_LIMIT, OrchestratorConfig
from devlog.contracts import InferenceService
from devlog.errors import ConfigurationError
from devlog.infrastructure.retry import RetryController
from devlog.llm.decoding import decode_model
from devlog.llm.prompts import build_synthesis_prompt
from devlog.models import (
    ActivityStats,
    GlobalSynthesis,
    PatternSet,
    RepositoryAnalysis,
    RepoSummary,
)
from devlog.observability.logging import get_logger
from devlog.observability.structured import WorkflowEventLogger
from devlog.observability.telemetry import counter, log_event
from devlog.storage.cache import ActionCache, CacheLayer
from devlog.utils.versioning import GLOBAL_SYNTHESIS_ACTION, GLOBAL_SYNTHESIS_TAG, cache_version

logger = get_logger(__name__)

FALLBACK_NARRATIVE = (
    "Worked across {total_repos} repositories with {total_commits} commits. "
    "Key repos show momentum with meaningful progress. "
    "Cross-repo themes were identified to guide next steps."
)


def productivity_score(total_commits: int) -> int:
    """round(total_commits / 10) with halves rounded up, clamped to 1..10."""
    return max(1, min(10, math.floor(total_commits / 10 + 0.5)))


def repo_summaries(analyses: Sequence[RepositoryAnalysis]) -> list[RepoSummary]:
    return [
        RepoSummary(
            repository=a.repository,
            commit_count=a.commit_count,
            main_focus=a.main_focus,
            progress=a.progress,
        )
        for a in analyses
    ]


def fallback_synthesis(
    date: str,
    analyses: Sequence[RepositoryAnalysis],
    patterns: PatternSet,
    stats: ActivityStats,
    highlight_limit: int = HIGHLIGHT_REPO_LIMIT,
) -> GlobalSynthesis:
    """
    Build the report without inference.

    Highlights cover the first highlight_limit analyses in the order given.
    """
    return GlobalSynthesis.model_validate(
        {
            "date": date,
            "title": (
                f"Daily work • {stats.total_commits} commits across {stats.total_repos} repos"
            ),
            "narrative": FALLBACK_NARRATIVE.format(
                total_repos=stats.total_repos, total_commits=stats.total_commits
            ),
            "highlights": [
                f"{a.repository}: {a.commit_count} commits — {a.main_focus}"
                for a in analyses[:highlight_limit]
            ],
            "repoSummaries": [s.to_wire() for s in repo_summaries(analyses)],
            "crossRepoPatterns": list(patterns.patterns),
            "technicalThemes": list(patterns.themes),
            "suggestions": [],
            "metrics": {
                "totalCommits": stats.total_commits,
                "totalRepos": stats.total_repos,
                "primaryLanguages": [],
                "codeQualityTrend": "stable",
                "productivityScore": productivity_score(stats.total_commits),
            },
        }
    ).model_copy(update={"source": "fallback"})


class GlobalSynthesizer:
    def __init__(
        self,
        inference: InferenceService,
        instructions: str,
        cache_layer: CacheLayer,
        retry: RetryController,
        config: OrchestratorConfig,
        event_logger: WorkflowEventLogger | None = None,
    ):
        self.inference = inference
        self.instructions = instructions
        self.retry = retry
        self.config = config
        self.event_logger = event_logger
        self.synthesis_cache: ActionCache[dict[str, Any]] = ActionCache(
            cache_layer,
            GLOBAL_SYNTHESIS_ACTION,
            cache_version(GLOBAL_SYNTHESIS_TAG, config.model_name),
            self._compute_synthesis,
            config.cache_ttl_seconds,
        )

    def synthesize(
        self,
        date: str,
        analyses: Sequence[RepositoryAnalysis],
        patterns: PatternSet,
        stats: ActivityStats,
    ) -> GlobalSynthesis:
        """
        Produce the day's GlobalSynthesis.

        Raises:
            ConfigurationError: Propagated unchanged

        Side Effects:
            - Cached/retried inference call on the primary path
            - Increments synthesis.primary / synthesis.fallback counters
        """
        args = {
            "date": date,
            "repoSummaries": [a.compact() for a in analyses],
            "patterns": patterns.to_wire(),
            "stats": stats.to_wire(),
        }
        try:
            payload = self.retry.run_and_wait(
                self.synthesis_cache.fetch, args, name="global_synthesis"
            )
            synthesis = GlobalSynthesis.model_validate(payload["synthesis"])
        except ConfigurationError:
            raise
        except Exception as e:
            counter("synthesis.fallback")
            logger.warning("Global synthesis for %s failed, using fallback: %s", date, e)
            if self.event_logger is not None:
                self.event_logger.fallback_used("global_synthesizer", str(e))
            return fallback_synthesis(
                date, analyses, patterns, stats, self.config.highlight_repo_limit
            )

        counter("synthesis.primary")
        log_event(
            "synthesis.done",
            date=date,
            suggestions=len(synthesis.suggestions),
            session=payload.get("sessionId"),
        )
        return synthesis.model_copy(
            update={"source": "inference", "session_id": payload.get("sessionId")}
        )

    def _compute_synthesis(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """
        Cached computation: inference, strict decode, authoritative overrides.

        Raises:
            SchemaValidationError: If the response does not match the schema
        """
        analyses = [RepositoryAnalysis.model_validate(r) for r in args["repoSummaries"]]
        patterns = PatternSet.model_validate(args["patterns"])
        stats = ActivityStats.model_validate(args["stats"])

        result = self.inference.generate_object(
            build_synthesis_prompt(args["date"], analyses, patterns, stats),
            instructions=self.instructions,
            schema_name="GlobalSynthesis",
            tools_enabled=False,
        )
        decoded = decode_model(GlobalSynthesis, result.data).unwrap()

        metrics = decoded.metrics.model_copy(
            update={"total_commits": stats.total_commits, "total_repos": stats.total_repos}
        )
        synthesis = decoded.model_copy(
            update={
                "date": args["date"],
                "repo_summaries": repo_summaries(analyses),
                "cross_repo_patterns": list(patterns.patterns),
                "technical_themes": list(patterns.themes),
                "metrics": metrics,
            }
        )
        return {"synthesis": synthesis.to_wire(), "sessionId": result.session_id}
