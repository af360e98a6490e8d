"""
Repository Analyzer - one repository's commits for a day -> RepositoryAnalysis

Two phases:
1. Batch narratives: each commit batch gets one tool-enabled text call
   (bounded to max_tool_steps rounds of tool calls), run through the
   RetryController. A batch that exhausts its retries is skipped.
2. Summary: the narratives are condensed into a RepositorySummaryPayload via
   the repoSummary ActionCache, again under the RetryController.

If the summary cannot be produced the analyzer returns the deterministic
fallback instead of raising. The only errors that escape analyze() are
ConfigurationError and bugs in the inputs themselves.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from devlog.config import OrchestratorConfig
from devlog.contracts import InferenceService
from devlog.errors import ConfigurationError, RetryExhaustedError, RetryTimeoutError
from devlog.infrastructure.retry import RetryController
from devlog.llm.decoding import decode_model
from devlog.llm.prompts import build_batch_prompt, build_summary_prompt
from devlog.models import (
    CommitRecord,
    IssueRecord,
    PullRequestRecord,
    RepositoryAnalysis,
    RepositorySummaryPayload,
)
from devlog.observability.logging import get_logger
from devlog.observability.structured import WorkflowEventLogger
from devlog.observability.telemetry import counter, log_event
from devlog.storage.cache import ActionCache, CacheLayer
from devlog.utils.versioning import REPO_SUMMARY_ACTION, REPO_SUMMARY_TAG, cache_version

logger = get_logger(__name__)

FALLBACK_MAIN_FOCUS = "updates and fixes"


def fallback_analysis(repository: str, commit_count: int) -> RepositoryAnalysis:
    """Deterministic analysis used when the summary step cannot complete."""
    return RepositoryAnalysis(
        repository=repository,
        commit_count=commit_count,
        main_focus=FALLBACK_MAIN_FOCUS,
        progress=f"landed {commit_count} commits",
        technical_highlights=[],
        concerns=[],
        next_steps=[],
        source="fallback",
    )


class RepositoryAnalyzer:
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
        self.summary_cache: ActionCache[dict[str, Any]] = ActionCache(
            cache_layer,
            REPO_SUMMARY_ACTION,
            cache_version(REPO_SUMMARY_TAG, config.model_name),
            self._compute_summary,
            config.cache_ttl_seconds,
        )

    def analyze(
        self,
        repository: str,
        commit_batches: Sequence[Sequence[CommitRecord]],
        date: str,
        pull_requests: Sequence[PullRequestRecord] = (),
        issues: Sequence[IssueRecord] = (),
    ) -> RepositoryAnalysis:
        """
        Analyze one repository.

        Args:
            repository: "owner/name"
            commit_batches: Output of split_into_batches() for this repository
            date: YYYY-MM-DD
            pull_requests: PRs touched that day in this repository
            issues: Issues touched that day in this repository

        Returns:
            RepositoryAnalysis whose commit_count is the number of commits
            in commit_batches

        Raises:
            ConfigurationError: Never retried, never downgraded

        Side Effects:
            - One inference call per batch (plus retries)
            - One cached summary call
            - Increments repository_analyzer.* counters
        """
        commit_count = sum(len(batch) for batch in commit_batches)
        narratives = self._batch_narratives(
            repository, commit_batches, date, pull_requests, issues
        )

        args = {
            "repository": repository,
            "date": date,
            "commitCount": commit_count,
            "batchNarratives": narratives,
        }
        try:
            payload = self.retry.run_and_wait(
                self.summary_cache.fetch, args, name="repository_summary"
            )
            analysis = RepositoryAnalysis.model_validate(payload["summary"])
        except ConfigurationError:
            raise
        except Exception as e:
            # Terminal error boundary for one repository
            counter("repository_analyzer.fallback")
            logger.warning("Summary for %s failed, using fallback: %s", repository, e)
            if self.event_logger is not None:
                self.event_logger.fallback_used("repository_analyzer", str(e), repository)
            return fallback_analysis(repository, commit_count)

        counter("repository_analyzer.success")
        return analysis.model_copy(
            update={
                "repository": repository,
                "commit_count": commit_count,
                "source": "inference",
                "session_id": payload.get("sessionId"),
            }
        )

    def _batch_narratives(
        self,
        repository: str,
        commit_batches: Sequence[Sequence[CommitRecord]],
        date: str,
        pull_requests: Sequence[PullRequestRecord],
        issues: Sequence[IssueRecord],
    ) -> list[str]:
        narratives: list[str] = []
        for index, batch in enumerate(commit_batches):
            prompt = build_batch_prompt(
                repository, batch, index, len(commit_batches), date, pull_requests, issues
            )
            try:
                result = self.retry.run_and_wait(
                    self.inference.generate_text,
                    prompt,
                    instructions=self.instructions,
                    tools_enabled=True,
                    max_steps=self.config.max_tool_steps,
                    name="repository_batch",
                )
            except (RetryExhaustedError, RetryTimeoutError) as e:
                counter("repository_analyzer.batch_skipped")
                logger.warning(
                    "Skipping batch %d/%d of %s: %s", index + 1, len(commit_batches), repository, e
                )
                if self.event_logger is not None:
                    self.event_logger.batch_skipped(repository, index, str(e))
                continue

            narratives.append(result.text)
            log_event(
                "repository_analyzer.batch_done",
                repository=repository,
                batch=index,
                session=result.session_id,
            )
        return narratives

    def _compute_summary(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """
        Cached computation: one structured call, strictly validated.

        Raises:
            SchemaValidationError: If the response does not match the schema
                (retried by the controller, never cached)
        """
        prompt = build_summary_prompt(
            args["repository"], args["date"], args["commitCount"], args["batchNarratives"]
        )
        result = self.inference.generate_object(
            prompt,
            instructions=self.instructions,
            schema_name="RepositorySummary",
            tools_enabled=False,
        )
        payload = decode_model(RepositorySummaryPayload, result.data).unwrap()
        return {"summary": payload.to_wire(), "sessionId": result.session_id}
