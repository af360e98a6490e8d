"""
Workflow Engine - runs one day's analysis as a persisted state machine.

    started -> fetching_activity -> analyzing_repositories -> detecting_patterns
            -> synthesizing -> storing_result -> completed
    (failed is reachable from any non-terminal stage)

Every stage writes a started event on entry and a completed or failed event
on exit. Only configuration and storage problems (and bugs) end a run as
failed; everything else is recovered where it happens:

- a batch whose retries run out is skipped (RepositoryAnalyzer)
- a repository summary that fails uses the deterministic fallback
- a repository whose analysis raises anyway is logged and left out
- a pattern detection failure continues with an empty PatternSet
- a synthesis failure uses the statistics-only fallback report

Repositories are analyzed one at a time, busiest first, so a failure in one
never costs the progress already made on the others.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from devlog.analysis.patterns import PatternDetector
from devlog.analysis.repository import RepositoryAnalyzer
from devlog.analysis.synthesis import GlobalSynthesizer
from devlog.config import (
    INSTRUCTIONS_ACTIVITY_SUMMARIZER,
    INSTRUCTIONS_GLOBAL_ANALYSIS,
    INSTRUCTIONS_REPO_ANALYZER,
    REQUIRED_INSTRUCTION_KEYS,
    OrchestratorConfig,
)
from devlog.contracts import ActivitySource, InferenceService, PersistenceSink, SettingsStore
from devlog.errors import ConfigurationError, PerRepositoryError
from devlog.infrastructure.retry import RetryController
from devlog.models import (
    ActivityStats,
    DailyActivity,
    GlobalSynthesis,
    InferenceSession,
    PatternSet,
    RepositoryAnalysis,
    StoreResult,
    WorkflowResult,
    WorkflowRun,
    WorkflowStage,
)
from devlog.observability.logging import get_logger
from devlog.observability.structured import EventType, WorkflowEventLogger
from devlog.observability.telemetry import counter, time_block
from devlog.pipeline.grouping import (
    filter_for_repository,
    group_commits_by_repository,
    order_by_commit_count,
    split_into_batches,
)
from devlog.storage.cache import CacheLayer
from devlog.storage.settings_store import load_required
from devlog.utils.versioning import get_version_metadata
from devlog.workflow.events import EventStore, StepRecorder
from devlog.workflow.runs import RunStore

logger = get_logger(__name__)

WORKFLOW_STEP = "workflow"

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_workflow_id(date: str) -> str:
    """wf_{date}_{6 lowercase base36 chars}"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"wf_{date}_{suffix}"


@dataclass
class _RunContext:
    run: WorkflowRun
    recorder: StepRecorder
    event_logger: WorkflowEventLogger
    sessions: list[InferenceSession] = field(default_factory=list)


class _StageScope:
    """Handle given to a stage body; fail() records a recovered failure."""

    def __init__(self, recorder: StepRecorder, step: str):
        self.recorder = recorder
        self.step = step
        self.details: dict[str, Any] = {}
        self.closed = False
        self.error: BaseException | None = None

    def fail(self, error: BaseException) -> None:
        self.recorder.failed(self.step, error, **self.details)
        self.closed = True
        self.error = error


class WorkflowEngine:
    """Drives WorkflowRuns; one instance per process, shared by all runs."""

    def __init__(
        self,
        *,
        activity_source: ActivitySource,
        inference: InferenceService,
        settings: SettingsStore,
        sink: PersistenceSink,
        cache_layer: CacheLayer,
        retry: RetryController,
        events: EventStore,
        runs: RunStore,
        config: OrchestratorConfig | None = None,
    ):
        self.activity_source = activity_source
        self.inference = inference
        self.settings = settings
        self.sink = sink
        self.cache_layer = cache_layer
        self.retry = retry
        self.events = events
        self.runs = runs
        self.config = config or OrchestratorConfig()

    def run(self, date: str, workflow_id: str | None = None) -> WorkflowResult:
        """
        Execute the whole pipeline for one date.

        Args:
            date: YYYY-MM-DD
            workflow_id: Id assigned by the trigger; generated when omitted

        Returns:
            WorkflowResult with the stored log id and the inference sessions used

        Raises:
            ConfigurationError: Required instructions missing (before any inference)
            StorageError: The report could not be stored
            Exception: Any other unrecovered error; the run is marked failed first

        Side Effects:
            - Writes workflow_runs and workflow_events rows
            - Inference calls, cache reads/writes, one logs row on success
        """
        workflow_id = workflow_id or new_workflow_id(date)
        ctx = _RunContext(
            run=WorkflowRun(workflow_id=workflow_id, date=date),
            recorder=StepRecorder(self.events, workflow_id, date),
            event_logger=WorkflowEventLogger(workflow_id),
        )
        self.runs.save(ctx.run)
        ctx.recorder.started(WORKFLOW_STEP, date=date)
        ctx.event_logger.log_event(EventType.WORKFLOW_STARTED, date=date)
        logger.info("Workflow %s started for %s", workflow_id, date)

        try:
            with time_block("workflow.run.latency"):
                result = self._execute(ctx, date)
        except Exception as e:
            self._fail(ctx, e)
            raise

        counter("workflow.completed")
        ctx.recorder.completed(
            WORKFLOW_STEP,
            logId=result.log_id,
            version=result.version,
            sessions=len(result.sessions),
        )
        ctx.event_logger.log_event(
            EventType.WORKFLOW_COMPLETED, log_id=result.log_id, version=result.version
        )
        logger.info("Workflow %s completed: log %s v%d", workflow_id, result.log_id, result.version)
        return result

    def _execute(self, ctx: _RunContext, date: str) -> WorkflowResult:
        instructions = load_required(self.settings, REQUIRED_INSTRUCTION_KEYS)

        with self._stage(ctx, WorkflowStage.FETCHING_ACTIVITY, "fetch_activity") as stage:
            activity = self.activity_source.fetch_daily_activity(date)
            stage.details.update(
                totalCommits=activity.total_commits, totalRepos=activity.total_repos
            )

        with self._stage(ctx, WorkflowStage.ANALYZING_REPOSITORIES, "analyze_repositories") as stage:
            analyzer = RepositoryAnalyzer(
                self.inference,
                instructions[INSTRUCTIONS_REPO_ANALYZER],
                self.cache_layer,
                self.retry,
                self.config,
                ctx.event_logger,
            )
            analyses = self._analyze_repositories(ctx, analyzer, activity, date)
            stage.details.update(
                analyzed=len(analyses),
                fallbacks=sum(1 for a in analyses if a.source == "fallback"),
            )

        with self._stage(ctx, WorkflowStage.DETECTING_PATTERNS, "pattern_detection") as stage:
            detector = PatternDetector(self.inference, instructions[INSTRUCTIONS_ACTIVITY_SUMMARIZER])
            try:
                patterns = detector.detect(analyses, date)
            except Exception as e:
                counter("workflow.pattern_detection_failed")
                logger.warning("Pattern detection failed for %s, continuing: %s", date, e)
                stage.fail(e)
                patterns = PatternSet()
            if patterns.session_id:
                ctx.sessions.append(
                    InferenceSession(type="pattern_detection", session_id=patterns.session_id)
                )
            stage.details.update(patterns=len(patterns.patterns), themes=len(patterns.themes))

        stats = ActivityStats(
            total_commits=activity.total_commits,
            total_repos=activity.total_repos,
            repositories=activity.repositories,
        )
        with self._stage(ctx, WorkflowStage.SYNTHESIZING, "global_synthesis") as stage:
            synthesizer = GlobalSynthesizer(
                self.inference,
                instructions[INSTRUCTIONS_GLOBAL_ANALYSIS],
                self.cache_layer,
                self.retry,
                self.config,
                ctx.event_logger,
            )
            synthesis = synthesizer.synthesize(date, analyses, patterns, stats)
            if synthesis.session_id:
                ctx.sessions.append(
                    InferenceSession(type="global_synthesis", session_id=synthesis.session_id)
                )
            stage.details.update(source=synthesis.source)

        with self._stage(ctx, WorkflowStage.STORING_RESULT, "store_result") as stage:
            raw_data = self._raw_data(ctx, stats, analyses, patterns)
            stored = self.sink.store_analysis(synthesis, raw_data)
            stage.details.update(logId=stored.log_id, version=stored.version)

        self._complete(ctx, stored, synthesis)
        return WorkflowResult(
            workflow_id=ctx.run.workflow_id,
            log_id=stored.log_id,
            version=stored.version,
            stored=stored.stored,
            sessions=ctx.sessions,
        )

    def _analyze_repositories(
        self,
        ctx: _RunContext,
        analyzer: RepositoryAnalyzer,
        activity: DailyActivity,
        date: str,
    ) -> list[RepositoryAnalysis]:
        analyses: list[RepositoryAnalysis] = []
        groups = order_by_commit_count(group_commits_by_repository(activity.commits))

        for repository, commits in groups:
            step = f"repository_analysis:{repository}"
            ctx.recorder.started(step, commitCount=len(commits))
            try:
                analysis = analyzer.analyze(
                    repository,
                    split_into_batches(commits, self.config.batch_size),
                    date,
                    filter_for_repository(activity.pull_requests, repository),
                    filter_for_repository(activity.issues, repository),
                )
            except ConfigurationError as e:
                ctx.recorder.failed(step, e)
                raise
            except Exception as e:
                error = PerRepositoryError(repository, e)
                counter("workflow.repository_failed")
                logger.error("Excluding %s from the report: %s", repository, e)
                ctx.recorder.failed(step, error)
                ctx.event_logger.log_event(
                    EventType.REPOSITORY_SKIPPED, repository=repository, error=str(e)
                )
                continue

            ctx.recorder.completed(step, commitCount=analysis.commit_count, source=analysis.source)
            analyses.append(analysis)
            if analysis.session_id:
                ctx.sessions.append(
                    InferenceSession(
                        type="repository", session_id=analysis.session_id, repository=repository
                    )
                )
        return analyses

    def _raw_data(
        self,
        ctx: _RunContext,
        stats: ActivityStats,
        analyses: list[RepositoryAnalysis],
        patterns: PatternSet,
    ) -> dict[str, Any]:
        return {
            "stats": stats.to_wire(),
            "repoSummaries": [a.compact() for a in analyses],
            "patterns": {"patterns": patterns.patterns, "themes": patterns.themes},
            "workflowId": ctx.run.workflow_id,
            "inferenceSessions": [s.to_wire() for s in ctx.sessions],
            "versions": get_version_metadata(self.config.model_name),
        }

    @contextmanager
    def _stage(
        self, ctx: _RunContext, stage: WorkflowStage, step: str
    ) -> Iterator[_StageScope]:
        ctx.run.advance(stage)
        self.runs.save(ctx.run)
        ctx.recorder.started(step)
        ctx.event_logger.log_event(EventType.STEP_STARTED, step=step)

        scope = _StageScope(ctx.recorder, step)
        try:
            yield scope
        except Exception as e:
            if not scope.closed:
                ctx.recorder.failed(step, e, **scope.details)
            ctx.event_logger.log_event(EventType.STEP_FAILED, step=step, error=str(e))
            raise

        if scope.closed:
            ctx.event_logger.log_event(
                EventType.STEP_FAILED, step=step, error=str(scope.error), recovered=True
            )
            return
        ctx.recorder.completed(step, **scope.details)
        ctx.event_logger.log_event(EventType.STEP_COMPLETED, step=step, **scope.details)

    def _complete(self, ctx: _RunContext, stored: StoreResult, synthesis: GlobalSynthesis) -> None:
        ctx.run.complete(stored)
        self.runs.save(ctx.run)
        if synthesis.source == "fallback":
            counter("workflow.completed_with_fallback")

    def _fail(self, ctx: _RunContext, error: Exception) -> None:
        counter("workflow.failed")
        logger.error("Workflow %s failed: %s", ctx.run.workflow_id, error)
        ctx.recorder.failed(WORKFLOW_STEP, error, stage=ctx.run.stage.value)
        ctx.event_logger.log_event(
            EventType.WORKFLOW_FAILED, stage=ctx.run.stage.value, error=str(error)
        )
        if not ctx.run.is_terminal:
            ctx.run.fail(str(error))
            self.runs.save(ctx.run)
