"""
Process-wide wiring.

build_orchestrator() constructs every collaborator exactly once, from an
explicit OrchestratorConfig, and hands them to the WorkflowEngine. The API
and the CLI each hold one Orchestrator; nothing here is a module-level
singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from devlog.config import INSTRUCTIONS_SEED_PATH, OrchestratorConfig
from devlog.contracts import ActivitySource, InferenceService
from devlog.infrastructure.database import Database
from devlog.infrastructure.retry import PollPolicy, RetryController
from devlog.observability.logging import get_logger
from devlog.storage.analysis_store import SQLiteAnalysisSink
from devlog.storage.cache import CacheLayer, CacheStore, SQLiteCacheStore
from devlog.storage.settings_store import SQLiteSettingsStore
from devlog.workflow.engine import WorkflowEngine
from devlog.workflow.events import EventStore
from devlog.workflow.runs import RunStore
from devlog.workflow.trigger import WorkflowLauncher

logger = get_logger(__name__)


@dataclass
class Orchestrator:
    config: OrchestratorConfig
    db: Database
    settings: SQLiteSettingsStore
    sink: SQLiteAnalysisSink
    cache_layer: CacheLayer
    retry: RetryController
    events: EventStore
    runs: RunStore
    engine: WorkflowEngine
    launcher: WorkflowLauncher

    def close(self) -> None:
        """Stop background workers and close pooled connections."""
        self.launcher.shutdown(wait=True)
        self.retry.shutdown(wait=True)
        self.db.close()


def build_retry_controller(config: OrchestratorConfig) -> RetryController:
    return RetryController(
        initial_backoff=config.retry_initial_backoff,
        base=config.retry_backoff_base,
        max_failures=config.retry_max_failures,
        poll_policy=PollPolicy(
            initial_interval=config.poll_initial_interval,
            step=config.poll_step,
            max_interval=config.poll_max_interval,
            max_polls=config.poll_max_polls,
        ),
        max_workers=config.retry_max_workers,
    )


def _default_collaborators(config: OrchestratorConfig) -> tuple[ActivitySource, InferenceService]:
    from devlog.llm.gemini import GeminiInferenceService
    from devlog.sources.github import GitHubActivitySource, GitHubClient, GitHubTools

    client = GitHubClient()
    inference = GeminiInferenceService(
        tools=GitHubTools(client).specs(), model_name=config.model_name
    )
    return GitHubActivitySource(client), inference


def build_orchestrator(
    config: OrchestratorConfig | None = None,
    *,
    db_path: Path | str | None = None,
    activity_source: ActivitySource | None = None,
    inference: InferenceService | None = None,
    cache_store: CacheStore | None = None,
    retry: RetryController | None = None,
    seed_path: Path | None = INSTRUCTIONS_SEED_PATH,
) -> Orchestrator:
    """
    Build the orchestrator for this process.

    Args:
        config: Pipeline policy (OrchestratorConfig.from_env() when omitted)
        db_path: SQLite file (DEVLOG_DB_PATH or data/devlog.db when omitted)
        activity_source: Defaults to the GitHub activity source
        inference: Defaults to Gemini with the GitHub tools attached
        cache_store: Defaults to the ai_cache table
        retry: Defaults to a RetryController built from config
        seed_path: YAML instructions loaded into empty settings keys

    Side Effects:
        - Creates the database schema if needed
        - Seeds missing instruction settings from seed_path
    """
    config = config or OrchestratorConfig.from_env()
    db = Database(db_path)

    settings = SQLiteSettingsStore(db)
    if seed_path is not None and Path(seed_path).exists():
        settings.seed_from_yaml(Path(seed_path))

    if activity_source is None or inference is None:
        default_source, default_inference = _default_collaborators(config)
        activity_source = activity_source or default_source
        inference = inference or default_inference

    sink = SQLiteAnalysisSink(db)
    cache_layer = CacheLayer(cache_store or SQLiteCacheStore(db), config.cache_ttl_seconds)
    cache_layer.purge_expired()
    retry = retry or build_retry_controller(config)
    events = EventStore(db)
    runs = RunStore(db)
    engine = WorkflowEngine(
        activity_source=activity_source,
        inference=inference,
        settings=settings,
        sink=sink,
        cache_layer=cache_layer,
        retry=retry,
        events=events,
        runs=runs,
        config=config,
    )
    logger.info("Orchestrator ready (db=%s, model=%s)", db.db_path, config.model_name)
    return Orchestrator(
        config=config,
        db=db,
        settings=settings,
        sink=sink,
        cache_layer=cache_layer,
        retry=retry,
        events=events,
        runs=runs,
        engine=engine,
        launcher=WorkflowLauncher(engine),
    )
