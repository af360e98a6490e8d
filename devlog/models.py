"""
Domain models for the daily analysis pipeline.

Attributes are snake_case in Python and camelCase on the wire (JSON stored in
SQLite, HTTP responses, and the JSON the inference service is asked to
return). Both spellings are accepted on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from devlog.errors import WorkflowStateError
from devlog.observability.telemetry import counter


class DevlogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Activity
# ============================================================================


class CommitRecord(DevlogModel):
    """One commit as reported by the activity source."""

    model_config = ConfigDict(frozen=True)

    sha: str
    message: str
    repository: str
    timestamp: str
    author: str = ""
    url: str = ""


class PullRequestRecord(DevlogModel):
    model_config = ConfigDict(frozen=True)

    number: int = 0
    title: str = ""
    repository: str
    state: str = "unknown"
    url: str = ""


class IssueRecord(DevlogModel):
    model_config = ConfigDict(frozen=True)

    number: int = 0
    title: str = ""
    repository: str
    state: str = "unknown"
    url: str = ""


class DailyActivity(DevlogModel):
    """A day's worth of activity across every repository the user touched."""

    commits: list[CommitRecord] = Field(default_factory=list)
    pull_requests: list[PullRequestRecord] = Field(default_factory=list)
    issues: list[IssueRecord] = Field(default_factory=list)
    total_commits: int = 0
    total_repos: int = 0
    repositories: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> DailyActivity:
        return cls()


class ActivityStats(DevlogModel):
    total_commits: int
    total_repos: int
    repositories: list[str] = Field(default_factory=list)


# ============================================================================
# Repository analysis
# ============================================================================


class RepositoryStats(DevlogModel):
    total_additions: int = 0
    total_deletions: int = 0
    files_changed: int = 0


class RepositorySummaryPayload(DevlogModel):
    """Shape the inference service must return for a repository summary."""

    repository: str
    commit_count: int
    main_focus: str
    progress: str
    technical_highlights: list[str]
    concerns: list[str]
    next_steps: list[str]


class RepositoryAnalysis(DevlogModel):
    """
    Summary of one repository's day.

    commit_count is always the number of commits actually analyzed, whatever
    the inference service claimed.
    """

    repository: str
    commit_count: int
    main_focus: str
    progress: str
    technical_highlights: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    stats: RepositoryStats | None = None

    # Observability only; never persisted
    source: Literal["inference", "fallback"] = Field(default="inference", exclude=True)
    session_id: str | None = Field(default=None, exclude=True)

    def compact(self) -> dict[str, Any]:
        """Key metadata kept in rawData alongside the stored report."""
        data: dict[str, Any] = {
            "repository": self.repository,
            "commitCount": self.commit_count,
            "mainFocus": self.main_focus,
            "progress": self.progress,
            "technicalHighlights": self.technical_highlights[:5],
            "concerns": self.concerns[:3],
            "nextSteps": self.next_steps[:3],
        }
        if self.stats is not None:
            data["stats"] = self.stats.to_wire()
        return data


class PatternSet(DevlogModel):
    """Cross-repository patterns. Never null: arrays default to [] and text to ""."""

    patterns: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    stack_trends: list[str] = Field(default_factory=list)
    methodology_insights: list[str] = Field(default_factory=list)
    balance_assessment: str = ""

    session_id: str | None = Field(default=None, exclude=True)


# ============================================================================
# Global synthesis
# ============================================================================


class RepoSummary(DevlogModel):
    repository: str
    commit_count: int
    main_focus: str
    progress: str


class Suggestion(DevlogModel):
    """An actionable suggestion. The four identifying fields must all be non-empty."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    priority: str = Field(..., min_length=1)
    estimated_effort: str | None = None
    rationale: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    prompt: str | None = None
    context_files: list[str] = Field(default_factory=list)
    related_commits: list[str] = Field(default_factory=list)

    @field_validator("id", "title", "category", "priority")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class SynthesisMetrics(DevlogModel):
    total_commits: int
    total_repos: int
    primary_languages: list[str] = Field(default_factory=list)
    code_quality_trend: Literal["improving", "stable", "declining"]
    productivity_score: int | float


class GlobalSynthesis(DevlogModel):
    """The day's report."""

    date: str
    title: str
    haiku: str | None = None
    narrative: str
    highlights: list[str]
    repo_summaries: list[RepoSummary]
    cross_repo_patterns: list[str]
    technical_themes: list[str]
    suggestions: list[Suggestion] = Field(default_factory=list)
    metrics: SynthesisMetrics

    source: Literal["inference", "fallback"] = Field(default="inference", exclude=True)
    session_id: str | None = Field(default=None, exclude=True)

    @field_validator("suggestions", mode="before")
    @classmethod
    def all_or_nothing(cls, value: Any) -> Any:
        """A single partially filled suggestion empties the whole list."""
        if value is None:
            return []
        if not isinstance(value, list):
            counter("synthesis.suggestions_rejected")
            return []
        for item in value:
            if isinstance(item, Suggestion):
                continue
            try:
                Suggestion.model_validate(item)
            except ValidationError:
                counter("synthesis.suggestions_rejected")
                return []
        return value


# ============================================================================
# Workflow
# ============================================================================


class WorkflowStage(str, Enum):
    STARTED = "started"
    FETCHING_ACTIVITY = "fetching_activity"
    ANALYZING_REPOSITORIES = "analyzing_repositories"
    DETECTING_PATTERNS = "detecting_patterns"
    SYNTHESIZING = "synthesizing"
    STORING_RESULT = "storing_result"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed forward transitions; FAILED is reachable from any non-terminal stage
_NEXT_STAGE = {
    WorkflowStage.STARTED: WorkflowStage.FETCHING_ACTIVITY,
    WorkflowStage.FETCHING_ACTIVITY: WorkflowStage.ANALYZING_REPOSITORIES,
    WorkflowStage.ANALYZING_REPOSITORIES: WorkflowStage.DETECTING_PATTERNS,
    WorkflowStage.DETECTING_PATTERNS: WorkflowStage.SYNTHESIZING,
    WorkflowStage.SYNTHESIZING: WorkflowStage.STORING_RESULT,
    WorkflowStage.STORING_RESULT: WorkflowStage.COMPLETED,
}


class StepEvent(DevlogModel):
    """Append-only record of one stage boundary."""

    model_config = ConfigDict(frozen=True)

    type: Literal["started", "completed", "failed"]
    step: str
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timestamp: str
    sequence: int = 0


class StoreResult(DevlogModel):
    log_id: str
    version: int
    stored: bool


class InferenceSession(DevlogModel):
    type: Literal["repository", "pattern_detection", "global_synthesis"]
    session_id: str
    repository: str | None = None


class WorkflowRun(DevlogModel):
    """
    State of one workflow run.

    Mutated only through advance()/complete()/fail(). Once the run is
    completed or failed every mutation raises WorkflowStateError.
    """

    workflow_id: str
    date: str
    stage: WorkflowStage = WorkflowStage.STARTED
    status: RunStatus = RunStatus.RUNNING
    error: str | None = None
    result: StoreResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING

    def _ensure_running(self) -> None:
        if self.is_terminal:
            raise WorkflowStateError(
                f"workflow {self.workflow_id} is already {self.status.value}"
            )

    def advance(self, stage: WorkflowStage) -> None:
        self._ensure_running()
        expected = _NEXT_STAGE.get(self.stage)
        if stage != expected:
            raise WorkflowStateError(
                f"illegal transition {self.stage.value} -> {stage.value} "
                f"for workflow {self.workflow_id}"
            )
        self.stage = stage

    def complete(self, result: StoreResult) -> None:
        self.advance(WorkflowStage.COMPLETED)
        self.status = RunStatus.COMPLETED
        self.result = result

    def fail(self, error: str) -> None:
        self._ensure_running()
        self.stage = WorkflowStage.FAILED
        self.status = RunStatus.FAILED
        self.error = error


class WorkflowResult(DevlogModel):
    workflow_id: str
    log_id: str
    version: int
    stored: bool
    sessions: list[InferenceSession] = Field(default_factory=list)
