"""Centralized configuration for devlog.

Re-exports everything from devlog.infrastructure.settings, then adds typed
constants for the database, the analysis pipeline, inference retries and the
HTTP API. Environment variable overrides use safe defaults so the service
starts without extra env configuration.

OrchestratorConfig bundles the pipeline policy into one object that is passed
explicitly to the components that need it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from devlog.infrastructure.settings import *  # noqa: F401, F403


def _env(key: str, default: str) -> str:
    return os.getenv(key, default)


# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_POOL_SIZE: int = int(_env("DEVLOG_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(_env("DEVLOG_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(_env("DEVLOG_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(_env("DEVLOG_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(_env("DEVLOG_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(_env("DEVLOG_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(_env("DEVLOG_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(_env("DEVLOG_DB_RETRY_JITTER", "0.1"))

# --- Analysis Pipeline ---
BATCH_SIZE: int = int(_env("DEVLOG_BATCH_SIZE", "10"))
MAX_TOOL_STEPS: int = int(_env("DEVLOG_MAX_TOOL_STEPS", "15"))
CACHE_TTL_SECONDS: float = float(_env("DEVLOG_CACHE_TTL_SECONDS", str(24 * 60 * 60)))
CACHE_MAX_ENTRIES: int = int(_env("DEVLOG_CACHE_MAX_ENTRIES", "1024"))
HIGHLIGHT_REPO_LIMIT: int = 8

# Settings keys holding per-agent instructions
INSTRUCTIONS_REPO_ANALYZER: str = "agents/repoAnalyzer"
INSTRUCTIONS_ACTIVITY_SUMMARIZER: str = "agents/activitySummarizer"
INSTRUCTIONS_GLOBAL_ANALYSIS: str = "agents/globalAnalysis"
REQUIRED_INSTRUCTION_KEYS: tuple[str, ...] = (
    INSTRUCTIONS_REPO_ANALYZER,
    INSTRUCTIONS_ACTIVITY_SUMMARIZER,
    INSTRUCTIONS_GLOBAL_ANALYSIS,
)

# --- Retry Controller ---
RETRY_INITIAL_BACKOFF_SECONDS: float = float(_env("DEVLOG_RETRY_INITIAL_BACKOFF", "0.5"))
RETRY_BACKOFF_BASE: float = float(_env("DEVLOG_RETRY_BACKOFF_BASE", "2"))
RETRY_MAX_FAILURES: int = int(_env("DEVLOG_RETRY_MAX_FAILURES", "3"))
RETRY_MAX_WORKERS: int = int(_env("DEVLOG_RETRY_MAX_WORKERS", "4"))

# Bounded wait for a retried run: interval grows linearly then caps
POLL_INITIAL_INTERVAL_SECONDS: float = float(_env("DEVLOG_POLL_INITIAL_INTERVAL", "0.25"))
POLL_STEP_SECONDS: float = float(_env("DEVLOG_POLL_STEP", "0.25"))
POLL_MAX_INTERVAL_SECONDS: float = float(_env("DEVLOG_POLL_MAX_INTERVAL", "2.0"))
POLL_MAX_POLLS: int = int(_env("DEVLOG_POLL_MAX_POLLS", "60"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(_env("DEVLOG_LLM_TIMEOUT", "60"))
LLM_MAX_RETRIES: int = int(_env("DEVLOG_LLM_MAX_RETRIES", "3"))

# --- GitHub ---
GITHUB_EVENT_PAGES: int = 3
GITHUB_EVENTS_PER_PAGE: int = 100
GITHUB_TIMEOUT_SECONDS: float = float(_env("DEVLOG_GITHUB_TIMEOUT", "15"))

# --- API ---
API_EVENTS_LIMIT_DEFAULT: int = 500
API_EVENTS_LIMIT_MAX: int = 2000
API_RECENT_EVENTS_LIMIT_DEFAULT: int = 50
API_RECENT_EVENTS_LIMIT_MAX: int = 500
API_LOGS_LIMIT_DEFAULT: int = 30
API_LOGS_LIMIT_MAX: int = 200


@dataclass(frozen=True)
class OrchestratorConfig:
    """Pipeline policy shared by the analyzers, the cache and the retry controller."""

    batch_size: int = BATCH_SIZE
    max_tool_steps: int = MAX_TOOL_STEPS
    cache_ttl_seconds: float = CACHE_TTL_SECONDS
    cache_max_entries: int = CACHE_MAX_ENTRIES
    retry_initial_backoff: float = RETRY_INITIAL_BACKOFF_SECONDS
    retry_backoff_base: float = RETRY_BACKOFF_BASE
    retry_max_failures: int = RETRY_MAX_FAILURES
    retry_max_workers: int = RETRY_MAX_WORKERS
    poll_initial_interval: float = POLL_INITIAL_INTERVAL_SECONDS
    poll_step: float = POLL_STEP_SECONDS
    poll_max_interval: float = POLL_MAX_INTERVAL_SECONDS
    poll_max_polls: int = POLL_MAX_POLLS
    highlight_repo_limit: int = HIGHLIGHT_REPO_LIMIT
    model_name: str = GEMINI_MODEL  # noqa: F405

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Re-read the environment (after load_dotenv) and build a config."""
        return cls(
            batch_size=int(_env("DEVLOG_BATCH_SIZE", str(BATCH_SIZE))),
            max_tool_steps=int(_env("DEVLOG_MAX_TOOL_STEPS", str(MAX_TOOL_STEPS))),
            cache_ttl_seconds=float(_env("DEVLOG_CACHE_TTL_SECONDS", str(CACHE_TTL_SECONDS))),
            retry_max_failures=int(_env("DEVLOG_RETRY_MAX_FAILURES", str(RETRY_MAX_FAILURES))),
            model_name=_env("GEMINI_MODEL", GEMINI_MODEL),  # noqa: F405
        )
