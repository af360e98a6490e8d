"""
Exception taxonomy for the analysis pipeline.

Fatal errors (ConfigurationError, StorageError) end a workflow run.
Transient inference errors are retried and, once retries run out, downgraded
to a deterministic fallback at the component boundary. Everything here
derives from DevlogError so callers can catch the family in one place.
"""

from __future__ import annotations


class DevlogError(RuntimeError):
    """Base class for devlog errors."""


class ConfigurationError(DevlogError):
    """A required setting or secret is missing. Never retried."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class TransientInferenceError(DevlogError):
    """An inference call failed in a way that may succeed on retry."""


class InferenceStepLimitError(TransientInferenceError):
    """The tool-calling loop hit its step bound without a final answer."""

    def __init__(self, max_steps: int):
        super().__init__(f"inference did not finish within {max_steps} tool steps")
        self.max_steps = max_steps


class SchemaValidationError(TransientInferenceError):
    """A structured inference response did not match its schema."""


class RetryExhaustedError(DevlogError):
    """A retried run failed on every allowed attempt."""

    def __init__(self, run_id: str, attempts: int, last_error: BaseException | None):
        super().__init__(f"run {run_id} failed after {attempts} attempts: {last_error}")
        self.run_id = run_id
        self.attempts = attempts
        self.last_error = last_error


class RetryTimeoutError(DevlogError):
    """Waiting for a retried run exceeded its poll bound."""

    def __init__(self, run_id: str, polls: int):
        super().__init__(f"timed out waiting for run {run_id} after {polls} polls")
        self.run_id = run_id
        self.polls = polls


class PerRepositoryError(DevlogError):
    """Analysis of one repository failed past its own fallback."""

    def __init__(self, repository: str, cause: BaseException):
        super().__init__(f"analysis of {repository} failed: {cause}")
        self.repository = repository
        self.cause = cause


class PatternDetectionError(DevlogError):
    """The pattern detector response could not be parsed at all."""


class StorageError(DevlogError):
    """The persistence sink could not store the report."""


class WorkflowStateError(DevlogError):
    """A finished workflow run was mutated."""
