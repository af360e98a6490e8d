"""
Structured workflow event logging.

Every StepEvent appended to a run's event log is also emitted as one line of
JSON so a run can be followed from the process log alone:

    {"ts":"2025-11-11T23:45:12.123456+00:00","level":"ERROR","workflow":"wf_2025-11-10_k3x9qa",
     "event":"step_failed","step":"pattern_detection","error":"..."}

Usage:
    from devlog.observability.structured import WorkflowEventLogger, EventType

    events = WorkflowEventLogger(workflow_id="wf_2025-11-10_k3x9qa")
    events.log_event(EventType.STEP_FAILED, step="pattern_detection", error="bad json")
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger("devlog.structured")

_MAX_FIELD_CHARS = 300


class EventType(str, Enum):
    """Workflow event taxonomy"""

    # Run lifecycle
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"

    # Stage lifecycle
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"

    # Degradation points
    FALLBACK_USED = "fallback_used"
    BATCH_SKIPPED = "batch_skipped"
    REPOSITORY_SKIPPED = "repository_skipped"


EVENT_SEVERITY = {
    EventType.WORKFLOW_STARTED: logging.INFO,
    EventType.WORKFLOW_COMPLETED: logging.INFO,
    EventType.WORKFLOW_FAILED: logging.ERROR,
    EventType.STEP_STARTED: logging.DEBUG,
    EventType.STEP_COMPLETED: logging.INFO,
    EventType.STEP_FAILED: logging.ERROR,
    EventType.FALLBACK_USED: logging.WARNING,
    EventType.BATCH_SKIPPED: logging.WARNING,
    EventType.REPOSITORY_SKIPPED: logging.WARNING,
}


class SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles common non-serializable types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json", by_alias=True)
        if hasattr(obj, "__dict__"):
            return str(obj)
        return super().default(obj)


class WorkflowEventLogger:
    """One-line JSON event logger correlated by workflow id."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id

    def log_event(self, event_type: EventType, **kwargs: Any) -> None:
        """
        Log a structured event

        Side Effects:
            - Writes one JSON line to the devlog.structured logger
        """
        severity = EVENT_SEVERITY.get(event_type, logging.INFO)
        event: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": logging.getLevelName(severity),
            "workflow": self.workflow_id,
            "event": event_type.value,
        }

        for key, value in kwargs.items():
            if value is None:
                continue
            if isinstance(value, str) and len(value) > _MAX_FIELD_CHARS:
                event[key] = value[:_MAX_FIELD_CHARS] + "..."
            else:
                event[key] = value

        try:
            json_line = json.dumps(event, separators=(",", ":"), cls=SafeJSONEncoder)
            logger.log(severity, json_line)
        except (TypeError, ValueError) as e:
            logger.error("structured_log_error: event=%s error=%s", event_type.value, e)

    def fallback_used(self, component: str, reason: str, repository: str | None = None) -> None:
        """Record that a component degraded to its deterministic fallback"""
        self.log_event(
            EventType.FALLBACK_USED, component=component, reason=reason, repository=repository
        )

    def batch_skipped(self, repository: str, batch_index: int, error: str) -> None:
        self.log_event(
            EventType.BATCH_SKIPPED, repository=repository, batch=batch_index, error=error
        )
