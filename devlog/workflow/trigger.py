"""
Entry points that start workflow runs.

- trigger_daily_workflow(): scheduled/internal trigger, runs synchronously.
  Skipped in development so local runs never spend inference budget.
- WorkflowLauncher: used by the HTTP trigger; hands the run to a background
  worker and returns the workflow id at once.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from typing import Any

from devlog.config import is_development
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event
from devlog.workflow.engine import WorkflowEngine, new_workflow_id

logger = get_logger(__name__)

SKIPPED_DEV_ID = "skipped-dev"
DATE_FORMAT = "%Y-%m-%d"


def yesterday_utc(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return (now - timedelta(days=1)).strftime(DATE_FORMAT)


def validate_date(value: str) -> str:
    """
    Raises:
        ValueError: If value is not a real YYYY-MM-DD date
    """
    datetime.strptime(value, DATE_FORMAT)
    if len(value) != 10:
        raise ValueError(f"date must be YYYY-MM-DD, got {value!r}")
    return value


def trigger_daily_workflow(engine: WorkflowEngine, date: str | None = None) -> dict[str, Any]:
    """
    Run the daily analysis now and wait for it.

    Returns:
        {"workflowId": ...} plus logId/version when a run happened

    Side Effects:
        - Runs the full workflow (inference calls, database writes)
    """
    if is_development():
        counter("trigger.skipped_dev")
        logger.info("Skipping daily workflow in development")
        return {"workflowId": SKIPPED_DEV_ID}

    date = validate_date(date) if date else yesterday_utc()
    workflow_id = new_workflow_id(date)
    log_event("trigger.daily_workflow", date=date, workflow_id=workflow_id)
    result = engine.run(date, workflow_id)
    return {"workflowId": workflow_id, "logId": result.log_id, "version": result.version}


class WorkflowLauncher:
    """Runs workflows on a single background worker, one at a time."""

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="workflow")

    def start(self, date: str) -> str:
        """
        Side Effects:
            - Queues engine.run(date) on the background worker
        """
        workflow_id = new_workflow_id(date)
        future = self._executor.submit(self.engine.run, date, workflow_id)
        future.add_done_callback(lambda f: self._report(workflow_id, f))
        counter("trigger.launched")
        return workflow_id

    @staticmethod
    def _report(workflow_id: str, future: Future[Any]) -> None:
        error = future.exception()
        if error is not None:
            # The engine already recorded the failure; keep the worker alive
            logger.error("Background workflow %s failed: %s", workflow_id, error)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
