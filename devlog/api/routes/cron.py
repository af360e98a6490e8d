"""HTTP trigger for the daily analysis (called by the scheduler)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from devlog.api.deps import get_orchestrator
from devlog.api.middleware.auth import require_cron_secret
from devlog.api.models import CronRequest, CronResponse
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter
from devlog.orchestrator import Orchestrator
from devlog.workflow.trigger import yesterday_utc

logger = get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.post(
    "/daily-analysis",
    response_model=CronResponse,
    dependencies=[Depends(require_cron_secret)],
)
def daily_analysis(
    body: CronRequest | None = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> CronResponse:
    """
    Start the analysis for body.date (default: yesterday UTC).

    Returns as soon as the run is queued; progress is visible through
    /workflows/{workflowId}/events.

    Side Effects:
        - Queues a workflow run on the background launcher
    """
    date = (body.date if body else None) or yesterday_utc()
    workflow_id = orchestrator.launcher.start(date)
    counter("api.cron.triggered")
    logger.info("Cron trigger queued %s for %s", workflow_id, date)
    return CronResponse(ok=True, workflowId=workflow_id)
