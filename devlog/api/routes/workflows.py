"""Read-only views of workflow runs and their event logs."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from devlog.api.deps import get_orchestrator
from devlog.api.models import WorkflowEventsResponse
from devlog.config import (
    API_EVENTS_LIMIT_DEFAULT,
    API_EVENTS_LIMIT_MAX,
    API_RECENT_EVENTS_LIMIT_DEFAULT,
    API_RECENT_EVENTS_LIMIT_MAX,
)
from devlog.orchestrator import Orchestrator

router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.get("/events/recent")
def recent_events(
    limit: int = Query(API_RECENT_EVENTS_LIMIT_DEFAULT, ge=1, le=API_RECENT_EVENTS_LIMIT_MAX),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Newest events across all runs."""
    events = orchestrator.events.list_recent(limit)
    return {"events": events, "count": len(events)}


@router.get("/{workflow_id}")
def get_workflow(
    workflow_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    run = orchestrator.runs.get(workflow_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Workflow {workflow_id} not found")
    return run.to_wire()


@router.get("/{workflow_id}/events", response_model=WorkflowEventsResponse)
def get_workflow_events(
    workflow_id: str,
    limit: int = Query(API_EVENTS_LIMIT_DEFAULT, ge=1, le=API_EVENTS_LIMIT_MAX),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> WorkflowEventsResponse:
    """Events of one run in order; an unknown id yields an empty list."""
    events = [e.to_wire() for e in orchestrator.events.list_events(workflow_id, limit)]
    return WorkflowEventsResponse(workflowId=workflow_id, events=events, count=len(events))
