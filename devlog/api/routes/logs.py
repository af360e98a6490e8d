"""Stored daily reports."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from devlog.api.deps import get_orchestrator
from devlog.config import API_LOGS_LIMIT_DEFAULT, API_LOGS_LIMIT_MAX
from devlog.orchestrator import Orchestrator

router = APIRouter(prefix="/logs", tags=["logs"])

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


@router.get("")
def list_logs(
    start_date: str | None = Query(None, alias="startDate", pattern=DATE_PATTERN),
    end_date: str | None = Query(None, alias="endDate", pattern=DATE_PATTERN),
    limit: int = Query(API_LOGS_LIMIT_DEFAULT, ge=1, le=API_LOGS_LIMIT_MAX),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Reports in an optional date range, newest date and version first."""
    logs = orchestrator.sink.list_logs(start_date, end_date, limit)
    return {"logs": logs, "count": len(logs)}


@router.get("/{log_id}")
def get_log(log_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    log = orchestrator.sink.get_log(log_id)
    if log is None:
        raise HTTPException(status_code=404, detail=f"Log {log_id} not found")
    return log
