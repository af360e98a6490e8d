"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request

from devlog.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return orchestrator
