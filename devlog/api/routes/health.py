"""Health endpoints.

- /health - service status, version, inference credential readiness
- /health/db - database connection pool health
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from devlog.api.deps import get_orchestrator
from devlog.config import APP_VERSION
from devlog.llm.gemini import describe_backend
from devlog.observability.logging import get_logger
from devlog.orchestrator import Orchestrator

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Does not call the model; only reports whether credentials are configured."""
    backend = describe_backend()
    return {
        "status": "healthy",
        "service": "devlog",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": backend["google_cloud_project"],
            "model": backend["model"],
            "google_cloud_project": backend["google_cloud_project"],
        },
    }


@router.get("/health/db")
async def database_health(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    """Alerts when pool usage exceeds 80% or a table is missing."""
    stats = orchestrator.db.pool_stats()
    usage_percent = stats["usage_percent"]
    try:
        schema_ok = orchestrator.db.validate_schema()
    except ValueError as e:
        logger.error("Schema check failed: %s", e)
        schema_ok = False

    warning = None
    if not schema_ok:
        warning = "Schema incomplete"
    elif usage_percent > 80:
        warning = "Pool usage high"
    return {
        "status": "healthy" if warning is None else "degraded",
        "pool": stats,
        "schema_ok": schema_ok,
        "warning": warning,
    }
