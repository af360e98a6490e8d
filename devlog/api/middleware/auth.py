"""
Shared-secret authentication for the cron trigger.

The scheduler calls POST /cron/daily-analysis with
"Authorization: Bearer <CRON_SECRET>". Anything else, including a server
with no secret configured, is rejected with 401 {"error": "Unauthorized"}.
"""

from __future__ import annotations

import os
import secrets

from fastapi import Header, Request, status
from fastapi.responses import JSONResponse

from devlog.config import CRON_SECRET
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter

logger = get_logger(__name__)


class CronUnauthorizedError(Exception):
    """Missing or wrong cron secret."""


def _configured_secret() -> str:
    # Read fresh; tests and load_dotenv() may set it after import
    return os.getenv("CRON_SECRET") or CRON_SECRET


def require_cron_secret(authorization: str | None = Header(None)) -> None:
    """
    FastAPI dependency guarding the cron routes.

    Raises:
        CronUnauthorizedError: Rendered as 401 by cron_unauthorized_handler
    """
    secret = _configured_secret()
    if not secret:
        logger.error("CRON_SECRET is not configured; rejecting cron request")
        counter("api.cron.unconfigured")
        raise CronUnauthorizedError()

    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not secrets.compare_digest(token.encode(), secret.encode()):
        counter("api.cron.unauthorized")
        raise CronUnauthorizedError()


async def cron_unauthorized_handler(request: Request, exc: CronUnauthorizedError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})
