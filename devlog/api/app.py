"""FastAPI server for devlog: cron trigger, workflow event log, stored reports, health"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from devlog.api.middleware.auth import CronUnauthorizedError, cron_unauthorized_handler
from devlog.api.routes.cron import router as cron_router
from devlog.api.routes.health import router as health_router
from devlog.api.routes.logs import router as logs_router
from devlog.api.routes.workflows import router as workflows_router
from devlog.config import APP_VERSION
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter
from devlog.orchestrator import Orchestrator, build_orchestrator

logger = get_logger(__name__)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Sanitized 422: field names only, no validation internals.

    Side Effects:
        - Logs the full validation errors
        - Increments api.validation_errors
    """
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    """
    Build the API.

    With an orchestrator the caller owns it. Without one, an orchestrator is
    built from the environment on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = None
        if getattr(app.state, "orchestrator", None) is None:
            load_dotenv()
            owned = build_orchestrator()
            app.state.orchestrator = owned
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                app.state.orchestrator = None

    app = FastAPI(title="devlog API", version=APP_VERSION, lifespan=lifespan)
    app.state.orchestrator = orchestrator

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(CronUnauthorizedError, cron_unauthorized_handler)

    app.include_router(health_router)
    app.include_router(cron_router)
    app.include_router(workflows_router)
    app.include_router(logs_router)
    return app
