"""Request/response models for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

from devlog.workflow.trigger import validate_date


class CronRequest(BaseModel):
    date: str | None = None

    @field_validator("date")
    @classmethod
    def check_date(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            return validate_date(v)
        except ValueError as e:
            raise ValueError("date must be YYYY-MM-DD") from e


class CronResponse(BaseModel):
    ok: bool
    workflowId: str  # noqa: N815


class WorkflowEventsResponse(BaseModel):
    workflowId: str  # noqa: N815
    events: list[dict[str, Any]]
    count: int
