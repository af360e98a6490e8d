"""
Single decode path from inference output to a validated model.

decode_model() accepts either already-parsed JSON or raw model text and
returns a DecodeResult instead of raising, so each caller decides its own
failure policy (retry, fallback, or hard error).

Two modes:
- strict (default): the payload must satisfy the model as-is.
- fill_defaults: missing or null fields fall back to the model's defaults,
  and non-string items are dropped from list[str] fields. Used where
  partial output is still useful (cross-repository patterns).

Raw text handling is deliberately narrow: strip a markdown code fence, then
parse; failing that, parse the outermost {...} span. No other repairs.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from devlog.errors import SchemaValidationError
from devlog.observability.telemetry import counter

M = TypeVar("M", bound=BaseModel)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


class JSONExtractionError(ValueError):
    """Text contained no parseable JSON value."""


@dataclass(frozen=True)
class DecodeResult(Generic[M]):
    value: M | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None

    def unwrap(self) -> M:
        """
        Raises:
            SchemaValidationError: If decoding failed
        """
        if self.value is None:
            raise SchemaValidationError(self.error or "decode failed")
        return self.value


def parse_json_text(text: str) -> Any:
    """
    Parse model output that should be JSON.

    Raises:
        JSONExtractionError: If no JSON value can be recovered
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        counter("decode.code_fence_stripped")
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned).strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            value = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise JSONExtractionError(f"invalid JSON in model output: {e}") from e
        counter("decode.surrounding_text_dropped")
        return value

    raise JSONExtractionError("model output contains no JSON object")


def _fill_defaults(model_cls: type[BaseModel], data: dict[str, Any]) -> dict[str, Any]:
    filled: dict[str, Any] = {}
    for name, field in model_cls.model_fields.items():
        keys = [k for k in (field.alias, name) if k]
        present = next((k for k in keys if data.get(k) is not None), None)
        if present is None:
            continue  # model default applies
        value = data[present]
        if field.annotation == list[str]:
            if not isinstance(value, list):
                continue
            value = [item for item in value if isinstance(item, str)]
        elif field.annotation is str and not isinstance(value, str):
            continue
        filled[name] = value
    return filled


def decode_model(
    model_cls: type[M],
    raw: Any,
    *,
    fill_defaults: bool = False,
) -> DecodeResult[M]:
    """
    Validate inference output against model_cls.

    Args:
        model_cls: Target pydantic model
        raw: Parsed JSON (dict) or raw model text
        fill_defaults: Replace missing/null/mistyped fields with defaults

    Returns:
        DecodeResult with either value or error set
    """
    if isinstance(raw, str):
        try:
            raw = parse_json_text(raw)
        except JSONExtractionError as e:
            counter("decode.unparseable")
            return DecodeResult(error=str(e))

    if not isinstance(raw, dict):
        counter("decode.not_an_object")
        return DecodeResult(error=f"expected a JSON object, got {type(raw).__name__}")

    if fill_defaults:
        raw = _fill_defaults(model_cls, raw)

    try:
        return DecodeResult(value=model_cls.model_validate(raw))
    except ValidationError as e:
        counter("decode.validation_error")
        return DecodeResult(error=f"{model_cls.__name__} validation failed: {e.error_count()} errors: {e}")
