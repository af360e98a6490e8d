"""
Gemini inference backend (Vertex AI).

GeminiInferenceService implements the InferenceService protocol:

- generate_text() runs a chat with the GitHub tools attached and answers the
  model's function calls until it produces text, for at most max_steps
  rounds of tool calls.
- generate_object() asks for JSON with no tools attached.

Each call gets a fresh session id, which is logged and carried on the result
for observability. Transport failures that survive the tenacity layer are
raised as TransientInferenceError for the RetryController.

The chat API takes no per-request timeout, so each call carries a deadline of
LLM_TIMEOUT_SECONDS that is checked before every message it sends. A single
request that hangs is bounded by the RetryController wait instead.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable
from functools import lru_cache
from typing import Any

from devlog.config import GEMINI_LOCATION, GEMINI_MODEL, GOOGLE_CLOUD_PROJECT, LLM_TIMEOUT_SECONDS
from devlog.contracts import InferenceObject, InferenceText
from devlog.errors import ConfigurationError, InferenceStepLimitError, TransientInferenceError
from devlog.llm.decoding import JSONExtractionError, parse_json_text
from devlog.llm.retry import generation_config, send_message
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event, time_block
from devlog.sources.github import ToolSpec

logger = get_logger(__name__)


class GeminiInitializationError(ConfigurationError):
    """Vertex AI cannot be initialized; fails the run instead of being retried."""


@lru_cache(maxsize=1)
def init_vertexai() -> str:
    """
    Initialize the Vertex AI SDK once per process.

    Returns:
        The project id used

    Raises:
        GeminiInitializationError: If GOOGLE_CLOUD_PROJECT is not set
    """
    import vertexai

    # Read env vars fresh; settings may have been imported before load_dotenv()
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    location = os.getenv("GEMINI_LOCATION") or GEMINI_LOCATION or "us-central1"
    if not project:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

    try:
        vertexai.init(project=project, location=location)
    except Exception as e:
        logger.error("Failed to initialize Vertex AI: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e
    logger.info("Initialized Vertex AI: project=%s, location=%s", project, location)
    return project


def _function_calls(response: Any) -> list[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    return list(getattr(candidates[0], "function_calls", None) or [])


def _response_text(response: Any) -> str:
    try:
        return response.text
    except (ValueError, AttributeError) as e:
        # Blocked or empty candidates have no text part
        raise TransientInferenceError(f"model returned no text: {e}") from e


class GeminiInferenceService:
    """InferenceService backed by Vertex AI GenerativeModel chat sessions."""

    def __init__(
        self,
        tools: list[ToolSpec] | None = None,
        model_name: str | None = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tools = {spec.name: spec for spec in tools or []}
        self.model_name = model_name or os.getenv("GEMINI_MODEL") or GEMINI_MODEL
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    def _model(self, instructions: str, tools_enabled: bool) -> Any:
        from vertexai.generative_models import FunctionDeclaration, GenerativeModel, Tool

        init_vertexai()

        tools = None
        if tools_enabled and self.tools:
            declarations = [
                FunctionDeclaration(
                    name=spec.name, description=spec.description, parameters=spec.parameters
                )
                for spec in self.tools.values()
            ]
            tools = [Tool(function_declarations=declarations)]

        return GenerativeModel(self.model_name, system_instruction=instructions, tools=tools)

    def _send(
        self, chat: Any, content: Any, config: dict[str, Any], prefix: str, deadline: float
    ) -> Any:
        if self.clock() >= deadline:
            counter(f"{prefix}.deadline_exceeded")
            raise TransientInferenceError(
                f"inference call exceeded {self.timeout_seconds}s before sending"
            )
        try:
            return send_message(chat, content, config, counter_prefix=prefix)
        except (TimeoutError, ConnectionError, OSError) as e:
            raise TransientInferenceError(str(e)) from e

    def _call_tool(self, call: Any) -> dict[str, Any]:
        spec = self.tools.get(call.name)
        if spec is None:
            counter("llm.tools.unknown")
            return {"error": f"unknown tool {call.name}"}
        args = dict(call.args or {})
        try:
            with time_block(f"llm.tools.{call.name}.latency"):
                return {"content": spec.handler(**args)}
        except Exception as e:
            # Tool failures go back to the model as data; the model decides how to proceed
            counter(f"llm.tools.{call.name}.error")
            logger.warning("Tool %s failed: %s", call.name, e)
            return {"error": str(e)}

    def generate_text(
        self,
        prompt: str,
        *,
        instructions: str,
        tools_enabled: bool = True,
        max_steps: int = 15,
    ) -> InferenceText:
        from vertexai.generative_models import Part

        session_id = uuid.uuid4().hex
        deadline = self.clock() + self.timeout_seconds
        chat = self._model(instructions, tools_enabled).start_chat()
        config = generation_config()

        with time_block("llm.generate_text.latency"):
            response = self._send(chat, prompt, config, "llm.text", deadline)
            steps = 0
            while calls := _function_calls(response):
                steps += 1
                if steps > max_steps:
                    counter("llm.text.step_limit")
                    raise InferenceStepLimitError(max_steps)
                parts = [
                    Part.from_function_response(name=call.name, response=self._call_tool(call))
                    for call in calls
                ]
                response = self._send(chat, parts, config, "llm.text", deadline)

        text = _response_text(response)
        log_event("llm.generate_text", session=session_id, tool_steps=steps, chars=len(text))
        return InferenceText(text=text, session_id=session_id)

    def generate_object(
        self,
        prompt: str,
        *,
        instructions: str,
        schema_name: str,
        tools_enabled: bool = False,
    ) -> InferenceObject:
        session_id = uuid.uuid4().hex
        deadline = self.clock() + self.timeout_seconds
        chat = self._model(instructions, tools_enabled).start_chat()

        with time_block("llm.generate_object.latency"):
            response = self._send(
                chat, prompt, generation_config(json_output=True), "llm.object", deadline
            )
        text = _response_text(response)

        try:
            data: Any = parse_json_text(text)
        except JSONExtractionError:
            counter("llm.object.unparseable")
            data = text
        log_event(
            "llm.generate_object",
            session=session_id,
            schema=schema_name,
            parsed=not isinstance(data, str),
        )
        return InferenceObject(data=data, session_id=session_id)


def describe_backend() -> dict[str, Any]:
    """Credential readiness for the health endpoint (no API call)."""
    return {
        "model": os.getenv("GEMINI_MODEL") or GEMINI_MODEL,
        "google_cloud_project": bool(os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT),
    }
