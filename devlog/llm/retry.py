"""Transport-level retry for Gemini requests.

send_message() retries one request on network-class failures
(deadline exceeded, service unavailable, rate limited, internal error) with
exponential backoff. It sits beneath the RetryController: this layer absorbs
brief blips inside a single attempt, the controller retries whole attempts.

Vertex AI exceptions are converted to TimeoutError / ConnectionError /
OSError so tenacity can select on builtin types.
"""

from __future__ import annotations

from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from devlog.config import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE, LLM_MAX_RETRIES
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter

logger = get_logger(__name__)


def generation_config(json_output: bool = False) -> dict[str, Any]:
    config: dict[str, Any] = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
    }
    if json_output:
        config["response_mime_type"] = "application/json"
    return config


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
    reraise=True,
)
def send_message(
    chat: Any,
    content: Any,
    config: dict[str, Any],
    counter_prefix: str = "llm",
) -> Any:
    """Send one message on a chat session with retry and exception conversion.

    Raises:
        TimeoutError: On deadline exceeded (retryable).
        ConnectionError: On service unavailable or internal error (retryable).
        OSError: On resource exhausted / rate limited (retryable).
        Exception: On other errors (not retried, caller handles).
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    try:
        return chat.send_message(content, generation_config=config)
    except DeadlineExceeded as e:
        counter(f"{counter_prefix}.timeout")
        logger.warning("LLM call deadline exceeded, will retry: %s", e)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except ServiceUnavailable as e:
        counter(f"{counter_prefix}.service_unavailable")
        logger.warning("LLM service unavailable, will retry: %s", e)
        raise ConnectionError(f"LLM service unavailable: {e}") from e
    except ResourceExhausted as e:
        counter(f"{counter_prefix}.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", e)
        raise OSError(f"LLM rate limited: {e}") from e
    except InternalServerError as e:
        counter(f"{counter_prefix}.internal_error")
        logger.warning("LLM internal error (500), will retry: %s", e)
        raise ConnectionError(f"LLM internal error: {e}") from e
