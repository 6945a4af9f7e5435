"""Shared LLM calls with retry logic.

Extraction, consolidation and embedding all go through these two coroutines.
Transient Vertex AI failures (deadline, unavailable, rate limit, 5xx) are
converted to builtin exception types and retried with exponential backoff.
Each attempt is bounded by LLM_TIMEOUT_SECONDS; hitting it counts as a
transient timeout. Anything else propagates to the caller, which owns the
final-failure policy.
"""

from __future__ import annotations

import asyncio

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from inboxfaq.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS
from inboxfaq.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from inboxfaq.llm.gemini import get_embedding_model, get_gemini_model_with_options
from inboxfaq.observability.logging import get_logger
from inboxfaq.observability.telemetry import counter

logger = get_logger(__name__)

RETRYABLE_ERRORS = (TimeoutError, ConnectionError, OSError)


def _convert_vertex_error(exc: Exception, counter_prefix: str) -> Exception:
    """Map google.api_core errors onto the retryable builtin types."""
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    if isinstance(exc, DeadlineExceeded):
        counter(f"llm.{counter_prefix}.timeout")
        logger.warning("LLM deadline exceeded, will retry: %s", exc)
        return TimeoutError(f"LLM call timed out: {exc}")
    if isinstance(exc, ServiceUnavailable):
        counter(f"llm.{counter_prefix}.service_unavailable")
        logger.warning("LLM service unavailable, will retry: %s", exc)
        return ConnectionError(f"LLM service unavailable: {exc}")
    if isinstance(exc, ResourceExhausted):
        counter(f"llm.{counter_prefix}.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", exc)
        return OSError(f"LLM rate limited: {exc}")
    if isinstance(exc, InternalServerError):
        counter(f"llm.{counter_prefix}.internal_error")
        logger.warning("LLM internal error (500), will retry: %s", exc)
        return ConnectionError(f"LLM internal error: {exc}")
    return exc


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    reraise=True,
)
async def call_llm(
    prompt: str,
    counter_prefix: str = "llm",
    system_instruction: str | None = None,
    json_output: bool = False,
    max_output_tokens: int = GEMINI_MAX_TOKENS,
    temperature: float = GEMINI_TEMPERATURE,
) -> str:
    """Call Gemini with retry and Vertex AI exception conversion.

    Args:
        prompt: The prompt to send to the model.
        counter_prefix: Telemetry counter prefix (e.g. "extraction", "consolidation").
        system_instruction: Optional system instruction.
        json_output: Request an application/json response.
        max_output_tokens: Generation cap for this call.
        temperature: Sampling temperature for this call.

    Returns:
        The model's response text.

    Raises:
        TimeoutError, ConnectionError, OSError: transient failures (retried).
        Exception: other errors, not retried.
    """
    model = get_gemini_model_with_options(system_instruction=system_instruction)

    generation_config = {
        "temperature": temperature,
        "max_output_tokens": max_output_tokens,
    }
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    try:
        response = await asyncio.wait_for(
            model.generate_content_async(prompt, generation_config=generation_config),
            timeout=LLM_TIMEOUT_SECONDS,
        )
    except TimeoutError:
        counter(f"llm.{counter_prefix}.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise
    except Exception as e:
        converted = _convert_vertex_error(e, counter_prefix)
        if converted is e:
            logger.error("LLM call failed: %s", e)
            raise
        raise converted from e

    counter(f"llm.{counter_prefix}.success")
    return response.text


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    reraise=True,
)
async def embed_texts(texts: list[str]) -> list[list[float]]:
    """Embed a batch of texts with the configured Vertex embedding model.

    Newlines are flattened to spaces before sending.
    """
    model = get_embedding_model()
    cleaned = [text.replace("\n", " ") for text in texts]

    try:
        embeddings = await asyncio.wait_for(
            model.get_embeddings_async(cleaned), timeout=LLM_TIMEOUT_SECONDS
        )
    except TimeoutError:
        counter("llm.embedding.timeout")
        logger.warning("Embedding call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise
    except Exception as e:
        converted = _convert_vertex_error(e, "embedding")
        if converted is e:
            logger.error("Embedding call failed: %s", e)
            raise
        raise converted from e

    counter("llm.embedding.success")
    return [list(embedding.values) for embedding in embeddings]
