"""
Gemini / Vertex AI model manager.

Shared model instances for question extraction, answer consolidation and
text embeddings, so every service reuses one initialized client.
"""

from __future__ import annotations

from functools import lru_cache

from inboxfaq.infrastructure.settings import (
    EMBEDDING_MODEL,
    GEMINI_LOCATION,
    GEMINI_MODEL,
    GOOGLE_CLOUD_PROJECT,
)
from inboxfaq.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when a Vertex AI model cannot be initialized."""


@lru_cache(maxsize=1)
def _init_vertex() -> None:
    import vertexai

    if not GOOGLE_CLOUD_PROJECT:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

    vertexai.init(project=GOOGLE_CLOUD_PROJECT, location=GEMINI_LOCATION or "us-central1")


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create the shared Gemini generative model.

    Returns:
        GenerativeModel: Shared Gemini model

    Raises:
        GeminiInitializationError: If the model cannot be initialized
    """
    try:
        from vertexai.generative_models import GenerativeModel

        _init_vertex()
        model = GenerativeModel(GEMINI_MODEL)
    except GeminiInitializationError:
        raise
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info(
        "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
        GOOGLE_CLOUD_PROJECT,
        GEMINI_LOCATION,
        GEMINI_MODEL,
    )
    return model


def get_gemini_model_with_options(system_instruction: str | None = None):
    """Create a Gemini model carrying a system instruction.

    System instructions are per-model-instance in the Gemini API, so a fresh
    GenerativeModel is built when one is given; otherwise the cached
    singleton is returned.
    """
    if system_instruction is None:
        return get_gemini_model()

    get_gemini_model()

    from vertexai.generative_models import GenerativeModel

    return GenerativeModel(GEMINI_MODEL, system_instruction=system_instruction)


@lru_cache(maxsize=1)
def get_embedding_model():
    """
    Get or create the shared text-embedding model.

    Raises:
        GeminiInitializationError: If the model cannot be initialized
    """
    try:
        from vertexai.language_models import TextEmbeddingModel

        _init_vertex()
        model = TextEmbeddingModel.from_pretrained(EMBEDDING_MODEL)
    except GeminiInitializationError:
        raise
    except Exception as e:
        logger.error("Failed to initialize embedding model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize embeddings: {e}") from e

    logger.info("Initialized embedding model %s", EMBEDDING_MODEL)
    return model
