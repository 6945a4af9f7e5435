"""
Auto-fix pass for stored questions.

Questions can be stored without an embedding (embedding call failed during
extraction) or without a confidence (older rows). Until fixed they cannot
enter clustering. This pass attaches both; running it twice is a no-op.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from inboxfaq.config import DEFAULT_QUESTION_CONFIDENCE, EMBEDDING_BACKFILL_BATCH
from inboxfaq.contracts.services import Embedder
from inboxfaq.faq.ai import EmbeddingError
from inboxfaq.faq.models import Question
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.observability.logging import get_logger
from inboxfaq.observability.telemetry import counter, log_event

logger = get_logger(__name__)


@dataclass
class BackfillSummary:
    embeddings_added: int = 0
    embedding_failures: int = 0
    confidence_defaulted: int = 0
    error: str | None = None


async def attach_embeddings(
    questions: Sequence[Question],
    embedder: Embedder,
    store: QuestionStore,
) -> int:
    """
    Embed and store vectors for questions that lack one.

    Returns:
        Number of embeddings stored

    Raises:
        EmbeddingError: If the embedding call fails (nothing is stored)
        DimensionMismatchError: If the model returns the wrong dimension
    """
    missing = [q for q in questions if not q.is_clusterable]
    if not missing:
        return 0

    results = await embedder.embed_batch([q.question_text for q in missing])
    for question, result in zip(missing, results, strict=True):
        store.set_embedding(question.id, result.vector)
        question.embedding = result.vector

    counter("enrichment.embeddings_added", len(missing))
    return len(missing)


async def backfill(
    embedder: Embedder,
    store: QuestionStore | None = None,
    batch_size: int = EMBEDDING_BACKFILL_BATCH,
    default_confidence: float = DEFAULT_QUESTION_CONFIDENCE,
) -> BackfillSummary:
    """
    Default missing confidences and attach missing embeddings, batch by batch.

    An embedding failure stops the embedding half of the pass; rows already
    fixed stay fixed and the rest wait for the next run.

    Side Effects:
        - Updates questions.confidence_score and questions.embedding
    """
    store = store or QuestionStore()
    summary = BackfillSummary()

    while batch := store.list_questions_missing_confidence(batch_size):
        for question in batch:
            store.set_confidence(question.id, default_confidence)
        summary.confidence_defaulted += len(batch)

    while batch := store.list_questions_missing_embedding(batch_size):
        try:
            summary.embeddings_added += await attach_embeddings(batch, embedder, store)
        except EmbeddingError as e:
            summary.embedding_failures += len(batch)
            summary.error = str(e)
            counter("enrichment.embedding_failed")
            logger.error("Embedding backfill stopped after %d questions: %s", summary.embeddings_added, e)
            break

    log_event(
        "enrichment.backfill_complete",
        embeddings_added=summary.embeddings_added,
        embedding_failures=summary.embedding_failures,
        confidence_defaulted=summary.confidence_defaulted,
    )
    return summary
