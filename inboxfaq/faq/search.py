"""
Similarity lookups over stored questions and published FAQs.

Brute-force cosine over embeddings loaded from SQLite; fine for the corpus
sizes this runs against.
"""

from __future__ import annotations

from inboxfaq.config import (
    DUPLICATE_THRESHOLD,
    FAQ_SEARCH_MIN_SIMILARITY,
    SIMILARITY_THRESHOLD,
)
from inboxfaq.contracts.services import Embedder
from inboxfaq.faq.models import FAQGroup, Question
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.faq.similarity import SimilarityEngine, cosine_similarity
from inboxfaq.observability.logging import get_logger, preview

logger = get_logger(__name__)

SEARCH_MAX_GROUPS = 1000


class FAQSearch:
    def __init__(
        self,
        store: QuestionStore | None = None,
        embedder: Embedder | None = None,
        engine: SimilarityEngine | None = None,
    ):
        self.store = store or QuestionStore()
        self.embedder = embedder
        self.engine = engine or SimilarityEngine()

    def similar_to_question(
        self, question_id: str, threshold: float = SIMILARITY_THRESHOLD, limit: int = 50
    ) -> list[tuple[Question, float]]:
        """Stored questions similar to a stored question (itself excluded)."""
        found = self.store.get_questions([question_id])
        if not found or not found[0].is_clusterable:
            logger.info("Question %s not found or has no embedding", question_id)
            return []

        target = found[0]
        matches = self.engine.find_similar(
            target.embedding,
            self.store.fetch_clusterable_questions(min_confidence=0.0),
            threshold=threshold,
            limit=limit,
            exclude_id=target.id,
        )
        logger.info("Found %d similar questions for question %s", len(matches), question_id)
        return matches

    async def similar_to_text(
        self, text: str, threshold: float = SIMILARITY_THRESHOLD, limit: int = 20
    ) -> list[tuple[Question, float]]:
        """Stored questions similar to free text (embeds the text first)."""
        embedding = await self._embed(text)
        matches = self.engine.find_similar(
            embedding,
            self.store.fetch_clusterable_questions(min_confidence=0.0),
            threshold=threshold,
            limit=limit,
        )
        logger.info("Found %d similar questions for text: %s", len(matches), preview(text))
        return matches

    async def similar_faqs(
        self, text: str, min_similarity: float = FAQ_SEARCH_MIN_SIMILARITY, limit: int = 10
    ) -> list[tuple[FAQGroup, float]]:
        """Published FAQs whose representative question is close to `text`."""
        embedding = await self._embed(text)
        matches = []
        for group in self.store.list_faq_groups(published=True, limit=SEARCH_MAX_GROUPS):
            if not group.representative_embedding:
                continue
            similarity = cosine_similarity(embedding, group.representative_embedding)
            if similarity >= min_similarity:
                matches.append((group, similarity))

        matches.sort(key=lambda item: (-item[1], item[0].id))
        return matches[:limit]

    def duplicates(self, threshold: float = DUPLICATE_THRESHOLD) -> list[tuple[Question, Question, float]]:
        pairs = self.engine.find_duplicates(
            self.store.fetch_clusterable_questions(min_confidence=0.0), threshold=threshold
        )
        logger.info("Found %d potential duplicate question pairs", len(pairs))
        return pairs

    def similarity_stats(self) -> dict:
        counts = self.store.count_questions()
        return {
            "total_questions": counts["total"],
            "questions_with_embeddings": counts["with_embedding"],
            "similarity_distribution": self.engine.similarity_distribution(
                self.store.fetch_clusterable_questions(min_confidence=0.0)
            ),
        }

    async def _embed(self, text: str) -> list[float]:
        if self.embedder is None:
            raise RuntimeError("FAQSearch needs an embedder for free-text search")
        result = await self.embedder.embed(text)
        return result.vector
