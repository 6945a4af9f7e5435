"""
FAQ generation run.

eligible questions -> cluster -> drop clusters below min_question_count ->
largest clusters first, capped at max_faqs -> consolidate each -> refresh
statistics of every group from the association table.

Re-running on an unchanged question set creates nothing and changes no
counts: every cluster maps onto its existing group as UNCHANGED.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from inboxfaq.config import (
    FAQ_AUTO_PUBLISH_THRESHOLD,
    FAQ_MAX_PER_RUN,
    FAQ_MIN_QUESTION_COUNT,
    QUESTION_CONFIDENCE_THRESHOLD,
    SIMILARITY_THRESHOLD,
)
from inboxfaq.contracts.services import AnswerWriter
from inboxfaq.faq.consolidator import ConsolidationOutcome, FAQConsolidator
from inboxfaq.faq.models import ConsolidationAction
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.faq.similarity import SimilarityEngine
from inboxfaq.observability.logging import get_logger
from inboxfaq.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationOptions:
    min_question_count: int = FAQ_MIN_QUESTION_COUNT
    max_faqs: int = FAQ_MAX_PER_RUN
    similarity_threshold: float = SIMILARITY_THRESHOLD
    confidence_threshold: float = QUESTION_CONFIDENCE_THRESHOLD
    auto_publish_threshold: int = FAQ_AUTO_PUBLISH_THRESHOLD
    force_regenerate: bool = False


@dataclass
class GenerationSummary:
    questions_considered: int = 0
    clusters_found: int = 0
    clusters_processed: int = 0
    created: int = 0
    updated: int = 0
    merged: int = 0
    unchanged: int = 0
    skipped: int = 0
    groups_refreshed: int = 0
    duration_seconds: float = 0.0
    outcomes: list[ConsolidationOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "questions_considered": self.questions_considered,
            "clusters_found": self.clusters_found,
            "clusters_processed": self.clusters_processed,
            "created": self.created,
            "updated": self.updated,
            "merged": self.merged,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "groups_refreshed": self.groups_refreshed,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class FAQGenerator:
    """Runs clustering and consolidation over every eligible stored question."""

    def __init__(
        self,
        writer: AnswerWriter,
        store: QuestionStore | None = None,
        engine: SimilarityEngine | None = None,
    ):
        self.writer = writer
        self.store = store or QuestionStore()
        self.engine = engine

    async def run(self, options: GenerationOptions | None = None) -> GenerationSummary:
        """
        Generate or update FAQ groups.

        Side Effects:
            - Writes faq_groups / question_groups (one transaction per cluster)
            - Refreshes statistics for all groups
        """
        options = options or GenerationOptions()
        summary = GenerationSummary()
        started = time.monotonic()

        with time_block("faq.generation.latency"):
            questions = self.store.fetch_clusterable_questions(options.confidence_threshold)
            summary.questions_considered = len(questions)

            engine = self.engine or SimilarityEngine(threshold=options.similarity_threshold)
            clusters = engine.cluster(questions, threshold=options.similarity_threshold)
            summary.clusters_found = len(clusters)

            eligible = [c for c in clusters if c.size >= options.min_question_count]
            # sorted() is stable, so equal sizes keep clustering order
            eligible = sorted(eligible, key=lambda c: -c.size)[: options.max_faqs]
            summary.clusters_processed = len(eligible)

            consolidator = FAQConsolidator(
                writer=self.writer,
                store=self.store,
                min_question_count=options.min_question_count,
                auto_publish_threshold=options.auto_publish_threshold,
                force_regenerate=options.force_regenerate,
            )
            summary.outcomes = await consolidator.consolidate_all(eligible)
            summary.groups_refreshed = self.store.refresh_group_statistics()

        for outcome in summary.outcomes:
            if outcome.action == ConsolidationAction.CREATED:
                summary.created += 1
            elif outcome.action == ConsolidationAction.UPDATED:
                summary.updated += 1
            elif outcome.action == ConsolidationAction.MERGED:
                summary.merged += 1
            elif outcome.action == ConsolidationAction.UNCHANGED:
                summary.unchanged += 1
            else:
                summary.skipped += 1

        summary.duration_seconds = time.monotonic() - started
        counter("faq.generation_runs")
        log_event("faq.generation_complete", **summary.to_dict())
        logger.info(
            "FAQ generation: %d questions, %d clusters, %d created, %d updated, %d merged, %d skipped",
            summary.questions_considered,
            summary.clusters_found,
            summary.created,
            summary.updated,
            summary.merged,
            summary.skipped,
        )
        return summary
