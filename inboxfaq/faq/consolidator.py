"""
FAQConsolidator - turns clusters into FAQ groups.

For each cluster:
- No existing group touches any member: create a group (only when the
  cluster has at least min_question_count members).
- One or more groups touch members: the group with the most matching
  members (oldest on a tie) is the target. Other touched groups are merged
  into it. Members not yet associated are added.
- Nothing new for the target: UNCHANGED, no model call, no write.

Model calls happen before the cluster's transaction opens, each bounded by
call_timeout_seconds; all writes for one cluster then commit or roll back
together. A failing cluster (model error, timeout, database error) is logged,
counted and skipped. Touched groups get a statistics refresh from the
association table at the end of the batch, even when the batch is cut short.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from inboxfaq.config import (
    FAQ_AUTO_PUBLISH_THRESHOLD,
    FAQ_MIN_QUESTION_COUNT,
    FAQ_TITLE_MAX_CHARS,
    LLM_TIMEOUT_SECONDS,
)
from inboxfaq.contracts.services import AnswerWriter
from inboxfaq.faq.models import (
    Cluster,
    ConsolidationAction,
    FAQGroup,
    Question,
    QuestionGroup,
    utc_now,
)
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.faq.representative import RepresentativeSelector
from inboxfaq.faq.similarity import DimensionMismatchError
from inboxfaq.observability.logging import get_logger, preview
from inboxfaq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ConsolidationOutcome:
    """What happened to one cluster."""

    action: ConsolidationAction
    cluster_size: int
    group_id: str | None = None
    added_question_ids: list[str] = field(default_factory=list)
    absorbed_group_ids: list[str] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def skipped(cls, cluster: Cluster, reason: str) -> ConsolidationOutcome:
        return cls(action=ConsolidationAction.SKIPPED, cluster_size=cluster.size, reason=reason)

    @property
    def changed(self) -> bool:
        return self.action in (
            ConsolidationAction.CREATED,
            ConsolidationAction.UPDATED,
            ConsolidationAction.MERGED,
        )


def make_title(question: str, max_chars: int = FAQ_TITLE_MAX_CHARS) -> str:
    """FAQ title from a question: trailing '?' stripped, at most max_chars."""
    title = " ".join(question.split()).rstrip("? ").strip()
    if len(title) > max_chars:
        title = title[: max_chars - 3].rstrip() + "..."
    return title


def group_statistics(questions: Sequence[Question]) -> tuple[int, float, float]:
    """
    (question_count, avg_confidence, frequency_score) for a set of members.

    A member without confidence counts as 0, matching the SQL refresh.
    """
    count = len(questions)
    if count == 0:
        return 0, 0.0, 0.0
    avg = sum(q.confidence_score or 0.0 for q in questions) / count
    avg = min(1.0, max(0.0, avg))
    return count, avg, count * avg


class FAQConsolidator:
    """
    Reconciles clustering output with stored FAQ groups.

    Args:
        writer: Produces consolidated answers, refined questions, category, tags
        store: Persistence for groups and associations
        min_question_count: Smallest cluster that may create a new group
        auto_publish_threshold: Member count at which a group is published
        force_regenerate: Rewrite the answer of matched groups even with no new members
        call_timeout_seconds: Limit for each answer-writer call
    """

    def __init__(
        self,
        writer: AnswerWriter,
        store: QuestionStore | None = None,
        selector: RepresentativeSelector | None = None,
        min_question_count: int = FAQ_MIN_QUESTION_COUNT,
        auto_publish_threshold: int = FAQ_AUTO_PUBLISH_THRESHOLD,
        force_regenerate: bool = False,
        call_timeout_seconds: float = LLM_TIMEOUT_SECONDS,
    ):
        self.writer = writer
        self.store = store or QuestionStore()
        self.selector = selector or RepresentativeSelector()
        self.min_question_count = min_question_count
        self.auto_publish_threshold = auto_publish_threshold
        self.force_regenerate = force_regenerate
        self.call_timeout_seconds = call_timeout_seconds

    async def consolidate_all(self, clusters: Sequence[Cluster]) -> list[ConsolidationOutcome]:
        """
        Consolidate every cluster, then refresh statistics of touched groups.

        Raises:
            DimensionMismatchError: Embedding configuration bug; groups already
                committed still get their statistics refreshed

        Side Effects:
            - Creates, updates, merges or deletes rows in faq_groups / question_groups
            - One transaction per cluster; a failed cluster does not roll back others
        """
        outcomes: list[ConsolidationOutcome] = []
        touched: list[str] = []

        try:
            for cluster in clusters:
                try:
                    outcome = await self.consolidate(cluster)
                except DimensionMismatchError:
                    raise
                except Exception as e:
                    reason = str(e) or type(e).__name__
                    counter("faq.cluster_skipped")
                    logger.error(
                        "Skipping cluster of %d questions (%s): %s: %s",
                        cluster.size,
                        preview(cluster.members[0].question_text) if cluster.members else "",
                        type(e).__name__,
                        reason,
                    )
                    outcomes.append(ConsolidationOutcome.skipped(cluster, reason))
                    continue

                outcomes.append(outcome)
                if outcome.group_id and outcome.changed:
                    touched.append(outcome.group_id)
        finally:
            if touched:
                self.store.refresh_group_statistics(touched)

        return outcomes

    async def _ask(self, call: Awaitable[T], what: str) -> T:
        """Await one answer-writer call within call_timeout_seconds."""
        try:
            return await asyncio.wait_for(call, timeout=self.call_timeout_seconds)
        except TimeoutError:
            counter("faq.writer_timeout")
            raise TimeoutError(
                f"{what} timed out after {self.call_timeout_seconds:g}s"
            ) from None

    async def consolidate(self, cluster: Cluster) -> ConsolidationOutcome:
        """
        Consolidate one cluster.

        Raises:
            ConsolidationError: If the answer could not be written
            TimeoutError: If an answer-writer call exceeds call_timeout_seconds
            sqlite3.Error: If the cluster's transaction fails
        """
        if cluster.size == 0:
            return ConsolidationOutcome.skipped(cluster, "empty cluster")

        matches = self.store.find_groups_for_questions(cluster.question_ids)
        if not matches:
            if cluster.size < self.min_question_count:
                counter("faq.cluster_below_minimum")
                return ConsolidationOutcome.skipped(
                    cluster, f"{cluster.size} questions < minimum {self.min_question_count}"
                )
            return await self._create(cluster)

        # max() keeps the first of equal counts, and matches come oldest first
        target, _ = max(matches, key=lambda match: len(match[1]))
        others = [group for group, _ in matches if group.id != target.id]
        return await self._update(cluster, target, others)

    async def _create(self, cluster: Cluster) -> ConsolidationOutcome:
        representative = self.selector.select(cluster.members)
        refined = await self._ask(
            self.writer.refine_question(representative.question_text, representative.context or ""),
            "question refinement",
        )
        result = await self._ask(
            self.writer.consolidate(
                [q.question_text for q in cluster.members],
                [q.answer_text for q in cluster.members if q.answer_text],
            ),
            "answer consolidation",
        )
        category = await self._ask(self.writer.categorize(refined), "categorization")
        tags = await self._ask(self.writer.extract_tags(refined), "tag extraction")

        count, avg_confidence, frequency = group_statistics(cluster.members)
        now = utc_now()
        group = FAQGroup(
            id=str(uuid.uuid4()),
            title=make_title(refined),
            representative_question=refined,
            consolidated_answer=result.answer,
            question_count=count,
            frequency_score=frequency,
            avg_confidence=avg_confidence,
            representative_embedding=representative.embedding,
            is_published=count >= self.auto_publish_threshold,
            category=category,
            tags=tags,
            created_at=now,
            updated_at=now,
        )

        rows = [
            QuestionGroup(
                question_id=q.id,
                group_id=group.id,
                similarity_score=1.0 if q.id == representative.id else similarity,
                is_representative=q.id == representative.id,
            )
            for q, similarity in zip(cluster.members, cluster.similarities, strict=True)
        ]

        with self.store.transaction() as conn:
            self.store.insert_faq_group(group, conn=conn)
            self.store.upsert_associations(conn, group.id, rows)

        counter("faq.group_created")
        log_event(
            "faq.group_created",
            group_id=group.id,
            questions=count,
            published=group.is_published,
        )
        logger.info("Created FAQ group %s (%d questions): %s", group.id, count, preview(group.title))
        return ConsolidationOutcome(
            action=ConsolidationAction.CREATED,
            cluster_size=cluster.size,
            group_id=group.id,
            added_question_ids=cluster.question_ids,
        )

    async def _update(
        self, cluster: Cluster, target: FAQGroup, others: list[FAQGroup]
    ) -> ConsolidationOutcome:
        target_members = set(self.store.get_group_member_ids(target.id))
        absorbed_members: set[str] = set()
        for other in others:
            absorbed_members.update(self.store.get_group_member_ids(other.id))

        added = [
            qid
            for qid in cluster.question_ids
            if qid not in target_members and qid not in absorbed_members
        ]

        if not added and not others and not self.force_regenerate:
            counter("faq.group_unchanged")
            return ConsolidationOutcome(
                action=ConsolidationAction.UNCHANGED,
                cluster_size=cluster.size,
                group_id=target.id,
            )

        all_member_ids = sorted(target_members | absorbed_members | set(added))
        members = self.store.get_questions(all_member_ids)
        result = await self._ask(
            self.writer.consolidate(
                [q.question_text for q in members],
                [q.answer_text for q in members if q.answer_text],
            ),
            "answer consolidation",
        )

        count, avg_confidence, frequency = group_statistics(members)
        updated = target.model_copy(
            update={
                "consolidated_answer": result.answer,
                "question_count": count,
                "avg_confidence": avg_confidence,
                "frequency_score": frequency,
                "is_published": target.is_published or count >= self.auto_publish_threshold,
                "updated_at": utc_now(),
            }
        )

        new_rows = [
            QuestionGroup(
                question_id=qid,
                group_id=target.id,
                similarity_score=cluster.similarity_for(qid),
                is_representative=False,
            )
            for qid in added
        ]

        with self.store.transaction() as conn:
            for other in others:
                self.store.move_associations(conn, other.id, target.id)
                self.store.delete_faq_group(other.id, conn=conn)
            if new_rows:
                self.store.upsert_associations(conn, target.id, new_rows)
            self.store.update_faq_group(updated, conn=conn)

        action = ConsolidationAction.MERGED if others else ConsolidationAction.UPDATED
        counter(f"faq.group_{action.value}")
        log_event(
            f"faq.group_{action.value}",
            group_id=target.id,
            added=len(added),
            absorbed=len(others),
            questions=count,
        )
        logger.info(
            "%s FAQ group %s: +%d questions, %d groups absorbed",
            action.value.capitalize(),
            target.id,
            len(added),
            len(others),
        )
        return ConsolidationOutcome(
            action=action,
            cluster_size=cluster.size,
            group_id=target.id,
            added_question_ids=added,
            absorbed_group_ids=[other.id for other in others],
        )
