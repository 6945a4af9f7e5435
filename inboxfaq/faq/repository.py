"""
QuestionStore - persistence for emails, questions, FAQ groups and their
associations.

Follows the pooled connection helpers in inboxfaq/infrastructure/database.py.
Methods that take a `conn` participate in the caller's transaction (one
transaction per cluster); when `conn` is omitted they open their own.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from typing import Any

from inboxfaq.config import (
    QUESTION_CONFIDENCE_THRESHOLD,
    STORED_ANSWER_MAX_CHARS,
    STORED_CONTEXT_MAX_CHARS,
    STORED_QUESTION_MAX_CHARS,
    THREAD_CONTEXT_EMAILS,
)
from inboxfaq.contracts.responses import ExtractedQuestion
from inboxfaq.faq.models import (
    Email,
    FAQGroup,
    Question,
    QuestionGroup,
    dump_embedding,
    utc_now,
)
from inboxfaq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from inboxfaq.observability.logging import get_logger

logger = get_logger(__name__)


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" for _ in values)


@contextmanager
def _connection(conn: sqlite3.Connection | None) -> Generator[sqlite3.Connection, None, None]:
    """Reuse the caller's transaction, or run in a fresh one."""
    if conn is not None:
        yield conn
        return
    with db_transaction() as own_conn:
        yield own_conn


class QuestionStore:
    """
    Repository for the FAQ pipeline tables.

    All methods use connection pooling; writes retry on "database is locked".
    """

    # ------------------------------------------------------------------ emails

    @staticmethod
    @retry_on_db_lock()
    def upsert_email(email: Email) -> None:
        """
        Insert an email, or refresh its content if it already exists.

        Processing state (processed_for_faq, processed_at, processing_error)
        is never overwritten by an upsert.
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO emails (
                    id, thread_id, subject, body_text, sender_email, sender_name,
                    received_at, processed_for_faq, processed_at, processing_error, created_at
                ) VALUES (
                    :id, :thread_id, :subject, :body_text, :sender_email, :sender_name,
                    :received_at, :processed_for_faq, :processed_at, :processing_error, :created_at
                )
                ON CONFLICT(id) DO UPDATE SET
                    thread_id = excluded.thread_id,
                    subject = excluded.subject,
                    body_text = excluded.body_text,
                    sender_email = excluded.sender_email,
                    sender_name = excluded.sender_name,
                    received_at = excluded.received_at
                """,
                email.to_db_dict(),
            )

    @staticmethod
    def get_email(email_id: str) -> Email | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM emails WHERE id = ?", (email_id,)).fetchone()
        return Email.from_db_row(row) if row else None

    @staticmethod
    def list_unprocessed_emails(limit: int | None = None) -> list[Email]:
        """Emails not yet through extraction, oldest received first."""
        query = "SELECT * FROM emails WHERE processed_for_faq = 0 ORDER BY received_at ASC, id ASC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)

        with get_db_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Email.from_db_row(row) for row in rows]

    @staticmethod
    def is_email_processed(email_id: str) -> bool:
        """True when the email is flagged processed or already has questions."""
        with get_db_connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COALESCE((SELECT processed_for_faq FROM emails WHERE id = ?), 0) AS flagged,
                    EXISTS(SELECT 1 FROM questions WHERE email_id = ?) AS has_questions
                """,
                (email_id, email_id),
            ).fetchone()
        return bool(row["flagged"]) or bool(row["has_questions"])

    @staticmethod
    @retry_on_db_lock()
    def mark_email_processed(email_id: str, error: str | None = None) -> None:
        """
        Flag an email as done, successful or not.

        Side Effects:
            - Sets processed_for_faq, processed_at and processing_error
        """
        with db_transaction() as conn:
            conn.execute(
                """
                UPDATE emails
                SET processed_for_faq = 1, processed_at = ?, processing_error = ?
                WHERE id = ?
                """,
                (utc_now().isoformat(), error, email_id),
            )

    @staticmethod
    def list_thread_emails(
        thread_id: str | None,
        exclude_id: str,
        limit: int = THREAD_CONTEXT_EMAILS,
    ) -> list[Email]:
        """Earlier emails in the same thread, most recent first."""
        if not thread_id:
            return []
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM emails
                WHERE thread_id = ? AND id != ?
                ORDER BY received_at DESC
                LIMIT ?
                """,
                (thread_id, exclude_id, limit),
            ).fetchall()
        return [Email.from_db_row(row) for row in rows]

    # --------------------------------------------------------------- questions

    @staticmethod
    @retry_on_db_lock()
    def insert_questions(
        email_id: str,
        questions: Sequence[ExtractedQuestion],
        sender_email: str | None = None,
    ) -> list[Question]:
        """
        Persist extracted questions for one email.

        Text is bounded before storage (question 500, answer 2000, context
        500 chars). Re-inserting the same question text for the same email
        updates the existing row instead of duplicating it.

        Returns:
            The stored questions, in input order
        """
        now = utc_now().isoformat()
        stored_ids: list[str] = []

        with db_transaction() as conn:
            for extracted in questions:
                question_text = extracted.question[:STORED_QUESTION_MAX_CHARS]
                conn.execute(
                    """
                    INSERT INTO questions (
                        id, email_id, question_text, answer_text, context, confidence_score,
                        is_customer_question, category, sender_email, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(email_id, question_text) DO UPDATE SET
                        answer_text = excluded.answer_text,
                        context = excluded.context,
                        confidence_score = excluded.confidence_score,
                        is_customer_question = excluded.is_customer_question,
                        category = excluded.category,
                        updated_at = excluded.updated_at
                    """,
                    (
                        str(uuid.uuid4()),
                        email_id,
                        question_text,
                        extracted.answer[:STORED_ANSWER_MAX_CHARS] if extracted.answer else None,
                        extracted.context[:STORED_CONTEXT_MAX_CHARS] if extracted.context else None,
                        extracted.confidence,
                        int(extracted.is_from_customer),
                        extracted.category,
                        sender_email,
                        now,
                        now,
                    ),
                )
                row = conn.execute(
                    "SELECT id FROM questions WHERE email_id = ? AND question_text = ?",
                    (email_id, question_text),
                ).fetchone()
                if row["id"] not in stored_ids:
                    stored_ids.append(row["id"])

        logger.debug("Stored %d questions for email %s", len(stored_ids), email_id)
        return QuestionStore.get_questions(stored_ids)

    @staticmethod
    def get_questions(question_ids: Sequence[str]) -> list[Question]:
        """Questions by id, in the order the ids were given (unknown ids dropped)."""
        if not question_ids:
            return []
        ids = list(question_ids)
        with get_db_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM questions WHERE id IN ({_placeholders(ids)})", ids
            ).fetchall()
        by_id = {row["id"]: Question.from_db_row(row) for row in rows}
        return [by_id[qid] for qid in ids if qid in by_id]

    @staticmethod
    def fetch_clusterable_questions(
        min_confidence: float = QUESTION_CONFIDENCE_THRESHOLD,
    ) -> list[Question]:
        """Customer questions with an embedding and confidence >= min_confidence."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM questions
                WHERE embedding IS NOT NULL
                  AND is_customer_question = 1
                  AND confidence_score >= ?
                ORDER BY confidence_score DESC, created_at ASC, id ASC
                """,
                (min_confidence,),
            ).fetchall()
        return [Question.from_db_row(row) for row in rows]

    @staticmethod
    def list_questions_missing_embedding(limit: int) -> list[Question]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM questions
                WHERE embedding IS NULL AND is_customer_question = 1
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [Question.from_db_row(row) for row in rows]

    @staticmethod
    def list_questions_missing_confidence(limit: int) -> list[Question]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM questions
                WHERE confidence_score IS NULL
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [Question.from_db_row(row) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def set_embedding(question_id: str, embedding: Sequence[float]) -> None:
        with db_transaction() as conn:
            conn.execute(
                "UPDATE questions SET embedding = ?, updated_at = ? WHERE id = ?",
                (dump_embedding(list(embedding)), utc_now().isoformat(), question_id),
            )

    @staticmethod
    @retry_on_db_lock()
    def set_confidence(question_id: str, confidence: float) -> None:
        with db_transaction() as conn:
            conn.execute(
                "UPDATE questions SET confidence_score = ?, updated_at = ? WHERE id = ?",
                (confidence, utc_now().isoformat(), question_id),
            )

    @staticmethod
    def count_questions() -> dict[str, int]:
        with get_db_connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(embedding IS NOT NULL), 0) AS with_embedding,
                    COALESCE(SUM(confidence_score IS NULL), 0) AS missing_confidence,
                    COALESCE(SUM(is_customer_question = 1), 0) AS customer
                FROM questions
                """
            ).fetchone()
        return {key: int(row[key]) for key in row.keys()}

    # -------------------------------------------------------------- FAQ groups

    @staticmethod
    def get_faq_group(group_id: str, conn: sqlite3.Connection | None = None) -> FAQGroup | None:
        if conn is not None:
            row = conn.execute("SELECT * FROM faq_groups WHERE id = ?", (group_id,)).fetchone()
        else:
            with get_db_connection() as own_conn:
                row = own_conn.execute(
                    "SELECT * FROM faq_groups WHERE id = ?", (group_id,)
                ).fetchone()
        return FAQGroup.from_db_row(row) if row else None

    @staticmethod
    def list_faq_groups(
        published: bool | None = None,
        category: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[FAQGroup]:
        """FAQ groups, most frequent first."""
        query = "SELECT * FROM faq_groups WHERE 1=1"
        params: list[Any] = []

        if published is not None:
            query += " AND is_published = ?"
            params.append(int(published))
        if category is not None:
            query += " AND category = ?"
            params.append(category)

        query += " ORDER BY frequency_score DESC, created_at ASC, id ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with get_db_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [FAQGroup.from_db_row(row) for row in rows]

    @staticmethod
    def get_faq_questions(group_id: str) -> list[tuple[Question, QuestionGroup]]:
        """Members of a group with their association rows, representative first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT q.*, qg.group_id, qg.similarity_score, qg.is_representative
                FROM question_groups qg
                JOIN questions q ON q.id = qg.question_id
                WHERE qg.group_id = ?
                ORDER BY qg.is_representative DESC, qg.similarity_score DESC, q.created_at ASC
                """,
                (group_id,),
            ).fetchall()

        return [
            (
                Question.from_db_row(row),
                QuestionGroup(
                    question_id=row["id"],
                    group_id=row["group_id"],
                    similarity_score=row["similarity_score"],
                    is_representative=bool(row["is_representative"]),
                ),
            )
            for row in rows
        ]

    @staticmethod
    def find_groups_for_questions(
        question_ids: Sequence[str],
        conn: sqlite3.Connection | None = None,
    ) -> list[tuple[FAQGroup, list[str]]]:
        """
        Existing FAQ groups associated with any of the given questions.

        Returns:
            (group, matched question ids) pairs, oldest group first
        """
        if not question_ids:
            return []
        ids = list(question_ids)
        query = f"""
            SELECT g.*, qg.question_id AS matched_question_id
            FROM question_groups qg
            JOIN faq_groups g ON g.id = qg.group_id
            WHERE qg.question_id IN ({_placeholders(ids)})
            ORDER BY g.created_at ASC, g.id ASC, qg.question_id ASC
        """
        with _connection(conn) as active:
            rows = active.execute(query, ids).fetchall()

        groups: dict[str, tuple[FAQGroup, list[str]]] = {}
        for row in rows:
            if row["id"] not in groups:
                groups[row["id"]] = (FAQGroup.from_db_row(row), [])
            groups[row["id"]][1].append(row["matched_question_id"])
        return list(groups.values())

    @staticmethod
    def insert_faq_group(group: FAQGroup, conn: sqlite3.Connection | None = None) -> None:
        with _connection(conn) as active:
            active.execute(
                """
                INSERT INTO faq_groups (
                    id, title, representative_question, consolidated_answer, question_count,
                    frequency_score, avg_confidence, representative_embedding, is_published,
                    category, tags, created_at, updated_at
                ) VALUES (
                    :id, :title, :representative_question, :consolidated_answer, :question_count,
                    :frequency_score, :avg_confidence, :representative_embedding, :is_published,
                    :category, :tags, :created_at, :updated_at
                )
                """,
                group.to_db_dict(),
            )

    @staticmethod
    def update_faq_group(group: FAQGroup, conn: sqlite3.Connection | None = None) -> None:
        with _connection(conn) as active:
            active.execute(
                """
                UPDATE faq_groups SET
                    title = :title,
                    representative_question = :representative_question,
                    consolidated_answer = :consolidated_answer,
                    question_count = :question_count,
                    frequency_score = :frequency_score,
                    avg_confidence = :avg_confidence,
                    representative_embedding = :representative_embedding,
                    is_published = :is_published,
                    category = :category,
                    tags = :tags,
                    updated_at = :updated_at
                WHERE id = :id
                """,
                group.to_db_dict(),
            )

    @staticmethod
    def delete_faq_group(group_id: str, conn: sqlite3.Connection | None = None) -> None:
        """Delete a group; its association rows cascade."""
        with _connection(conn) as active:
            active.execute("DELETE FROM faq_groups WHERE id = ?", (group_id,))

    @staticmethod
    def get_group_member_ids(group_id: str, conn: sqlite3.Connection | None = None) -> list[str]:
        with _connection(conn) as active:
            rows = active.execute(
                "SELECT question_id FROM question_groups WHERE group_id = ? ORDER BY question_id",
                (group_id,),
            ).fetchall()
        return [row["question_id"] for row in rows]

    # ------------------------------------------------------------ associations

    @staticmethod
    def upsert_associations(
        conn: sqlite3.Connection,
        group_id: str,
        rows: Sequence[QuestionGroup],
    ) -> int:
        """
        Bulk upsert association rows for one group.

        When any row is flagged representative, every other row of the group
        loses the flag first so exactly one representative remains.

        Returns:
            Number of rows written
        """
        if any(row.group_id != group_id for row in rows):
            raise ValueError(f"Association rows must all belong to group {group_id}")

        representatives = [row for row in rows if row.is_representative]
        if len(representatives) > 1:
            raise ValueError(f"Group {group_id} cannot have more than one representative")
        if representatives:
            conn.execute(
                "UPDATE question_groups SET is_representative = 0 WHERE group_id = ?",
                (group_id,),
            )

        now = utc_now().isoformat()
        conn.executemany(
            """
            INSERT INTO question_groups (
                question_id, group_id, similarity_score, is_representative, created_at
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(question_id, group_id) DO UPDATE SET
                similarity_score = excluded.similarity_score,
                is_representative = excluded.is_representative
            """,
            [
                (row.question_id, group_id, row.similarity_score, int(row.is_representative), now)
                for row in rows
            ],
        )
        return len(rows)

    @staticmethod
    def move_associations(conn: sqlite3.Connection, from_group_id: str, to_group_id: str) -> int:
        """
        Re-home every association of one group onto another.

        Moved rows are never representative in the target; rows for questions
        already in the target are dropped.

        Returns:
            Number of rows moved
        """
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO question_groups (
                question_id, group_id, similarity_score, is_representative, created_at
            )
            SELECT question_id, ?, similarity_score, 0, created_at
            FROM question_groups
            WHERE group_id = ?
            """,
            (to_group_id, from_group_id),
        )
        moved = cursor.rowcount
        conn.execute("DELETE FROM question_groups WHERE group_id = ?", (from_group_id,))
        return moved

    # -------------------------------------------------------------- statistics

    @staticmethod
    @retry_on_db_lock()
    def refresh_group_statistics(
        group_ids: Sequence[str] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """
        Recompute question_count, avg_confidence and frequency_score from the
        association table, and restore a missing representative flag.

        frequency_score is always question_count * avg_confidence, where a
        member with no confidence counts as 0.

        Args:
            group_ids: Groups to refresh; all groups when None

        Returns:
            Number of groups refreshed
        """
        where = ""
        params: list[Any] = []
        if group_ids is not None:
            ids = list(dict.fromkeys(group_ids))
            if not ids:
                return 0
            where = f"WHERE id IN ({_placeholders(ids)})"
            params = ids

        with _connection(conn) as active:
            cursor = active.execute(
                f"""
                UPDATE faq_groups SET
                    question_count = (
                        SELECT COUNT(*) FROM question_groups qg WHERE qg.group_id = faq_groups.id
                    ),
                    avg_confidence = MIN(1.0, COALESCE((
                        SELECT AVG(COALESCE(q.confidence_score, 0))
                        FROM question_groups qg
                        JOIN questions q ON q.id = qg.question_id
                        WHERE qg.group_id = faq_groups.id
                    ), 0))
                {where}
                """,
                params,
            )
            refreshed = cursor.rowcount
            active.execute(
                f"UPDATE faq_groups SET frequency_score = question_count * avg_confidence {where}",
                params,
            )
            # A cascade delete can take the representative row with it
            active.execute(
                f"""
                UPDATE question_groups SET is_representative = 1
                WHERE rowid IN (
                    SELECT (
                        SELECT qg.rowid FROM question_groups qg
                        WHERE qg.group_id = g.id
                        ORDER BY qg.similarity_score DESC, qg.question_id ASC
                        LIMIT 1
                    )
                    FROM faq_groups g
                    WHERE NOT EXISTS (
                        SELECT 1 FROM question_groups r
                        WHERE r.group_id = g.id AND r.is_representative = 1
                    )
                    {where.replace("WHERE id", "AND g.id")}
                )
                """,
                params,
            )

        logger.debug("Refreshed statistics for %d FAQ groups", refreshed)
        return refreshed

    @staticmethod
    def faq_stats() -> dict[str, Any]:
        """Aggregate numbers for the CLI `stats` command."""
        with get_db_connection() as conn:
            groups = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_faqs,
                    COALESCE(SUM(is_published), 0) AS published_faqs,
                    COALESCE(AVG(question_count), 0) AS avg_questions_per_faq,
                    COALESCE(MAX(question_count), 0) AS max_questions_per_faq
                FROM faq_groups
                """
            ).fetchone()
            grouped = conn.execute(
                "SELECT COUNT(DISTINCT question_id) AS grouped_questions FROM question_groups"
            ).fetchone()
            emails = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_emails,
                    COALESCE(SUM(processed_for_faq), 0) AS processed_emails,
                    COALESCE(SUM(processing_error IS NOT NULL), 0) AS failed_emails
                FROM emails
                """
            ).fetchone()
            categories = conn.execute(
                """
                SELECT COALESCE(category, 'Uncategorized') AS category, COUNT(*) AS count
                FROM faq_groups
                GROUP BY COALESCE(category, 'Uncategorized')
                ORDER BY count DESC, category ASC
                """
            ).fetchall()

        stats: dict[str, Any] = {**dict(groups), **dict(grouped), **dict(emails)}
        stats["avg_questions_per_faq"] = round(float(stats["avg_questions_per_faq"]), 2)
        stats["categories"] = {row["category"]: row["count"] for row in categories}
        stats["questions"] = QuestionStore.count_questions()
        return stats

    @staticmethod
    @contextmanager
    def transaction() -> Generator[sqlite3.Connection, None, None]:
        """One atomic unit of work (commit on success, rollback on error)."""
        with db_transaction() as conn:
            yield conn
