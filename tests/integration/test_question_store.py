"""
Integration tests for QuestionStore against a real SQLite database.

Run with: pytest tests/integration/test_question_store.py -v
"""

from datetime import timedelta

import pytest
from conftest import BASE_TIME, make_email, seed_question

from inboxfaq.contracts.responses import ExtractedQuestion
from inboxfaq.faq.models import FAQGroup, QuestionGroup


# =============================================================================
# Emails
# =============================================================================


class TestEmails:
    def test_upsert_keeps_processing_state(self, store):
        """Re-syncing an email must not reset its processed flag."""
        store.upsert_email(make_email("e1", subject="Old subject"))
        store.mark_email_processed("e1", error="boom")

        store.upsert_email(make_email("e1", subject="New subject"))

        email = store.get_email("e1")
        assert email.subject == "New subject"
        assert email.processed_for_faq is True
        assert email.processing_error == "boom"

    def test_unprocessed_oldest_first(self, store):
        store.upsert_email(make_email("late", received_at=BASE_TIME + timedelta(hours=2)))
        store.upsert_email(make_email("early", received_at=BASE_TIME))
        store.upsert_email(make_email("done", received_at=BASE_TIME + timedelta(hours=1)))
        store.mark_email_processed("done")

        assert [e.id for e in store.list_unprocessed_emails()] == ["early", "late"]
        assert [e.id for e in store.list_unprocessed_emails(limit=1)] == ["early"]

    def test_processed_when_questions_exist(self, store):
        """An email with stored questions counts as processed even without the flag."""
        store.upsert_email(make_email("e1"))
        assert store.is_email_processed("e1") is False

        store.insert_questions("e1", [ExtractedQuestion(question="How do I pay?", confidence=0.9)])

        assert store.is_email_processed("e1") is True
        assert store.is_email_processed("missing") is False

    def test_thread_emails_exclude_self(self, store):
        for i in range(5):
            store.upsert_email(
                make_email(f"t{i}", thread_id="thread-1", received_at=BASE_TIME + timedelta(minutes=i))
            )
        store.upsert_email(make_email("other", thread_id="thread-2"))

        earlier = store.list_thread_emails("thread-1", exclude_id="t4", limit=3)

        assert [e.id for e in earlier] == ["t3", "t2", "t1"]
        assert store.list_thread_emails(None, exclude_id="t4") == []


# =============================================================================
# Questions
# =============================================================================


class TestQuestions:
    def test_insert_truncates_long_text(self, store):
        store.upsert_email(make_email("e1"))
        stored = store.insert_questions(
            "e1",
            [
                ExtractedQuestion(
                    question="Why " + "q" * 600 + "?",
                    answer="a" * 2500,
                    context="c" * 700,
                    confidence=0.8,
                )
            ],
            sender_email="customer@example.com",
        )

        question = stored[0]
        assert len(question.question_text) == 500
        assert len(question.answer_text) == 2000
        assert len(question.context) == 500
        assert question.sender_email == "customer@example.com"

    def test_reinsert_same_text_updates_instead_of_duplicating(self, store):
        store.upsert_email(make_email("e1"))
        first = store.insert_questions("e1", [ExtractedQuestion(question="How do I pay?", confidence=0.7)])
        second = store.insert_questions(
            "e1", [ExtractedQuestion(question="How do I pay?", answer="By card", confidence=0.9)]
        )

        assert first[0].id == second[0].id
        assert second[0].confidence_score == 0.9
        assert second[0].answer_text == "By card"
        assert store.count_questions()["total"] == 1

    def test_clusterable_filters(self, store):
        """Only customer questions with an embedding and enough confidence are clustered."""
        keep = seed_question(store, "How do I reset my password?", [1.0, 0.0], confidence=0.9)
        seed_question(store, "Where is my order right now?", None, confidence=0.9)
        seed_question(store, "Can I change my shipping address?", [0.0, 1.0], confidence=0.5)

        store.upsert_email(make_email("staff"))
        staff = store.insert_questions(
            "staff",
            [ExtractedQuestion(question="What is your account number?", confidence=0.95, isFromCustomer=False)],
        )
        store.set_embedding(staff[0].id, [1.0, 0.0])

        clusterable = store.fetch_clusterable_questions(min_confidence=0.7)

        assert [q.id for q in clusterable] == [keep.id]
        assert clusterable[0].embedding == [1.0, 0.0]

    def test_count_questions(self, store):
        seed_question(store, "How do I reset my password?", [1.0, 0.0])
        seed_question(store, "Where is my order right now?", None)

        counts = store.count_questions()

        assert counts == {"total": 2, "with_embedding": 1, "missing_confidence": 0, "customer": 2}


# =============================================================================
# FAQ groups and associations
# =============================================================================


def make_group(group_id: str, **kwargs) -> FAQGroup:
    kwargs.setdefault("created_at", BASE_TIME)
    kwargs.setdefault("updated_at", BASE_TIME)
    return FAQGroup(
        id=group_id,
        title=kwargs.pop("title", f"Group {group_id}"),
        representative_question=kwargs.pop("representative_question", f"Group {group_id}?"),
        consolidated_answer=kwargs.pop("consolidated_answer", "An answer."),
        **kwargs,
    )


class TestGroups:
    def test_refresh_repairs_corrupted_counts(self, store):
        q1 = seed_question(store, "How do I reset my password?", [1.0, 0.0], confidence=0.9)
        q2 = seed_question(store, "I forgot my password, what now?", [1.0, 0.0], confidence=0.7)

        with store.transaction() as conn:
            store.insert_faq_group(make_group("g1", question_count=42, frequency_score=99.0), conn=conn)
            store.upsert_associations(
                conn,
                "g1",
                [
                    QuestionGroup(question_id=q1.id, group_id="g1", similarity_score=1.0, is_representative=True),
                    QuestionGroup(question_id=q2.id, group_id="g1", similarity_score=0.9),
                ],
            )

        assert store.refresh_group_statistics(["g1"]) == 1

        group = store.get_faq_group("g1")
        assert group.question_count == 2
        assert group.avg_confidence == pytest.approx(0.8)
        assert group.frequency_score == pytest.approx(1.6)

    def test_refresh_restores_missing_representative(self, store):
        q1 = seed_question(store, "How do I reset my password?", [1.0, 0.0])
        q2 = seed_question(store, "I forgot my password, what now?", [1.0, 0.0])

        with store.transaction() as conn:
            store.insert_faq_group(make_group("g1"), conn=conn)
            store.upsert_associations(
                conn,
                "g1",
                [
                    QuestionGroup(question_id=q1.id, group_id="g1", similarity_score=0.85),
                    QuestionGroup(question_id=q2.id, group_id="g1", similarity_score=0.95),
                ],
            )

        store.refresh_group_statistics()

        members = store.get_faq_questions("g1")
        assert members[0][0].id == q2.id
        assert [link.is_representative for _, link in members] == [True, False]

    def test_single_representative_enforced(self, store):
        q1 = seed_question(store, "How do I reset my password?", [1.0, 0.0])
        q2 = seed_question(store, "I forgot my password, what now?", [1.0, 0.0])

        with store.transaction() as conn:
            store.insert_faq_group(make_group("g1"), conn=conn)
            store.upsert_associations(
                conn, "g1", [QuestionGroup(question_id=q1.id, group_id="g1", is_representative=True)]
            )
            store.upsert_associations(
                conn, "g1", [QuestionGroup(question_id=q2.id, group_id="g1", is_representative=True)]
            )

        flags = {q.id: link.is_representative for q, link in store.get_faq_questions("g1")}
        assert flags == {q1.id: False, q2.id: True}

        with pytest.raises(ValueError):
            with store.transaction() as conn:
                store.upsert_associations(
                    conn,
                    "g1",
                    [
                        QuestionGroup(question_id=q1.id, group_id="g1", is_representative=True),
                        QuestionGroup(question_id=q2.id, group_id="g1", is_representative=True),
                    ],
                )

    def test_move_associations_and_cascade(self, store):
        q1 = seed_question(store, "How do I reset my password?", [1.0, 0.0])
        q2 = seed_question(store, "I forgot my password, what now?", [1.0, 0.0])

        with store.transaction() as conn:
            store.insert_faq_group(make_group("g1"), conn=conn)
            store.insert_faq_group(make_group("g2", created_at=BASE_TIME + timedelta(days=1)), conn=conn)
            store.upsert_associations(
                conn, "g1", [QuestionGroup(question_id=q1.id, group_id="g1", is_representative=True)]
            )
            store.upsert_associations(
                conn,
                "g2",
                [
                    QuestionGroup(question_id=q1.id, group_id="g2", is_representative=True),
                    QuestionGroup(question_id=q2.id, group_id="g2", similarity_score=0.9),
                ],
            )

        matches = store.find_groups_for_questions([q1.id, q2.id])
        assert [(g.id, sorted(ids)) for g, ids in matches] == [
            ("g1", [q1.id]),
            ("g2", sorted([q1.id, q2.id])),
        ]

        with store.transaction() as conn:
            moved = store.move_associations(conn, "g2", "g1")
            store.delete_faq_group("g2", conn=conn)

        assert moved == 1
        assert sorted(store.get_group_member_ids("g1")) == sorted([q1.id, q2.id])
        assert store.get_faq_group("g2") is None
        assert store.get_group_member_ids("g2") == []
