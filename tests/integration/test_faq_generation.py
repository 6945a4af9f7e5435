"""
Integration tests for the FAQ generation run, the embedding/confidence
backfill and similarity search.
"""

import pytest
from conftest import FakeEmbedder, run, seed_question

from inboxfaq.faq.enrichment import backfill
from inboxfaq.faq.generation import FAQGenerator, GenerationOptions
from inboxfaq.faq.search import FAQSearch
from inboxfaq.infrastructure.database import db_transaction


@pytest.fixture
def seeded(store):
    """Three password questions, two shipping questions and one loner."""
    return {
        "password": [
            seed_question(store, "How do I reset my password?", [1.0, 0.0, 0.0]),
            seed_question(store, "I forgot my password, what do I do?", [0.98, 0.2, 0.0]),
            seed_question(store, "Where is the password reset link?", [0.97, 0.1, 0.1]),
        ],
        "shipping": [
            seed_question(store, "How long does shipping take?", [0.0, 1.0, 0.0]),
            seed_question(store, "When will my parcel arrive?", [0.1, 0.99, 0.0]),
        ],
        "loner": [seed_question(store, "Do you sell gift cards?", [0.0, 0.0, 1.0])],
    }


def assert_groups_consistent(store):
    for group in store.list_faq_groups():
        members = store.get_group_member_ids(group.id)
        assert group.question_count == len(members)
        assert group.frequency_score == pytest.approx(group.question_count * group.avg_confidence)
        links = store.get_faq_questions(group.id)
        assert sum(link.is_representative for _, link in links) == 1


class TestGeneration:
    def test_creates_groups_for_eligible_clusters(self, store, writer, seeded):
        summary = run(FAQGenerator(writer, store=store).run())

        assert summary.questions_considered == 6
        assert summary.clusters_found == 3
        assert summary.clusters_processed == 2
        assert summary.created == 2

        groups = store.list_faq_groups()
        assert [g.question_count for g in groups] == [3, 2]
        assert_groups_consistent(store)

    def test_rerun_is_idempotent(self, store, writer, seeded):
        generator = FAQGenerator(writer, store=store)
        run(generator.run())
        before = {g.id: (g.question_count, g.frequency_score) for g in store.list_faq_groups()}
        calls_before = len(writer.consolidate_calls)

        summary = run(generator.run())

        assert summary.created == 0
        assert summary.unchanged == 2
        assert len(writer.consolidate_calls) == calls_before
        after = {g.id: (g.question_count, g.frequency_score) for g in store.list_faq_groups()}
        assert after == before

    def test_new_question_updates_existing_group(self, store, writer, seeded):
        generator = FAQGenerator(writer, store=store)
        run(generator.run())

        seed_question(store, "Can I change my password from the app?", [0.99, 0.1, 0.05])
        summary = run(generator.run())

        assert summary.updated == 1
        assert summary.unchanged == 1
        assert [g.question_count for g in store.list_faq_groups()] == [4, 2]
        assert_groups_consistent(store)

    def test_max_faqs_keeps_largest_clusters(self, store, writer, seeded):
        summary = run(FAQGenerator(writer, store=store).run(GenerationOptions(max_faqs=1)))

        assert summary.clusters_processed == 1
        assert [g.question_count for g in store.list_faq_groups()] == [3]

    def test_low_confidence_questions_are_ignored(self, store, writer):
        seed_question(store, "How do I reset my password?", [1.0, 0.0, 0.0], confidence=0.6)
        seed_question(store, "I forgot my password, what do I do?", [1.0, 0.0, 0.0], confidence=0.6)

        summary = run(FAQGenerator(writer, store=store).run())

        assert summary.questions_considered == 0
        assert store.list_faq_groups() == []


class TestBackfill:
    def test_backfill_fixes_rows_and_is_idempotent(self, store):
        q1 = seed_question(store, "How do I reset my password?", None)
        q2 = seed_question(store, "How long does shipping take?", None)
        with db_transaction() as conn:
            conn.execute("UPDATE questions SET confidence_score = NULL WHERE id = ?", (q1.id,))

        embedder = FakeEmbedder(vectors={"How long does shipping take?": [0.0, 1.0, 0.0]})
        summary = run(backfill(embedder, store=store, batch_size=1))

        assert summary.confidence_defaulted == 1
        assert summary.embeddings_added == 2
        assert summary.error is None
        fixed = {q.id: q for q in store.get_questions([q1.id, q2.id])}
        assert fixed[q1.id].confidence_score == 0.5
        assert fixed[q1.id].embedding == [1.0, 0.0, 0.0]
        assert fixed[q2.id].embedding == [0.0, 1.0, 0.0]

        again = run(backfill(embedder, store=store))
        assert (again.confidence_defaulted, again.embeddings_added) == (0, 0)
        assert len(embedder.calls) == 2

    def test_embedding_failure_stops_pass(self, store):
        seed_question(store, "How do I reset my password?", None)

        summary = run(backfill(FakeEmbedder(fail=True), store=store))

        assert summary.embeddings_added == 0
        assert summary.embedding_failures == 1
        assert "unavailable" in summary.error
        assert store.count_questions()["with_embedding"] == 0


class TestSearch:
    def test_similar_to_question(self, store, seeded):
        target = seeded["password"][0]

        matches = FAQSearch(store=store).similar_to_question(target.id, threshold=0.9)

        assert {q.id for q, _ in matches} == {q.id for q in seeded["password"][1:]}
        assert all(score >= 0.9 for _, score in matches)

    def test_similar_faqs_only_published(self, store, writer, seeded):
        run(FAQGenerator(writer, store=store).run(GenerationOptions(auto_publish_threshold=3)))
        embedder = FakeEmbedder(vectors={"parcel delivery time": [0.0, 1.0, 0.0]})
        search = FAQSearch(store=store, embedder=embedder)

        password_hits = run(search.similar_faqs("reset my password"))
        shipping_hits = run(search.similar_faqs("parcel delivery time"))

        assert len(password_hits) == 1
        assert password_hits[0][0].question_count == 3
        assert shipping_hits == []

    def test_duplicates_and_stats(self, store):
        a = seed_question(store, "How do I reset my password?", [1.0, 0.0, 0.0])
        b = seed_question(store, "How can I reset my password?", [1.0, 0.01, 0.0])
        seed_question(store, "Do you sell gift cards?", [0.0, 0.0, 1.0])
        search = FAQSearch(store=store)

        pairs = search.duplicates()
        stats = search.similarity_stats()

        assert [{p[0].id, p[1].id} for p in pairs] == [{a.id, b.id}]
        assert stats["total_questions"] == 3
        assert stats["questions_with_embeddings"] == 3
        assert sum(stats["similarity_distribution"].values()) == 3
