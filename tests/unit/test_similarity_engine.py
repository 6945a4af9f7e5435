"""Unit tests for cosine similarity and greedy threshold clustering."""

import math
import random

import numpy as np
import pytest
from conftest import make_question

from inboxfaq.faq.representative import RepresentativeSelector
from inboxfaq.faq.similarity import (
    DimensionMismatchError,
    ExactCentroidIndex,
    SimilarityEngine,
    cosine_similarity,
    pairwise_similarity,
)


class TestCosineSimilarity:
    def test_identical_vectors_are_fully_similar(self):
        v = [0.3, 0.1, 0.7, 0.2]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_symmetric_for_random_vectors(self):
        rng = random.Random(7)
        for _ in range(50):
            a = [rng.uniform(-1, 1) for _ in range(16)]
            b = [rng.uniform(-1, 1) for _ in range(16)]
            assert cosine_similarity(a, b) == cosine_similarity(b, a)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_negative_similarity_clamped_to_zero(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_zero_vector_is_zero_not_error(self):
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0

    def test_non_finite_values_are_zero(self):
        assert cosine_similarity([math.nan, 1.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([math.inf, 1.0], [1.0, 1.0]) == 0.0

    def test_empty_vectors_are_zero(self):
        assert cosine_similarity([], []) == 0.0

    def test_dimension_mismatch_fails_fast(self):
        with pytest.raises(DimensionMismatchError, match="dimension 2 and 3"):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_dimension_mismatch_is_a_value_error(self):
        assert issubclass(DimensionMismatchError, ValueError)

    def test_accepts_numpy_arrays(self):
        assert cosine_similarity(np.array([1.0, 1.0]), np.array([2.0, 2.0])) == pytest.approx(1.0)


class TestPairwiseSimilarity:
    def test_matrix_is_clamped(self):
        sims = pairwise_similarity([[1.0, 0.0], [-1.0, 0.0], [1.0, 1.0]])
        assert sims.shape == (3, 3)
        assert sims[0, 1] == 0.0
        assert sims[0, 2] == pytest.approx(1 / math.sqrt(2))
        assert np.all(sims >= 0.0) and np.all(sims <= 1.0)

    def test_zero_rows_have_no_similarity(self):
        sims = pairwise_similarity([[0.0, 0.0], [1.0, 0.0]])
        assert sims[0, 0] == 0.0
        assert sims[0, 1] == 0.0

    def test_empty_input(self):
        assert pairwise_similarity([]).shape == (0, 0)

    def test_mixed_dimensions_rejected(self):
        with pytest.raises(DimensionMismatchError):
            pairwise_similarity([[1.0, 0.0], [1.0, 0.0, 0.0]])


class TestClustering:
    def test_password_and_returns_scenario(self):
        """Two password questions cluster together, the returns question stands alone."""
        q1 = make_question("q1", [1.0, 0.0, 0.0], 0.9, text="How do I reset my password?")
        q2 = make_question("q2", [0.95, 0.05, 0.0], 0.85, text="How can I change my password?")
        q3 = make_question("q3", [0.0, 0.0, 1.0], 0.8, text="What is your return policy?")

        clusters = SimilarityEngine(threshold=0.8).cluster([q3, q2, q1])

        assert [c.question_ids for c in clusters] == [["q1", "q2"], ["q3"]]
        assert RepresentativeSelector().select(clusters[0].members).id == "q1"

    def test_founding_member_similarity_is_one(self):
        clusters = SimilarityEngine().cluster([make_question("a", [1.0, 0.0])])
        assert clusters[0].similarities == [1.0]

    def test_member_similarity_is_measured_on_join(self):
        q1 = make_question("q1", [1.0, 0.0], 0.9)
        q2 = make_question("q2", [1.0, 0.2], 0.8)
        clusters = SimilarityEngine(threshold=0.8).cluster([q1, q2])

        assert clusters[0].similarity_for("q2") == pytest.approx(cosine_similarity([1.0, 0.0], [1.0, 0.2]))

    def test_centroid_is_exact_member_mean(self):
        members = [
            make_question("a", [1.0, 0.0, 0.0], 0.9),
            make_question("b", [0.9, 0.1, 0.0], 0.8),
            make_question("c", [0.8, 0.2, 0.1], 0.7),
        ]
        clusters = SimilarityEngine(threshold=0.8).cluster(members)

        assert len(clusters) == 1
        expected = np.mean([[1.0, 0.0, 0.0], [0.9, 0.1, 0.0], [0.8, 0.2, 0.1]], axis=0)
        np.testing.assert_allclose(clusters[0].centroid, expected)

    def test_tie_goes_to_earliest_cluster(self):
        a = make_question("a", [1.0, 0.0], 0.9)
        b = make_question("b", [0.0, 1.0], 0.8)
        c = make_question("c", [1.0, 1.0], 0.7)

        clusters = SimilarityEngine(threshold=0.7).cluster([c, b, a])

        assert [cl.question_ids for cl in clusters] == [["a", "c"], ["b"]]
        assert clusters[0].similarity_for("c") == pytest.approx(1 / math.sqrt(2))

    def test_order_is_confidence_then_created_at_then_id(self):
        older = make_question("z", [1.0, 0.0], 0.9, minutes=0)
        newer = make_question("a", [1.0, 0.0], 0.9, minutes=5)
        same_time_low_id = make_question("b", [1.0, 0.0], 0.9, minutes=5)
        best = make_question("m", [1.0, 0.0], 0.95, minutes=10)

        clusters = SimilarityEngine().cluster([newer, same_time_low_id, older, best])

        assert clusters[0].question_ids == ["m", "z", "a", "b"]

    def test_deterministic_regardless_of_input_order(self):
        rng = random.Random(42)
        questions = [
            make_question(f"q{i}", [rng.random() for _ in range(8)], round(rng.uniform(0.7, 1.0), 2), minutes=i)
            for i in range(40)
        ]
        engine = SimilarityEngine(threshold=0.85)

        first = [c.question_ids for c in engine.cluster(questions)]
        shuffled = questions[:]
        rng.shuffle(shuffled)
        second = [c.question_ids for c in engine.cluster(shuffled)]

        assert first == second

    def test_questions_without_embeddings_are_skipped(self):
        clusters = SimilarityEngine().cluster(
            [make_question("a", [1.0, 0.0]), make_question("b", None), make_question("c", [])]
        )
        assert [c.question_ids for c in clusters] == [["a"]]

    def test_mixed_dimensions_fail_fast(self):
        with pytest.raises(DimensionMismatchError, match="expected 2"):
            SimilarityEngine().cluster(
                [make_question("a", [1.0, 0.0], 0.9), make_question("b", [1.0, 0.0, 0.0], 0.8)]
            )

    def test_configured_dimension_is_enforced(self):
        with pytest.raises(DimensionMismatchError):
            SimilarityEngine(dimension=4).cluster([make_question("a", [1.0, 0.0])])

    def test_well_separated_clusters_respect_threshold(self):
        rng = random.Random(3)
        axes = [[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0]]
        questions = []
        for i in range(30):
            base = axes[i % 3]
            vector = [v + rng.uniform(0.0, 0.05) for v in base]
            questions.append(make_question(f"q{i:02d}", vector, 0.8, minutes=i))

        threshold = 0.8
        clusters = SimilarityEngine(threshold=threshold).cluster(questions)

        assert len(clusters) == 3
        for cluster in clusters:
            for member in cluster.members:
                close_to = [
                    other
                    for other in clusters
                    if cosine_similarity(member.embedding, other.centroid) >= threshold
                ]
                assert close_to == [cluster]

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            SimilarityEngine(threshold=1.5)

    def test_pluggable_index_is_used(self):
        created = []

        def factory():
            index = ExactCentroidIndex()
            created.append(index)
            return index

        SimilarityEngine(index_factory=factory).cluster(
            [make_question("a", [1.0, 0.0]), make_question("b", [0.0, 1.0])]
        )
        assert len(created) == 1
        assert len(created[0]) == 2


class TestSearchHelpers:
    def test_find_similar_orders_by_similarity(self):
        engine = SimilarityEngine()
        candidates = [
            make_question("far", [0.0, 1.0]),
            make_question("near", [1.0, 0.1]),
            make_question("exact", [1.0, 0.0]),
            make_question("self", [1.0, 0.0]),
        ]
        matches = engine.find_similar([1.0, 0.0], candidates, threshold=0.8, exclude_id="self")
        assert [q.id for q, _ in matches] == ["exact", "near"]

    def test_find_duplicates_pairs_near_identical(self):
        engine = SimilarityEngine()
        pairs = engine.find_duplicates(
            [
                make_question("a", [1.0, 0.0]),
                make_question("b", [1.0, 0.01]),
                make_question("c", [0.0, 1.0]),
            ]
        )
        assert [(p[0].id, p[1].id) for p in pairs] == [("a", "b")]
        assert pairs[0][2] >= 0.95

    def test_similarity_distribution_buckets(self):
        distribution = SimilarityEngine().similarity_distribution(
            [
                make_question("a", [1.0, 0.0]),
                make_question("b", [1.0, 0.0]),
                make_question("c", [0.0, 1.0]),
            ]
        )
        assert distribution["0.9-1.0"] == 1
        assert distribution["0.0-0.5"] == 2
        assert sum(distribution.values()) == 3
