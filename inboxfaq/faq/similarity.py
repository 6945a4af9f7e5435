"""
Embedding similarity and greedy threshold clustering.

Pure numeric code: no I/O, no model calls. Embeddings are supplied by the
caller; this module only compares them.

Clustering walks questions in a fixed order (confidence desc, created_at asc,
id asc) and compares each one to the centroid of every cluster formed so far.
It joins the best cluster at or above the threshold (earliest cluster wins a
tie) and that cluster's centroid is recomputed as the exact mean of its
members. Otherwise it founds a new cluster. O(n*k), fine for batch-sized
corpora; centroid lookup sits behind CentroidIndex so an indexed backend can
replace the linear scan.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

import numpy as np

from inboxfaq.config import DUPLICATE_THRESHOLD, SIMILARITY_THRESHOLD
from inboxfaq.faq.models import Cluster, Question
from inboxfaq.observability.logging import get_logger

logger = get_logger(__name__)

DISTRIBUTION_BUCKETS: tuple[tuple[float, str], ...] = (
    (0.9, "0.9-1.0"),
    (0.8, "0.8-0.9"),
    (0.7, "0.7-0.8"),
    (0.6, "0.6-0.7"),
    (0.5, "0.5-0.6"),
    (0.0, "0.0-0.5"),
)


class DimensionMismatchError(ValueError):
    """Two embeddings that should be comparable have different lengths.

    Always a configuration bug (mixed embedding models), never transient.
    """


def _as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """
    Cosine similarity clamped to [0, 1].

    Zero-length, zero-norm or non-finite vectors give 0.0. Negative
    similarity is reported as 0.0.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    va = _as_vector(a)
    vb = _as_vector(b)

    if va.shape != vb.shape:
        raise DimensionMismatchError(
            f"Cannot compare embeddings of dimension {va.shape[0]} and {vb.shape[0]}"
        )

    if va.size == 0 or not (np.all(np.isfinite(va)) and np.all(np.isfinite(vb))):
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb)) / (norm_a * norm_b)
    return min(1.0, max(0.0, similarity))


def pairwise_similarity(vectors: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """
    Clamped cosine similarity matrix for a set of equal-length vectors.

    Rows with zero norm (or non-finite values) have 0.0 similarity to
    everything, themselves included.
    """
    if len(vectors) == 0:
        return np.zeros((0, 0))

    lengths = {len(v) for v in vectors}
    if len(lengths) > 1:
        raise DimensionMismatchError(f"Mixed embedding dimensions: {sorted(lengths)}")

    matrix = np.asarray(vectors, dtype=np.float64)
    valid = np.all(np.isfinite(matrix), axis=1)
    matrix = np.where(valid[:, None], matrix, 0.0)

    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe_norms = np.where(norms == 0.0, 1.0, norms)
    normalized = matrix / safe_norms

    sims = normalized @ normalized.T
    return np.clip(sims, 0.0, 1.0)


class CentroidIndex(Protocol):
    """Lookup structure over cluster centroids."""

    def __len__(self) -> int: ...

    def add(self, centroid: np.ndarray) -> int: ...

    def update(self, position: int, centroid: np.ndarray) -> None: ...

    def best_match(self, vector: np.ndarray, threshold: float) -> tuple[int, float] | None: ...


class ExactCentroidIndex:
    """Linear scan over every centroid. Ties go to the earliest cluster."""

    def __init__(self):
        self._centroids: list[np.ndarray] = []

    def __len__(self) -> int:
        return len(self._centroids)

    def add(self, centroid: np.ndarray) -> int:
        self._centroids.append(centroid)
        return len(self._centroids) - 1

    def update(self, position: int, centroid: np.ndarray) -> None:
        self._centroids[position] = centroid

    def best_match(self, vector: np.ndarray, threshold: float) -> tuple[int, float] | None:
        best: tuple[int, float] | None = None
        for position, centroid in enumerate(self._centroids):
            similarity = cosine_similarity(vector, centroid)
            if similarity < threshold:
                continue
            # Strictly greater keeps the earlier cluster on a tie
            if best is None or similarity > best[1]:
                best = (position, similarity)
        return best


def clustering_order(questions: Sequence[Question]) -> list[Question]:
    """Deterministic processing order: confidence desc, created_at asc, id asc."""

    def key(q: Question):
        confidence = q.confidence_score if q.confidence_score is not None else -1.0
        return (-confidence, q.created_at, q.id)

    return sorted(questions, key=key)


class SimilarityEngine:
    """
    Greedy threshold clustering over question embeddings.

    Args:
        threshold: Minimum centroid similarity to join a cluster
        dimension: Expected embedding length; inferred from the first
            question when None
        index_factory: Builds the CentroidIndex used for one clustering run
    """

    def __init__(
        self,
        threshold: float = SIMILARITY_THRESHOLD,
        dimension: int | None = None,
        index_factory: Callable[[], CentroidIndex] = ExactCentroidIndex,
    ):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        self.threshold = threshold
        self.dimension = dimension
        self.index_factory = index_factory

    def cluster(self, questions: Sequence[Question], threshold: float | None = None) -> list[Cluster]:
        """
        Group questions by semantic similarity.

        Questions without an embedding are skipped. Identical input gives
        identical clusters, members listed in the order they joined.

        Raises:
            DimensionMismatchError: If embeddings in the run differ in length
        """
        threshold = self.threshold if threshold is None else threshold
        eligible = [q for q in questions if q.is_clusterable]
        skipped = len(questions) - len(eligible)
        if skipped:
            logger.debug("Skipping %d questions without embeddings", skipped)

        expected_dim = self.dimension
        index = self.index_factory()
        clusters: list[Cluster] = []

        for question in clustering_order(eligible):
            vector = _as_vector(question.embedding)
            if expected_dim is None:
                expected_dim = vector.shape[0]
            elif vector.shape[0] != expected_dim:
                raise DimensionMismatchError(
                    f"Question {question.id} has embedding dimension {vector.shape[0]}, "
                    f"expected {expected_dim}"
                )

            match = index.best_match(vector, threshold)
            if match is None:
                clusters.append(Cluster(members=[question], similarities=[1.0], centroid=vector))
                index.add(vector)
                continue

            position, similarity = match
            cluster = clusters[position]
            cluster.members.append(question)
            cluster.similarities.append(similarity)
            # Full recompute from members; an incremental mean drifts
            cluster.centroid = np.mean(
                np.asarray([m.embedding for m in cluster.members], dtype=np.float64), axis=0
            )
            index.update(position, cluster.centroid)

        logger.info(
            "Clustered %d questions into %d clusters (threshold=%.2f)",
            len(eligible),
            len(clusters),
            threshold,
        )
        return clusters

    def find_similar(
        self,
        target: Sequence[float],
        candidates: Sequence[Question],
        threshold: float | None = None,
        limit: int = 50,
        exclude_id: str | None = None,
    ) -> list[tuple[Question, float]]:
        """Candidates at or above threshold, most similar first (ties by id)."""
        threshold = self.threshold if threshold is None else threshold
        matches = []
        for candidate in candidates:
            if not candidate.is_clusterable or candidate.id == exclude_id:
                continue
            similarity = cosine_similarity(target, candidate.embedding)
            if similarity >= threshold:
                matches.append((candidate, similarity))

        matches.sort(key=lambda item: (-item[1], item[0].id))
        return matches[:limit]

    def find_duplicates(
        self, questions: Sequence[Question], threshold: float = DUPLICATE_THRESHOLD
    ) -> list[tuple[Question, Question, float]]:
        """Near-identical question pairs, ordered by similarity desc."""
        embedded = sorted((q for q in questions if q.is_clusterable), key=lambda q: q.id)
        if len(embedded) < 2:
            return []

        sims = pairwise_similarity([q.embedding for q in embedded])
        pairs = []
        for i in range(len(embedded)):
            for j in range(i + 1, len(embedded)):
                if sims[i, j] >= threshold:
                    pairs.append((embedded[i], embedded[j], float(sims[i, j])))

        pairs.sort(key=lambda p: (-p[2], p[0].id, p[1].id))
        return pairs

    def similarity_distribution(
        self, questions: Sequence[Question], max_pairs: int = 10000
    ) -> dict[str, int]:
        """Histogram of pairwise similarities, at most `max_pairs` pairs sampled in id order."""
        distribution = {label: 0 for _, label in DISTRIBUTION_BUCKETS}
        embedded = sorted((q for q in questions if q.is_clusterable), key=lambda q: q.id)
        if len(embedded) < 2:
            return distribution

        sims = pairwise_similarity([q.embedding for q in embedded])
        counted = 0
        for i in range(len(embedded)):
            for j in range(i + 1, len(embedded)):
                if counted >= max_pairs:
                    return distribution
                value = float(sims[i, j])
                for floor, label in DISTRIBUTION_BUCKETS:
                    if value >= floor:
                        distribution[label] += 1
                        break
                counted += 1
        return distribution
