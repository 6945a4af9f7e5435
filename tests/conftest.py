"""
Pytest configuration for inboxfaq tests

Provides a throwaway SQLite database per test and in-memory fakes for the
AI collaborators (extraction, embeddings, answer writing).
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from inboxfaq.contracts.responses import (
    ConsolidationResult,
    EmbeddingResult,
    ExtractedQuestion,
    ExtractionRequest,
    ExtractionResponse,
)
from inboxfaq.faq.ai import ConsolidationError, EmbeddingError, ExtractionError
from inboxfaq.faq.models import Email, Question
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.infrastructure.database import init_database, reset_pool
from inboxfaq.observability.telemetry import reset_counters, reset_latencies

BASE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_telemetry():
    reset_counters()
    reset_latencies()
    yield
    reset_counters()
    reset_latencies()


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Fresh database at a temporary path, schema applied."""
    db_path = tmp_path / "inboxfaq-test.db"
    monkeypatch.setenv("INBOXFAQ_DB_PATH", str(db_path))
    reset_pool()
    init_database()
    yield db_path
    reset_pool()


@pytest.fixture
def store(db):
    return QuestionStore()


def make_email(email_id: str, subject: str = "Question", body: str = "", **kwargs) -> Email:
    kwargs.setdefault("received_at", BASE_TIME)
    return Email(id=email_id, subject=subject, body_text=body, **kwargs)


def make_question(
    question_id: str,
    embedding: list[float] | None,
    confidence: float | None = 0.9,
    minutes: int = 0,
    text: str | None = None,
    answer: str | None = None,
) -> Question:
    """In-memory question (not stored) for pure clustering tests."""
    return Question(
        id=question_id,
        email_id=f"email-{question_id}",
        question_text=text or f"Question {question_id}?",
        answer_text=answer,
        confidence_score=confidence,
        embedding=embedding,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


def seed_question(
    store: QuestionStore,
    text: str,
    embedding: list[float] | None,
    confidence: float = 0.9,
    answer: str | None = None,
    email_id: str | None = None,
) -> Question:
    """Store an email with one question (and optional embedding)."""
    email_id = email_id or f"email-{uuid.uuid4().hex[:12]}"
    if store.get_email(email_id) is None:
        store.upsert_email(make_email(email_id, body=text))
    stored = store.insert_questions(
        email_id,
        [ExtractedQuestion(question=text, answer=answer, confidence=confidence)],
    )
    question = stored[0]
    if embedding is not None:
        store.set_embedding(question.id, embedding)
        question.embedding = embedding
    return question


def run(coro):
    return asyncio.run(coro)


class FakeExtractor:
    """
    Scripted extractor keyed by subject.

    Values may be an ExtractionResponse, an exception instance to raise, or
    the string "hang" to never return.
    """

    def __init__(self, script: dict | None = None, default: ExtractionResponse | None = None):
        self.script = script or {}
        self.default = default or ExtractionResponse.empty("nothing here")
        self.requests: list[ExtractionRequest] = []

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        self.requests.append(request)
        outcome = self.script.get(request.subject, self.default)
        if outcome == "hang":
            await asyncio.sleep(3600)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FailingExtractor:
    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        raise ExtractionError("model returned garbage")


def questions_response(*texts: str, confidence: float = 0.9) -> ExtractionResponse:
    return ExtractionResponse(
        has_questions=True,
        questions=[ExtractedQuestion(question=t, confidence=confidence) for t in texts],
        overall_confidence=confidence,
        reasoning="test",
    )


class FakeEmbedder:
    """Embeds from a lookup table; unknown text gets a fixed fallback vector."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimension: int = 3, fail: bool = False):
        self.vectors = vectors or {}
        self._dimension = dimension
        self.fail = fail
        self.calls: list[list[str]] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> EmbeddingResult:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("embedding service unavailable")
        fallback = [1.0] + [0.0] * (self._dimension - 1)
        return [EmbeddingResult(vector=self.vectors.get(t, fallback), model="fake") for t in texts]


class FakeAnswerWriter:
    """Deterministic answer writer that records every consolidation call."""

    def __init__(self, fail_when_contains: str | None = None):
        self.fail_when_contains = fail_when_contains
        self.consolidate_calls: list[list[str]] = []

    async def consolidate(self, questions: list[str], answers: list[str]) -> ConsolidationResult:
        self.consolidate_calls.append(list(questions))
        if self.fail_when_contains and any(self.fail_when_contains in q for q in questions):
            raise ConsolidationError("consolidation model unavailable")
        return ConsolidationResult(answer=f"Consolidated answer for {len(questions)} questions")

    async def refine_question(self, question: str, context: str = "") -> str:
        return question

    async def categorize(self, question: str) -> str:
        return "Account & Billing" if "password" in question.lower() else "General Inquiry"

    async def extract_tags(self, question: str) -> list[str]:
        return ["faq"]


@pytest.fixture
def writer():
    return FakeAnswerWriter()


@pytest.fixture
def embedder():
    return FakeEmbedder()
