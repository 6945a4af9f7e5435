"""
FAQ domain models.

Emails feed the extraction pipeline, questions are what it finds, and FAQ
groups are the consolidated entries built from clusters of similar questions.
QuestionGroup rows link the two. A Cluster is the transient output of one
clustering run and is never stored directly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def parse_dt(val: str | None) -> datetime | None:
    """Parse a stored ISO timestamp, treating naive values as UTC."""
    if val is None:
        return None
    dt = datetime.fromisoformat(val)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def dump_embedding(embedding: list[float] | None) -> str | None:
    return json.dumps(embedding) if embedding is not None else None


def load_embedding(raw: str | None) -> list[float] | None:
    if not raw:
        return None
    values = json.loads(raw)
    return [float(v) for v in values] if values else None


class Email(BaseModel):
    """An inbound support email waiting for (or done with) question extraction."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., description="Provider message ID")
    thread_id: str | None = Field(default=None)
    subject: str = Field(default="")
    body_text: str = Field(default="")
    sender_email: str | None = Field(default=None)
    sender_name: str | None = Field(default=None)
    received_at: datetime = Field(default_factory=utc_now)
    processed_for_faq: bool = Field(default=False)
    processed_at: datetime | None = Field(default=None)
    processing_error: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("id")
    @classmethod
    def id_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("email id cannot be empty")
        return v.strip()

    @property
    def label(self) -> str:
        """Short human-readable label used in progress snapshots."""
        return self.subject or self.id

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "body_text": self.body_text,
            "sender_email": self.sender_email,
            "sender_name": self.sender_name,
            "received_at": self.received_at.isoformat(),
            "processed_for_faq": int(self.processed_for_faq),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "processing_error": self.processing_error,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: Any) -> Email:
        return cls(
            id=row["id"],
            thread_id=row["thread_id"],
            subject=row["subject"] or "",
            body_text=row["body_text"] or "",
            sender_email=row["sender_email"],
            sender_name=row["sender_name"],
            received_at=parse_dt(row["received_at"]) or utc_now(),
            processed_for_faq=bool(row["processed_for_faq"]),
            processed_at=parse_dt(row["processed_at"]),
            processing_error=row["processing_error"],
            created_at=parse_dt(row["created_at"]) or utc_now(),
        )


class Question(BaseModel):
    """
    A question extracted from one email.

    Created by the extraction step. The auto-fix pass may later attach an
    embedding or a default confidence; questions are only removed when their
    email is deleted.
    """

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., description="Question ID (UUID)")
    email_id: str = Field(..., description="Owning email")
    question_text: str = Field(...)
    answer_text: str | None = Field(default=None)
    context: str | None = Field(default=None)
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    is_customer_question: bool = Field(default=True)
    embedding: list[float] | None = Field(default=None)
    category: str = Field(default="general")
    sender_email: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("question_text")
    @classmethod
    def question_text_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("question_text cannot be empty")
        return v.strip()

    @property
    def is_clusterable(self) -> bool:
        """Only questions with an embedding can enter clustering."""
        return bool(self.embedding)

    @classmethod
    def from_db_row(cls, row: Any) -> Question:
        return cls(
            id=row["id"],
            email_id=row["email_id"],
            question_text=row["question_text"],
            answer_text=row["answer_text"],
            context=row["context"],
            confidence_score=row["confidence_score"],
            is_customer_question=bool(row["is_customer_question"]),
            embedding=load_embedding(row["embedding"]),
            category=row["category"] or "general",
            sender_email=row["sender_email"],
            created_at=parse_dt(row["created_at"]) or utc_now(),
        )


class FAQGroup(BaseModel):
    """
    A consolidated FAQ entry.

    question_count mirrors the number of QuestionGroup rows for the group, and
    frequency_score is always question_count * avg_confidence.
    """

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., description="FAQ group ID (UUID)")
    title: str = Field(...)
    representative_question: str = Field(...)
    consolidated_answer: str = Field(...)
    question_count: int = Field(default=0, ge=0)
    frequency_score: float = Field(default=0.0, ge=0.0)
    avg_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    representative_embedding: list[float] | None = Field(default=None)
    is_published: bool = Field(default=False)
    category: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "representative_question": self.representative_question,
            "consolidated_answer": self.consolidated_answer,
            "question_count": self.question_count,
            "frequency_score": self.frequency_score,
            "avg_confidence": self.avg_confidence,
            "representative_embedding": dump_embedding(self.representative_embedding),
            "is_published": int(self.is_published),
            "category": self.category,
            "tags": json.dumps(self.tags),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: Any) -> FAQGroup:
        return cls(
            id=row["id"],
            title=row["title"],
            representative_question=row["representative_question"],
            consolidated_answer=row["consolidated_answer"],
            question_count=row["question_count"],
            frequency_score=row["frequency_score"],
            avg_confidence=row["avg_confidence"],
            representative_embedding=load_embedding(row["representative_embedding"]),
            is_published=bool(row["is_published"]),
            category=row["category"],
            tags=json.loads(row["tags"] or "[]"),
            created_at=parse_dt(row["created_at"]) or utc_now(),
            updated_at=parse_dt(row["updated_at"]) or utc_now(),
        )


class QuestionGroup(BaseModel):
    """Association between a question and the FAQ group it belongs to."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    group_id: str
    similarity_score: float = Field(default=1.0, ge=0.0, le=1.0)
    is_representative: bool = False


class ConsolidationAction(str, Enum):
    """What the consolidator did with one cluster."""

    CREATED = "created"
    UPDATED = "updated"
    MERGED = "merged"  # Cluster spanned several groups; they were folded into one
    UNCHANGED = "unchanged"  # Every member already associated, nothing written
    SKIPPED = "skipped"  # Below min_question_count, or the cluster failed


@dataclass(eq=False)
class Cluster:
    """
    One group of similar questions from a clustering run.

    `similarities[i]` is the similarity measured when `members[i]` joined
    (1.0 for the founding member). The centroid is the exact mean of every
    member embedding.
    """

    members: list[Question] = field(default_factory=list)
    similarities: list[float] = field(default_factory=list)
    centroid: np.ndarray | None = None

    @property
    def question_ids(self) -> list[str]:
        return [q.id for q in self.members]

    @property
    def size(self) -> int:
        return len(self.members)

    def similarity_for(self, question_id: str) -> float:
        for question, similarity in zip(self.members, self.similarities, strict=True):
            if question.id == question_id:
                return similarity
        raise KeyError(question_id)
