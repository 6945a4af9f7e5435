"""
Response structs for the AI collaborators.

Every model response is validated into one of these before the pipeline uses
it. Field aliases accept the camelCase keys the extraction prompt asks for.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExtractionRequest(BaseModel):
    """Input to the question-extraction call (body already truncated by the caller)."""

    model_config = ConfigDict(frozen=True)

    body_text: str = ""
    subject: str = ""
    thread_context: list[str] = Field(default_factory=list)


class ExtractedQuestion(BaseModel):
    """One question found in an email."""

    model_config = ConfigDict(populate_by_name=True)

    question: str
    answer: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    context: str | None = None
    category: str = "general"
    is_from_customer: bool = Field(default=True, alias="isFromCustomer")

    @field_validator("question")
    @classmethod
    def question_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("question cannot be empty")
        return v.strip()

    @field_validator("answer", "context")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if not v or v.lower() == "null":
            return None
        return v

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v: str | None) -> str:
        return (v or "general").strip() or "general"


class ExtractionResponse(BaseModel):
    """Validated output of the question-extraction call.

    A missing `hasQuestions` is read as False, and `found_questions` is empty
    whenever has_questions is False regardless of what `questions` holds.
    """

    model_config = ConfigDict(populate_by_name=True)

    has_questions: bool = Field(default=False, alias="hasQuestions")
    questions: list[ExtractedQuestion] = Field(default_factory=list)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0, alias="overallConfidence")
    reasoning: str = ""

    @property
    def found_questions(self) -> list[ExtractedQuestion]:
        return self.questions if self.has_questions else []

    @classmethod
    def empty(cls, reasoning: str, confidence: float = 0.1) -> ExtractionResponse:
        return cls(has_questions=False, questions=[], overall_confidence=confidence, reasoning=reasoning)


class EmbeddingResult(BaseModel):
    """A single embedding vector and the model that produced it."""

    model_config = ConfigDict(frozen=True)

    vector: list[float] = Field(min_length=1)
    model: str = ""

    @property
    def dimension(self) -> int:
        return len(self.vector)


class ConsolidationResult(BaseModel):
    """Output of the answer-consolidation call."""

    answer: str

    @field_validator("answer")
    @classmethod
    def answer_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("consolidated answer cannot be empty")
        return v.strip()
