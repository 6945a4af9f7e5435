"""Validation rules for the AI response contracts."""

import pytest
from pydantic import ValidationError

from inboxfaq.contracts.responses import (
    ConsolidationResult,
    EmbeddingResult,
    ExtractedQuestion,
    ExtractionResponse,
)


class TestExtractedQuestion:
    def test_blank_and_null_answers_become_none(self):
        assert ExtractedQuestion(question="How?", answer="  ", confidence=0.5).answer is None
        assert ExtractedQuestion(question="How?", answer="null", confidence=0.5).answer is None
        assert ExtractedQuestion(question="How?", answer=" Yes ", confidence=0.5).answer == "Yes"

    def test_question_is_stripped(self):
        assert ExtractedQuestion(question="  How do I pay?  ", confidence=0.5).question == "How do I pay?"

    def test_empty_question_rejected(self):
        with pytest.raises(ValidationError):
            ExtractedQuestion(question="   ", confidence=0.5)

    @pytest.mark.parametrize("confidence", [-0.1, 1.01])
    def test_confidence_bounds(self, confidence):
        with pytest.raises(ValidationError):
            ExtractedQuestion(question="How do I pay?", confidence=confidence)

    def test_camel_case_alias(self):
        q = ExtractedQuestion.model_validate(
            {"question": "How do I pay?", "confidence": 0.8, "isFromCustomer": False, "category": None}
        )
        assert q.is_from_customer is False
        assert q.category == "general"


class TestExtractionResponse:
    def test_questions_hidden_when_flag_false(self):
        response = ExtractionResponse.model_validate(
            {"hasQuestions": False, "questions": [{"question": "How do I pay?", "confidence": 0.9}]}
        )
        assert len(response.questions) == 1
        assert response.found_questions == []

    def test_aliases(self):
        response = ExtractionResponse.model_validate(
            {"hasQuestions": True, "questions": [], "overallConfidence": 0.4, "reasoning": "r"}
        )
        assert response.has_questions is True
        assert response.overall_confidence == 0.4

    def test_empty(self):
        response = ExtractionResponse.empty("no cues")
        assert response.has_questions is False
        assert response.overall_confidence == 0.1
        assert response.reasoning == "no cues"


def test_embedding_result_requires_a_vector():
    assert EmbeddingResult(vector=[0.1, 0.2], model="m").dimension == 2
    with pytest.raises(ValidationError):
        EmbeddingResult(vector=[], model="m")


def test_consolidation_result_rejects_blank_answer():
    assert ConsolidationResult(answer="  Use the reset link.  ").answer == "Use the reset link."
    with pytest.raises(ValidationError):
        ConsolidationResult(answer=" \n ")
