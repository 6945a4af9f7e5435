"""
Type Contracts for inboxfaq

Validated response structs for the external AI collaborators (extraction,
embedding, consolidation) and the Protocols the pipeline depends on, so the
clustering/consolidation code never touches a raw model response.
"""

from inboxfaq.contracts.responses import (
    ConsolidationResult,
    EmbeddingResult,
    ExtractedQuestion,
    ExtractionRequest,
    ExtractionResponse,
)
from inboxfaq.contracts.services import AnswerWriter, Embedder, QuestionExtractor

__all__ = [
    "AnswerWriter",
    "ConsolidationResult",
    "Embedder",
    "EmbeddingResult",
    "ExtractedQuestion",
    "ExtractionRequest",
    "ExtractionResponse",
    "QuestionExtractor",
]
