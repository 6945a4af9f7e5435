"""
Collaborator Protocols

The pipeline depends on these, never on the Gemini-backed implementations in
inboxfaq.faq.ai, so tests and alternative providers can be swapped in.
"""

from __future__ import annotations

from typing import Protocol

from inboxfaq.contracts.responses import (
    ConsolidationResult,
    EmbeddingResult,
    ExtractionRequest,
    ExtractionResponse,
)


class QuestionExtractor(Protocol):
    """Finds customer questions in one email."""

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse: ...


class Embedder(Protocol):
    """Turns text into fixed-length vectors."""

    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str) -> EmbeddingResult: ...

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]: ...


class AnswerWriter(Protocol):
    """Writes FAQ text for a cluster of similar questions."""

    async def consolidate(self, questions: list[str], answers: list[str]) -> ConsolidationResult: ...

    async def refine_question(self, question: str, context: str = "") -> str: ...

    async def categorize(self, question: str) -> str: ...

    async def extract_tags(self, question: str) -> list[str]: ...
