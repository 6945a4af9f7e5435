"""
AI collaborators: question extraction, embeddings and FAQ answer writing.

Gemini/Vertex-backed implementations of the Protocols in
inboxfaq.contracts.services. Raw model output never leaves this module
unvalidated: extraction JSON is repaired, parsed and validated into
ExtractionResponse, embeddings are dimension-checked, and consolidated
answers must be non-empty.

Failure policy:
- Extraction: malformed output raises ExtractionError (the batch processor
  records it against the email).
- Embedding: transport failures raise EmbeddingError; a vector of the wrong
  length raises DimensionMismatchError (configuration bug, never retried).
- Consolidation: raises ConsolidationError (the cluster is skipped).
- Refinement, categorization and tags fall back to safe defaults.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable, Sequence

from pydantic import ValidationError

from inboxfaq.config import (
    EMBEDDING_DIMENSION,
    EMBEDDING_MODEL,
    EMBEDDING_REQUEST_MAX_TEXTS,
    FAQ_DEFAULT_CATEGORY,
    MAX_QUESTION_LENGTH,
    MIN_QUESTION_LENGTH,
    QUESTION_CONFIDENCE_THRESHOLD,
    REFINE_QUESTIONS,
    THREAD_CONTEXT_BODY_CHARS,
    USE_LLM,
)
from inboxfaq.contracts.responses import (
    ConsolidationResult,
    EmbeddingResult,
    ExtractedQuestion,
    ExtractionRequest,
    ExtractionResponse,
)
from inboxfaq.faq.models import Email
from inboxfaq.faq.similarity import DimensionMismatchError
from inboxfaq.llm.prompts import render_prompt
from inboxfaq.llm.retry import call_llm, embed_texts
from inboxfaq.observability.logging import get_logger, preview
from inboxfaq.observability.telemetry import counter, time_block

logger = get_logger(__name__)

LLMCall = Callable[..., Awaitable[str]]
EmbedCall = Callable[[list[str]], Awaitable[list[list[float]]]]

FAQ_CATEGORIES: tuple[str, ...] = (
    "Account & Billing",
    "Technical Support",
    "Product Information",
    "Shipping & Delivery",
    "Returns & Refunds",
    "General Inquiry",
    "Other",
)

MAX_TAGS = 5
FALLBACK_CONFIDENCE = 0.6

QUESTION_PATTERNS = [
    re.compile(r"\?"),
    re.compile(
        r"\b(how|what|when|where|why|who|which|can|could|would|should|will|is|are|do|does|did)\b.*\?",
        re.IGNORECASE,
    ),
    re.compile(r"\b(help|assist|support|problem|issue|trouble|error)\b", re.IGNORECASE),
    re.compile(r"\b(please|kindly|could you|can you|would you)\b", re.IGNORECASE),
]

CUSTOMER_CONTEXT_PATTERNS = [
    re.compile(r"\b(customer|client|user|support|help|service)\b", re.IGNORECASE),
    re.compile(r"\b(ticket|case|inquiry|request|complaint)\b", re.IGNORECASE),
    re.compile(r"\b(thank you|thanks|regards|sincerely)\b", re.IGNORECASE),
    re.compile(r"\b(dear|hello|hi|greetings)\b", re.IGNORECASE),
]

CONVERSATION_PATTERNS = [
    re.compile(r"\b(re:|fwd:|reply|response|follow.?up)", re.IGNORECASE),
    re.compile(r"\b(previous|earlier|last|original)\s+(email|message|conversation)\b", re.IGNORECASE),
    re.compile(r"\b(as\s+discussed|as\s+mentioned|per\s+our)\b", re.IGNORECASE),
]

INTERROGATIVE_START = re.compile(
    r"^(how|what|when|where|why|who|which|can|could|would|should|will|is|are|do|does|did)\b",
    re.IGNORECASE,
)


class ExtractionError(Exception):
    """The extraction model returned output that could not be parsed or validated."""


class ConsolidationError(Exception):
    """No consolidated answer could be produced for a cluster."""


class EmbeddingError(Exception):
    """The embedding model failed to return usable vectors."""


def extract_json(text: str) -> dict:
    """Extract a JSON object from model output, repairing common formatting slips.

    Handles:
    - Markdown code fences
    - Prose around the object
    - Missing commas between fields
    - Trailing commas

    Raises:
        json.JSONDecodeError: If nothing parseable remains
    """
    text = re.sub(r"```json\s*", "", text)
    text = re.sub(r"```\s*", "", text)
    text = text.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("JSON parse error (attempting repair): %s", e)

        match = re.search(r"\{.*\}", text, re.DOTALL)
        if match:
            json_text = match.group(0)
            try:
                return json.loads(json_text)
            except json.JSONDecodeError:
                pass

            repaired = re.sub(r'"\s*\n\s*"', '",\n"', json_text)
            repaired = re.sub(r"(\d+\.?\d*|true|false|null)\s*\n\s*\"", r'\1,\n"', repaired)
            repaired = re.sub(r'\}\s*\n\s*"', '},\n"', repaired)
            repaired = re.sub(r'\]\s*\n\s*"', '],\n"', repaired)
            try:
                result = json.loads(repaired)
                logger.info("JSON repair succeeded (missing commas fixed)")
                return result
            except json.JSONDecodeError:
                pass

            repaired = re.sub(r",\s*([\}\]])", r"\1", repaired)
            try:
                result = json.loads(repaired)
                logger.info("JSON repair succeeded (trailing commas removed)")
                return result
            except json.JSONDecodeError as repair_error:
                logger.warning("JSON repair failed: %s", repair_error)

        raise


def has_question_signals(subject: str, body: str) -> bool:
    """Cheap pre-check: any question, customer-service or conversation cue at all."""
    full_text = f"Subject: {subject}\n\nBody: {body}"
    return any(
        pattern.search(full_text)
        for pattern in (*QUESTION_PATTERNS, *CUSTOMER_CONTEXT_PATTERNS, *CONVERSATION_PATTERNS)
    )


def fallback_detect(
    subject: str,
    body: str,
    min_length: int = MIN_QUESTION_LENGTH,
    max_length: int = MAX_QUESTION_LENGTH,
) -> ExtractionResponse:
    """
    Pattern-based question detection for when the LLM is disabled.

    A sentence counts when it ends with '?' or opens with an interrogative
    word. Every hit gets confidence 0.6.
    """
    full_text = f"{subject}\n{body}" if subject else body
    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+|\n+", full_text) if s.strip()]

    questions = []
    seen = set()
    for sentence in sentences:
        stem = sentence.rstrip(".!? ").strip()
        if not sentence.endswith("?") and not INTERROGATIVE_START.search(stem):
            continue
        if not min_length <= len(stem) <= max_length:
            continue
        question_text = f"{stem}?"
        if question_text.lower() in seen:
            continue
        seen.add(question_text.lower())
        questions.append(
            ExtractedQuestion(
                question=question_text,
                answer=None,
                confidence=FALLBACK_CONFIDENCE,
                context=sentence,
            )
        )

    return ExtractionResponse(
        has_questions=bool(questions),
        questions=questions,
        overall_confidence=FALLBACK_CONFIDENCE if questions else 0.2,
        reasoning="Fallback pattern-based detection",
    )


def format_thread_context(emails: Sequence[Email], body_chars: int = THREAD_CONTEXT_BODY_CHARS) -> list[str]:
    """Render earlier thread emails (oldest first) as short prompt snippets."""
    snippets = []
    for email in sorted(emails, key=lambda e: e.received_at):
        body = (email.body_text or "")[:body_chars]
        snippets.append(f"({email.sender_email or 'unknown'}): {email.subject}\n{body}...")
    return snippets


class GeminiQuestionExtractor:
    """
    Finds FAQ-worthy customer questions in an email.

    Questions below the confidence threshold, or outside the length bounds,
    are dropped before the response is returned.
    """

    def __init__(
        self,
        use_llm: bool = USE_LLM,
        confidence_threshold: float = QUESTION_CONFIDENCE_THRESHOLD,
        min_length: int = MIN_QUESTION_LENGTH,
        max_length: int = MAX_QUESTION_LENGTH,
        llm_call: LLMCall = call_llm,
    ):
        self.use_llm = use_llm
        self.confidence_threshold = confidence_threshold
        self.min_length = min_length
        self.max_length = max_length
        self._llm_call = llm_call

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        """
        Extract questions from one email.

        Raises:
            ExtractionError: If the model output is not valid extraction JSON
        """
        if not has_question_signals(request.subject, request.body_text):
            counter("extraction.precheck_skipped")
            return ExtractionResponse.empty(
                "No question patterns, customer context, or conversation indicators detected"
            )

        if not self.use_llm:
            counter("extraction.fallback")
            return fallback_detect(
                request.subject, request.body_text, self.min_length, self.max_length
            )

        thread_context = ""
        if request.thread_context:
            lines = [f"Email {i + 1} {snippet}" for i, snippet in enumerate(request.thread_context)]
            thread_context = "\nPrevious emails in this conversation:\n" + "\n\n".join(lines)

        prompt = render_prompt(
            "question_extraction",
            subject=request.subject,
            body=request.body_text,
            thread_context=thread_context,
        )

        with time_block("extraction.llm.latency"):
            raw = await self._llm_call(prompt, counter_prefix="extraction", json_output=True)

        try:
            data = extract_json(raw)
        except json.JSONDecodeError as e:
            counter("extraction.invalid_json")
            raise ExtractionError(f"No valid JSON in extraction response: {preview(raw, 200)}") from e

        if not isinstance(data, dict):
            counter("extraction.invalid_json")
            raise ExtractionError(f"Extraction response is not a JSON object: {type(data).__name__}")

        try:
            response = ExtractionResponse.model_validate(data)
        except ValidationError as e:
            counter("extraction.invalid_schema")
            raise ExtractionError(f"Extraction response failed validation: {e}") from e

        return self._filter(response)

    def _filter(self, response: ExtractionResponse) -> ExtractionResponse:
        kept = [
            q
            for q in response.found_questions
            if q.confidence >= self.confidence_threshold
            and self.min_length <= len(q.question) <= self.max_length
        ]
        dropped = len(response.found_questions) - len(kept)
        if dropped:
            logger.debug("Filtered out %d low-confidence or badly sized questions", dropped)

        logger.info(
            "Detected %d questions (overall confidence %.2f)",
            len(kept),
            response.overall_confidence,
        )
        return response.model_copy(update={"questions": kept, "has_questions": bool(kept)})


class EmbeddingService:
    """Vertex text-embedding wrapper with dimension checking."""

    def __init__(
        self,
        dimension: int = EMBEDDING_DIMENSION,
        model_name: str = EMBEDDING_MODEL,
        embed_call: EmbedCall = embed_texts,
        batch_size: int = EMBEDDING_REQUEST_MAX_TEXTS,
    ):
        self._dimension = dimension
        self.model_name = model_name
        self._embed_call = embed_call
        self.batch_size = batch_size

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> EmbeddingResult:
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """
        Embed texts in requests of at most `batch_size`.

        Raises:
            EmbeddingError: Empty text, transport failure or a short response
            DimensionMismatchError: A vector does not match the configured dimension
        """
        if any(not text or not text.strip() for text in texts):
            raise EmbeddingError("Cannot embed empty text")

        results: list[EmbeddingResult] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                with time_block("embedding.latency"):
                    vectors = await self._embed_call(batch)
            except Exception as e:
                counter("embedding.error")
                raise EmbeddingError(f"Embedding request failed: {e}") from e

            if len(vectors) != len(batch):
                counter("embedding.error")
                raise EmbeddingError(
                    f"Embedding response has {len(vectors)} vectors for {len(batch)} texts"
                )

            for vector in vectors:
                if len(vector) != self._dimension:
                    raise DimensionMismatchError(
                        f"Embedding model {self.model_name} returned dimension {len(vector)}, "
                        f"configured dimension is {self._dimension}"
                    )
                results.append(EmbeddingResult(vector=list(vector), model=self.model_name))

        return results


class GeminiAnswerWriter:
    """Writes FAQ text (answer, refined question, category, tags) with Gemini."""

    def __init__(
        self,
        use_llm: bool = USE_LLM,
        refine_questions: bool = REFINE_QUESTIONS,
        llm_call: LLMCall = call_llm,
    ):
        self.use_llm = use_llm
        self.refine_questions = refine_questions
        self._llm_call = llm_call

    async def consolidate(self, questions: list[str], answers: list[str]) -> ConsolidationResult:
        """
        One answer covering every question in a cluster.

        With the LLM disabled the first known answer is used as is.

        Raises:
            ConsolidationError: If no answer could be produced
        """
        known_answers = [a for a in answers if a and a.strip()]

        if not self.use_llm:
            if not known_answers:
                raise ConsolidationError("LLM disabled and no member has a known answer")
            return ConsolidationResult(answer=known_answers[0])

        prompt = render_prompt(
            "answer_consolidation",
            questions="\n".join(f"{i + 1}. {q}" for i, q in enumerate(questions)),
            answers="\n".join(f"{i + 1}. {a}" for i, a in enumerate(known_answers)) or "(none)",
        )

        try:
            with time_block("consolidation.llm.latency"):
                raw = await self._llm_call(
                    prompt,
                    counter_prefix="consolidation",
                    system_instruction=(
                        "You are an expert at creating helpful FAQ answers that consolidate "
                        "information from multiple customer interactions."
                    ),
                    max_output_tokens=500,
                    temperature=0.3,
                )
        except Exception as e:
            counter("consolidation.error")
            raise ConsolidationError(f"Consolidation call failed: {e}") from e

        try:
            return ConsolidationResult(answer=raw or "")
        except ValidationError as e:
            counter("consolidation.empty")
            raise ConsolidationError("Consolidation call returned an empty answer") from e

    async def refine_question(self, question: str, context: str = "") -> str:
        """Clearer, FAQ-ready wording; the original text on any failure."""
        if not (self.use_llm and self.refine_questions):
            return question

        prompt = render_prompt("question_refinement", question=question, context=context or "")
        try:
            refined = await self._llm_call(
                prompt, counter_prefix="refinement", max_output_tokens=200, temperature=0.3
            )
        except Exception as e:
            logger.warning("Question refinement failed, keeping original: %s", e)
            counter("refinement.fallback")
            return question

        refined = (refined or "").strip().strip('"').strip()
        return refined or question

    async def categorize(self, question: str) -> str:
        """One of FAQ_CATEGORIES; "General Inquiry" on failure or an unknown answer."""
        if not self.use_llm:
            return FAQ_DEFAULT_CATEGORY

        prompt = render_prompt(
            "question_category",
            categories="\n".join(f"- {c}" for c in FAQ_CATEGORIES),
            question=question,
        )
        try:
            raw = await self._llm_call(
                prompt, counter_prefix="categorization", max_output_tokens=50, temperature=0.1
            )
        except Exception as e:
            logger.warning("Categorization failed, using default: %s", e)
            counter("categorization.fallback")
            return FAQ_DEFAULT_CATEGORY

        answer = (raw or "").strip().strip("-").strip().lower()
        for category in FAQ_CATEGORIES:
            if category.lower() == answer:
                return category
        return FAQ_DEFAULT_CATEGORY

    async def extract_tags(self, question: str) -> list[str]:
        """Up to five lowercase search tags; [] on failure."""
        if not self.use_llm:
            return []

        prompt = render_prompt("question_tags", question=question)
        try:
            raw = await self._llm_call(
                prompt, counter_prefix="tagging", max_output_tokens=100, temperature=0.2
            )
        except Exception as e:
            logger.warning("Tag extraction failed: %s", e)
            counter("tagging.fallback")
            return []

        tags: list[str] = []
        for tag in (raw or "").split(","):
            tag = tag.strip().lower()
            if tag and tag not in tags:
                tags.append(tag)
        return tags[:MAX_TAGS]
