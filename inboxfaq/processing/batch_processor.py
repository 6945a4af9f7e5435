"""
BoundedBatchProcessor - email-by-email question extraction under memory,
error-rate and time limits.

States: IDLE -> PROCESSING -> COMPLETED | CIRCUIT_TRIPPED | ABORTED

Items run strictly one at a time. Per item:
1. Skip if already processed (flag set, or questions already stored)
2. Truncate the body
3. Extract with a hard timeout (a timeout is an item error, not run-fatal)
4. Store found questions, then embed them (embedding failures are left for
   the backfill pass)
5. Mark the email processed, with the error message on failure
6. Feed the circuit breaker

Every `memory_check_interval` items the memory governor runs: HIGH pressure
collects garbage and pauses, CRITICAL pressure ends the run. A tripped breaker
or critical memory leaves the remaining emails untouched for the next run.

All run counters live in a _RunState built per run() call.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from inboxfaq.config import (
    PROCESSOR_BODY_MAX_CHARS,
    PROCESSOR_GC_PAUSE_SECONDS,
    PROCESSOR_ITEM_TIMEOUT_SECONDS,
    PROCESSOR_MAX_CONSECUTIVE_ERRORS,
    PROCESSOR_MAX_TOTAL_ERRORS,
    PROCESSOR_MEMORY_CEILING_MB,
    PROCESSOR_MEMORY_CHECK_INTERVAL,
    PROCESSOR_MEMORY_CRITICAL_RATIO,
    PROCESSOR_MEMORY_HIGH_RATIO,
    PROCESSOR_MEMORY_SAMPLES_KEPT,
    THREAD_CONTEXT_EMAILS,
)
from inboxfaq.contracts.responses import ExtractionRequest
from inboxfaq.contracts.services import Embedder, QuestionExtractor
from inboxfaq.faq.ai import EmbeddingError, format_thread_context
from inboxfaq.faq.enrichment import attach_embeddings
from inboxfaq.faq.models import Email
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.faq.similarity import DimensionMismatchError
from inboxfaq.observability.logging import get_logger, preview
from inboxfaq.observability.telemetry import counter, log_event
from inboxfaq.processing.breaker import ErrorCircuitBreaker
from inboxfaq.processing.observer import LoggingObserver, ProgressObserver, ProgressSnapshot
from inboxfaq.processing.resources import (
    MemoryGovernor,
    MemoryPressure,
    MemorySample,
    process_rss_mb,
)

logger = get_logger(__name__)


class ProcessorState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CIRCUIT_TRIPPED = "circuit_tripped"
    ABORTED = "aborted"


class ItemStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"  # Already processed before this run
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessorConfig:
    item_timeout_seconds: float = PROCESSOR_ITEM_TIMEOUT_SECONDS
    body_max_chars: int = PROCESSOR_BODY_MAX_CHARS
    max_consecutive_errors: int = PROCESSOR_MAX_CONSECUTIVE_ERRORS
    max_total_errors: int = PROCESSOR_MAX_TOTAL_ERRORS
    memory_ceiling_mb: float = PROCESSOR_MEMORY_CEILING_MB
    memory_high_ratio: float = PROCESSOR_MEMORY_HIGH_RATIO
    memory_critical_ratio: float = PROCESSOR_MEMORY_CRITICAL_RATIO
    memory_check_interval: int = PROCESSOR_MEMORY_CHECK_INTERVAL
    gc_pause_seconds: float = PROCESSOR_GC_PAUSE_SECONDS
    memory_samples_kept: int = PROCESSOR_MEMORY_SAMPLES_KEPT
    thread_context_emails: int = THREAD_CONTEXT_EMAILS
    embed_new_questions: bool = True

    def __post_init__(self):
        if self.item_timeout_seconds <= 0:
            raise ValueError("item_timeout_seconds must be positive")
        if self.body_max_chars <= 0:
            raise ValueError("body_max_chars must be positive")
        if self.memory_check_interval < 1:
            raise ValueError("memory_check_interval must be at least 1")


@dataclass
class ItemResult:
    email_id: str
    status: ItemStatus
    questions_found: int = 0
    questions_embedded: int = 0
    error: str | None = None
    embedding_error: str | None = None
    duration_seconds: float = 0.0


@dataclass
class RunSummary:
    """Outcome of one run; partial when the run stopped early."""

    total: int
    state: ProcessorState
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    questions_found: int = 0
    embedding_failures: int = 0
    fatal_reason: str | None = None
    duration_seconds: float = 0.0
    memory_samples: list[MemorySample] = field(default_factory=list)
    results: list[ItemResult] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def fully_completed(self) -> bool:
        return self.state == ProcessorState.COMPLETED and self.attempted == self.total

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "state": self.state.value,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "questions_found": self.questions_found,
            "embedding_failures": self.embedding_failures,
            "fatal_reason": self.fatal_reason,
            "fully_completed": self.fully_completed,
            "duration_seconds": round(self.duration_seconds, 3),
            "memory_samples": [s.to_dict() for s in self.memory_samples],
        }


@dataclass
class _RunState:
    breaker: ErrorCircuitBreaker
    governor: MemoryGovernor
    summary: RunSummary
    started: float = field(default_factory=time.monotonic)


class BoundedBatchProcessor:
    """
    Drives question extraction over a queue of emails, one at a time.

    Args:
        extractor: Finds questions in one email
        store: Persistence (emails and questions)
        embedder: Embeds newly stored questions; None leaves that to backfill
        config: Limits for the run
        observer: Receives progress snapshots and the final report
        memory_sampler: Returns process memory in MB (psutil RSS by default)
        collect: Garbage collection hook (gc.collect by default)
    """

    def __init__(
        self,
        extractor: QuestionExtractor,
        store: QuestionStore | None = None,
        embedder: Embedder | None = None,
        config: ProcessorConfig | None = None,
        observer: ProgressObserver | None = None,
        memory_sampler: Callable[[], float] = process_rss_mb,
        collect: Callable[[], object] | None = None,
    ):
        self.extractor = extractor
        self.store = store or QuestionStore()
        self.embedder = embedder
        self.config = config or ProcessorConfig()
        self.observer = observer or LoggingObserver()
        self._memory_sampler = memory_sampler
        self._collect = collect
        self._state = ProcessorState.IDLE
        self._cancel_requested = False

    @property
    def state(self) -> ProcessorState:
        return self._state

    def cancel(self) -> None:
        """Stop before the next item; the current item finishes."""
        self._cancel_requested = True

    def _new_run_state(self, total: int) -> _RunState:
        governor_kwargs = {}
        if self._collect is not None:
            governor_kwargs["collect"] = self._collect
        return _RunState(
            breaker=ErrorCircuitBreaker(
                max_consecutive=self.config.max_consecutive_errors,
                max_total=self.config.max_total_errors,
            ),
            governor=MemoryGovernor(
                ceiling_mb=self.config.memory_ceiling_mb,
                high_ratio=self.config.memory_high_ratio,
                critical_ratio=self.config.memory_critical_ratio,
                sampler=self._memory_sampler,
                samples_kept=self.config.memory_samples_kept,
                **governor_kwargs,
            ),
            summary=RunSummary(total=total, state=ProcessorState.PROCESSING),
        )

    async def run(self, emails: Sequence[Email] | None = None) -> RunSummary:
        """
        Process a batch of emails.

        Args:
            emails: The queue; all unprocessed emails in the store when None

        Returns:
            RunSummary (also passed to observer.completed / observer.fatal)

        Raises:
            RuntimeError: If this processor is already running
            DimensionMismatchError: Embedding configuration bug; the run is aborted
        """
        if self._state == ProcessorState.PROCESSING:
            raise RuntimeError("BoundedBatchProcessor is already running")

        queue = list(emails) if emails is not None else self.store.list_unprocessed_emails()
        run = self._new_run_state(len(queue))
        summary = run.summary
        self._state = ProcessorState.PROCESSING
        self._cancel_requested = False

        log_event("processor.run_started", total=len(queue))

        try:
            final_state, reason = await self._run_items(queue, run)
        except DimensionMismatchError as e:
            reason = f"dimension mismatch: {e}"
            self._finish(run, ProcessorState.ABORTED, reason)
            self.observer.fatal(reason, summary)
            raise

        self._finish(run, final_state, reason)
        if final_state == ProcessorState.COMPLETED:
            self.observer.completed(summary)
        else:
            self.observer.fatal(reason or final_state.value, summary)
        return summary

    async def _run_items(
        self, queue: list[Email], run: _RunState
    ) -> tuple[ProcessorState, str | None]:
        summary = run.summary

        for index, email in enumerate(queue, start=1):
            if self._cancel_requested:
                logger.warning("Run cancelled before item %d/%d", index, len(queue))
                return ProcessorState.ABORTED, "cancelled"

            result = await self._process_item(email)
            summary.results.append(result)

            if result.status == ItemStatus.SKIPPED:
                summary.skipped += 1
                counter("processor.item_skipped")
            elif result.status == ItemStatus.PROCESSED:
                summary.processed += 1
                summary.questions_found += result.questions_found
                if result.embedding_error:
                    summary.embedding_failures += 1
                run.breaker.record_success()
                counter("processor.item_processed")
            else:
                summary.errors += 1
                run.breaker.record_failure()
                counter("processor.item_error")

            self.observer.progress(
                ProgressSnapshot(
                    current=index,
                    total=len(queue),
                    processed=summary.processed,
                    questions_found=summary.questions_found,
                    errors=summary.errors,
                    label=preview(email.label, 60),
                )
            )

            if run.breaker.tripped:
                logger.error("Circuit breaker tripped at item %d: %s", index, run.breaker.reason)
                return ProcessorState.CIRCUIT_TRIPPED, run.breaker.reason

            if index % self.config.memory_check_interval == 0:
                sample = run.governor.check(index)
                if sample.pressure == MemoryPressure.CRITICAL:
                    return (
                        ProcessorState.ABORTED,
                        f"memory critical: {sample.rss_mb:.1f}MB "
                        f"({sample.ratio:.0%} of {self.config.memory_ceiling_mb:.0f}MB)",
                    )
                if sample.pressure == MemoryPressure.HIGH:
                    await asyncio.sleep(self.config.gc_pause_seconds)

        return ProcessorState.COMPLETED, None

    async def _process_item(self, email: Email) -> ItemResult:
        started = time.monotonic()

        try:
            already_processed = self.store.is_email_processed(email.id)
        except sqlite3.Error as e:
            # Left unmarked so the next run picks it up again
            logger.warning("Email %s failed: processed check failed: %s", email.id, e)
            return ItemResult(
                email_id=email.id,
                status=ItemStatus.FAILED,
                error=f"processed check failed: {e}",
                duration_seconds=time.monotonic() - started,
            )
        if already_processed:
            return ItemResult(email_id=email.id, status=ItemStatus.SKIPPED)

        result = ItemResult(email_id=email.id, status=ItemStatus.PROCESSED)
        try:
            request = ExtractionRequest(
                body_text=(email.body_text or "")[: self.config.body_max_chars],
                subject=email.subject or "",
                thread_context=self._thread_context(email),
            )
            response = await asyncio.wait_for(
                self.extractor.extract(request), timeout=self.config.item_timeout_seconds
            )

            found = response.found_questions
            if found:
                stored = self.store.insert_questions(email.id, found, sender_email=email.sender_email)
                result.questions_found = len(stored)
                if self.embedder is not None and self.config.embed_new_questions:
                    result.questions_embedded, result.embedding_error = await self._embed(stored)

        except TimeoutError:
            result.status = ItemStatus.FAILED
            result.error = f"Extraction timed out after {self.config.item_timeout_seconds:g}s"
        except DimensionMismatchError:
            raise
        except Exception as e:
            result.status = ItemStatus.FAILED
            result.error = f"{type(e).__name__}: {e}"

        if result.error:
            logger.warning("Email %s failed: %s", email.id, result.error)

        try:
            self.store.mark_email_processed(email.id, error=result.error)
        except sqlite3.Error as e:
            logger.error("Could not mark email %s processed: %s", email.id, e)
            if result.status == ItemStatus.PROCESSED:
                result.status = ItemStatus.FAILED
                result.error = f"mark processed failed: {e}"

        result.duration_seconds = time.monotonic() - started
        return result

    async def _embed(self, stored) -> tuple[int, str | None]:
        try:
            embedded = await asyncio.wait_for(
                attach_embeddings(stored, self.embedder, self.store),
                timeout=self.config.item_timeout_seconds,
            )
        except (EmbeddingError, TimeoutError) as e:
            counter("processor.embedding_deferred")
            logger.warning("Embedding deferred to backfill for %d questions: %s", len(stored), e)
            return 0, str(e) or type(e).__name__
        return embedded, None

    def _thread_context(self, email: Email) -> list[str]:
        if not email.thread_id or self.config.thread_context_emails <= 0:
            return []
        earlier = [
            e
            for e in self.store.list_thread_emails(
                email.thread_id, email.id, limit=self.config.thread_context_emails
            )
            if e.received_at < email.received_at
        ]
        return format_thread_context(earlier)

    def _finish(self, run: _RunState, state: ProcessorState, reason: str | None) -> None:
        summary = run.summary
        summary.state = state
        summary.fatal_reason = reason
        summary.duration_seconds = time.monotonic() - run.started
        summary.memory_samples = run.governor.recent_samples
        self._state = state

        log_event("processor.run_finished", **summary.to_dict())
