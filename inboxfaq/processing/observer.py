"""
Progress observer contract for the batch processor.

The processor calls progress() after every item and exactly one of
completed() / fatal() when the run ends. Observers run inline, so they must
be quick.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from inboxfaq.observability.logging import get_logger

if TYPE_CHECKING:
    from inboxfaq.processing.batch_processor import RunSummary

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    current: int
    total: int
    processed: int
    questions_found: int
    errors: int
    label: str


class ProgressObserver(Protocol):
    def progress(self, snapshot: ProgressSnapshot) -> None: ...

    def completed(self, summary: RunSummary) -> None: ...

    def fatal(self, reason: str, summary: RunSummary) -> None: ...


class LoggingObserver:
    """Writes progress to the log; the default when no observer is given."""

    def __init__(self, every: int = 10):
        self.every = max(1, every)

    def progress(self, snapshot: ProgressSnapshot) -> None:
        if snapshot.current % self.every == 0 or snapshot.current == snapshot.total:
            logger.info(
                "Progress %d/%d: %d processed, %d questions, %d errors (%s)",
                snapshot.current,
                snapshot.total,
                snapshot.processed,
                snapshot.questions_found,
                snapshot.errors,
                snapshot.label,
            )

    def completed(self, summary: RunSummary) -> None:
        logger.info(
            "Batch completed: %d processed, %d skipped, %d errors, %d questions in %.1fs",
            summary.processed,
            summary.skipped,
            summary.errors,
            summary.questions_found,
            summary.duration_seconds,
        )

    def fatal(self, reason: str, summary: RunSummary) -> None:
        logger.error(
            "Batch stopped early (%s): %s after %d/%d items",
            summary.state.value,
            reason,
            summary.attempted,
            summary.total,
        )
