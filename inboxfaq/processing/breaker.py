"""Per-run error circuit breaker for the batch processor."""

from __future__ import annotations

from dataclasses import dataclass, field

from inboxfaq.config import PROCESSOR_MAX_CONSECUTIVE_ERRORS, PROCESSOR_MAX_TOTAL_ERRORS
from inboxfaq.observability.telemetry import counter, log_event


@dataclass
class ErrorCircuitBreaker:
    """
    Trips after too many consecutive or total item failures in one run.

    Once tripped it stays tripped; a new run gets a new breaker.
    """

    max_consecutive: int = PROCESSOR_MAX_CONSECUTIVE_ERRORS
    max_total: int = PROCESSOR_MAX_TOTAL_ERRORS
    consecutive_errors: int = field(default=0, init=False)
    total_errors: int = field(default=0, init=False)
    reason: str | None = field(default=None, init=False)

    @property
    def tripped(self) -> bool:
        return self.reason is not None

    def record_success(self) -> None:
        self.consecutive_errors = 0

    def record_failure(self) -> bool:
        """
        Count one failed item.

        Returns:
            True if this failure tripped the breaker
        """
        self.consecutive_errors += 1
        self.total_errors += 1

        if self.tripped:
            return False

        if self.consecutive_errors >= self.max_consecutive:
            self.reason = f"{self.consecutive_errors} consecutive errors (limit {self.max_consecutive})"
        elif self.total_errors >= self.max_total:
            self.reason = f"{self.total_errors} total errors (limit {self.max_total})"
        else:
            return False

        counter("processor.circuit_tripped")
        log_event(
            "processor.circuit_tripped",
            consecutive=self.consecutive_errors,
            total=self.total_errors,
        )
        return True
