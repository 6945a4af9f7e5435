"""
Memory governor (the resource-pressure check between batch items).

Samples process RSS against a configured ceiling:
- below the high-water ratio: nothing to do
- HIGH (>= 75% by default): force a garbage collection; the processor also
  pauses briefly
- CRITICAL (>= 90% by default): the processor stops the run early
"""

from __future__ import annotations

import gc
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import psutil

from inboxfaq.config import (
    PROCESSOR_MEMORY_CEILING_MB,
    PROCESSOR_MEMORY_CRITICAL_RATIO,
    PROCESSOR_MEMORY_HIGH_RATIO,
    PROCESSOR_MEMORY_SAMPLES_KEPT,
)
from inboxfaq.faq.models import utc_now
from inboxfaq.observability.logging import get_logger
from inboxfaq.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class MemoryPressure(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class MemorySample:
    rss_mb: float
    ratio: float
    pressure: MemoryPressure
    item_index: int
    collected: bool = False
    taken_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "rss_mb": round(self.rss_mb, 1),
            "ratio": round(self.ratio, 3),
            "pressure": self.pressure.value,
            "item_index": self.item_index,
            "collected": self.collected,
            "taken_at": self.taken_at.isoformat(),
        }


def process_rss_mb() -> float:
    """Resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


class MemoryGovernor:
    """
    Classifies memory pressure and requests collection under HIGH pressure.

    Args:
        ceiling_mb: Memory budget for the process
        sampler: Returns current usage in MB (psutil RSS by default)
        collect: Garbage collection hook (gc.collect by default)
    """

    def __init__(
        self,
        ceiling_mb: float = PROCESSOR_MEMORY_CEILING_MB,
        high_ratio: float = PROCESSOR_MEMORY_HIGH_RATIO,
        critical_ratio: float = PROCESSOR_MEMORY_CRITICAL_RATIO,
        sampler: Callable[[], float] = process_rss_mb,
        collect: Callable[[], object] = gc.collect,
        samples_kept: int = PROCESSOR_MEMORY_SAMPLES_KEPT,
    ):
        if ceiling_mb <= 0:
            raise ValueError(f"ceiling_mb must be positive, got {ceiling_mb}")
        if not 0 < high_ratio < critical_ratio:
            raise ValueError("memory ratios must satisfy 0 < high_ratio < critical_ratio")
        self.ceiling_mb = ceiling_mb
        self.high_ratio = high_ratio
        self.critical_ratio = critical_ratio
        self._sampler = sampler
        self._collect = collect
        self._samples: deque[MemorySample] = deque(maxlen=samples_kept)

    @property
    def recent_samples(self) -> list[MemorySample]:
        return list(self._samples)

    def classify(self, rss_mb: float) -> MemoryPressure:
        ratio = rss_mb / self.ceiling_mb
        if ratio >= self.critical_ratio:
            return MemoryPressure.CRITICAL
        if ratio >= self.high_ratio:
            return MemoryPressure.HIGH
        return MemoryPressure.NORMAL

    def check(self, item_index: int) -> MemorySample:
        """
        Sample memory and react to the pressure level.

        Side Effects:
            - Runs garbage collection under HIGH pressure
            - Records the sample (last `samples_kept` are retained)
        """
        rss_mb = self._sampler()
        pressure = self.classify(rss_mb)
        sample = MemorySample(
            rss_mb=rss_mb,
            ratio=rss_mb / self.ceiling_mb,
            pressure=pressure,
            item_index=item_index,
        )

        if pressure == MemoryPressure.HIGH:
            self._collect()
            sample.collected = True
            counter("processor.memory_high")
            logger.warning(
                "Memory high: %.1fMB of %.0fMB (%.0f%%), forced garbage collection",
                rss_mb,
                self.ceiling_mb,
                sample.ratio * 100,
            )
        elif pressure == MemoryPressure.CRITICAL:
            counter("processor.memory_critical")
            log_event("processor.memory_critical", rss_mb=round(rss_mb, 1), item_index=item_index)
            logger.error(
                "Memory critical: %.1fMB of %.0fMB (%.0f%%)",
                rss_mb,
                self.ceiling_mb,
                sample.ratio * 100,
            )

        self._samples.append(sample)
        return sample
