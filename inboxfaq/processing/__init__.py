"""
inboxfaq processing module - bounded, sequential batch extraction.
"""

from inboxfaq.processing.batch_processor import (
    BoundedBatchProcessor,
    ItemResult,
    ItemStatus,
    ProcessorConfig,
    ProcessorState,
    RunSummary,
)
from inboxfaq.processing.breaker import ErrorCircuitBreaker
from inboxfaq.processing.observer import LoggingObserver, ProgressObserver, ProgressSnapshot
from inboxfaq.processing.resources import MemoryGovernor, MemoryPressure, MemorySample

__all__ = [
    "BoundedBatchProcessor",
    "ErrorCircuitBreaker",
    "ItemResult",
    "ItemStatus",
    "LoggingObserver",
    "MemoryGovernor",
    "MemoryPressure",
    "MemorySample",
    "ProcessorConfig",
    "ProcessorState",
    "ProgressObserver",
    "ProgressSnapshot",
    "RunSummary",
]
