"""In-process counters and latency stats."""

from inboxfaq.observability.telemetry import (
    counter,
    get_counter,
    get_latency_stats,
    snapshot_counters,
    time_block,
)


def test_counters_accumulate():
    counter("processor.item_error")
    counter("processor.item_error", 2)

    assert get_counter("processor.item_error") == 3
    assert get_counter("never.incremented") == 0
    assert snapshot_counters() == {"processor.item_error": 3}


def test_time_block_records_latency():
    for _ in range(3):
        with time_block("extraction.llm.latency"):
            pass

    stats = get_latency_stats("extraction.llm.latency")

    assert stats["count"] == 3
    assert stats["min"] <= stats["p50"] <= stats["max"]
    assert get_latency_stats("extraction.llm.latency_ms") == stats


def test_unknown_metric_is_empty():
    assert get_latency_stats("nothing.latency")["count"] == 0
