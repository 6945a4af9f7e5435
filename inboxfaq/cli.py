"""
inboxfaq command line.

    inboxfaq init-db
    inboxfaq process [--emails emails.json] [--limit N]
    inboxfaq backfill
    inboxfaq generate [--min-questions 2] [--max-faqs 100] [--force]
    inboxfaq search "How do I reset my password?"
    inboxfaq stats

Every command prints a JSON result to stdout and exits non-zero when the
work did not finish cleanly.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from inboxfaq.config import (
    APP_VERSION,
    EMBEDDING_BACKFILL_BATCH,
    FAQ_MAX_PER_RUN,
    FAQ_MIN_QUESTION_COUNT,
    FAQ_SEARCH_MIN_SIMILARITY,
    PROCESSOR_ITEM_TIMEOUT_SECONDS,
    SIMILARITY_THRESHOLD,
)
from inboxfaq.infrastructure.database import get_db_path, init_database, validate_schema
from inboxfaq.observability.logging import get_logger
from inboxfaq.observability.telemetry import get_latency_stats, snapshot_counters

logger = get_logger(__name__)


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _load_emails(path: Path) -> int:
    """Queue emails from a JSON list of objects with Email fields."""
    from inboxfaq.faq.models import Email
    from inboxfaq.faq.repository import QuestionStore

    with open(path, encoding="utf-8") as f:
        records = json.load(f)

    store = QuestionStore()
    for record in records:
        store.upsert_email(Email.model_validate(record))
    return len(records)


def cmd_init_db(args: argparse.Namespace) -> int:
    init_database()
    _print({"database": str(get_db_path()), "initialized": True, "schema_valid": validate_schema()})
    return 0


def cmd_process(args: argparse.Namespace) -> int:
    from inboxfaq.faq.ai import EmbeddingService, GeminiQuestionExtractor
    from inboxfaq.faq.repository import QuestionStore
    from inboxfaq.processing.batch_processor import BoundedBatchProcessor, ProcessorConfig

    if args.emails:
        queued = _load_emails(Path(args.emails))
        logger.info("Queued %d emails from %s", queued, args.emails)

    store = QuestionStore()
    config = ProcessorConfig(
        item_timeout_seconds=args.timeout,
        embed_new_questions=not args.no_embed,
    )
    processor = BoundedBatchProcessor(
        extractor=GeminiQuestionExtractor(),
        store=store,
        embedder=None if args.no_embed else EmbeddingService(),
        config=config,
    )
    summary = asyncio.run(processor.run(store.list_unprocessed_emails(limit=args.limit)))
    _print(
        {**summary.to_dict(), "extraction_latency": get_latency_stats("extraction.llm.latency")}
    )
    return 0 if summary.fully_completed else 1


def cmd_backfill(args: argparse.Namespace) -> int:
    from inboxfaq.faq.ai import EmbeddingService
    from inboxfaq.faq.enrichment import backfill

    summary = asyncio.run(backfill(EmbeddingService(), batch_size=args.batch_size))
    _print(vars(summary))
    return 0 if summary.error is None else 1


def cmd_generate(args: argparse.Namespace) -> int:
    from inboxfaq.faq.ai import GeminiAnswerWriter
    from inboxfaq.faq.generation import FAQGenerator, GenerationOptions

    options = GenerationOptions(
        min_question_count=args.min_questions,
        max_faqs=args.max_faqs,
        similarity_threshold=args.threshold,
        force_regenerate=args.force,
    )
    summary = asyncio.run(FAQGenerator(writer=GeminiAnswerWriter()).run(options))
    latency = get_latency_stats("consolidation.llm.latency")
    _print({**summary.to_dict(), "consolidation_latency": latency})
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    from inboxfaq.faq.ai import EmbeddingService
    from inboxfaq.faq.search import FAQSearch

    search = FAQSearch(embedder=EmbeddingService())
    matches = asyncio.run(search.similar_faqs(args.text, min_similarity=args.min_similarity))
    _print(
        {
            "query": args.text,
            "faqs": [
                {
                    "id": group.id,
                    "title": group.title,
                    "similarity": round(similarity, 4),
                    "answer": group.consolidated_answer,
                }
                for group, similarity in matches
            ],
        }
    )
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    from inboxfaq.faq.repository import QuestionStore
    from inboxfaq.faq.search import FAQSearch

    stats = QuestionStore.faq_stats()
    if args.similarity:
        stats["similarity"] = FAQSearch().similarity_stats()
    stats["counters"] = snapshot_counters()
    _print(stats)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inboxfaq",
        description="Turn recurring customer-support questions into FAQ entries",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db = subparsers.add_parser("init-db", help="Create the SQLite schema (idempotent)")
    init_db.set_defaults(func=cmd_init_db)

    process = subparsers.add_parser("process", help="Extract questions from unprocessed emails")
    process.add_argument("--emails", help="JSON file of emails to queue before processing")
    process.add_argument("--limit", type=int, default=None, help="Process at most N emails")
    process.add_argument(
        "--timeout",
        type=float,
        default=PROCESSOR_ITEM_TIMEOUT_SECONDS,
        help="Per-email extraction timeout in seconds",
    )
    process.add_argument(
        "--no-embed", action="store_true", help="Leave embeddings to the backfill command"
    )
    process.set_defaults(func=cmd_process)

    backfill = subparsers.add_parser(
        "backfill", help="Attach missing embeddings and default missing confidence"
    )
    backfill.add_argument("--batch-size", type=int, default=EMBEDDING_BACKFILL_BATCH)
    backfill.set_defaults(func=cmd_backfill)

    generate = subparsers.add_parser("generate", help="Cluster questions and build FAQ groups")
    generate.add_argument("--min-questions", type=int, default=FAQ_MIN_QUESTION_COUNT)
    generate.add_argument("--max-faqs", type=int, default=FAQ_MAX_PER_RUN)
    generate.add_argument("--threshold", type=float, default=SIMILARITY_THRESHOLD)
    generate.add_argument(
        "--force", action="store_true", help="Rewrite answers of matched groups even if unchanged"
    )
    generate.set_defaults(func=cmd_generate)

    search = subparsers.add_parser("search", help="Find published FAQs similar to a question")
    search.add_argument("text")
    search.add_argument("--min-similarity", type=float, default=FAQ_SEARCH_MIN_SIMILARITY)
    search.set_defaults(func=cmd_search)

    stats = subparsers.add_parser("stats", help="Show FAQ and question statistics")
    stats.add_argument(
        "--similarity", action="store_true", help="Include the pairwise similarity histogram"
    )
    stats.set_defaults(func=cmd_stats)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return args.func(args)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
