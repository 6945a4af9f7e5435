"""
Database schema initialization for inboxfaq.

Four tables: emails (the processing queue), questions (extracted from emails),
faq_groups (published/draft FAQ entries) and question_groups (the association
between questions and the FAQ group they were consolidated into).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from inboxfaq.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS emails (
        id TEXT PRIMARY KEY,
        thread_id TEXT,
        subject TEXT,
        body_text TEXT,
        sender_email TEXT,
        sender_name TEXT,
        received_at TEXT,
        processed_for_faq INTEGER NOT NULL DEFAULT 0,
        processed_at TEXT,
        processing_error TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_emails_unprocessed
    ON emails(processed_for_faq, received_at);

    CREATE INDEX IF NOT EXISTS idx_emails_thread ON emails(thread_id);

    CREATE TABLE IF NOT EXISTS questions (
        id TEXT PRIMARY KEY,
        email_id TEXT NOT NULL REFERENCES emails(id) ON DELETE CASCADE,
        question_text TEXT NOT NULL,
        answer_text TEXT,
        context TEXT,
        confidence_score REAL,
        is_customer_question INTEGER NOT NULL DEFAULT 1,
        embedding TEXT,
        category TEXT DEFAULT 'general',
        sender_email TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(email_id, question_text)
    );

    CREATE INDEX IF NOT EXISTS idx_questions_email ON questions(email_id);

    CREATE INDEX IF NOT EXISTS idx_questions_clusterable
    ON questions(is_customer_question, confidence_score DESC, created_at);

    CREATE TABLE IF NOT EXISTS faq_groups (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        representative_question TEXT NOT NULL,
        consolidated_answer TEXT NOT NULL,
        question_count INTEGER NOT NULL DEFAULT 0,
        frequency_score REAL NOT NULL DEFAULT 0,
        avg_confidence REAL NOT NULL DEFAULT 0,
        representative_embedding TEXT,
        is_published INTEGER NOT NULL DEFAULT 0,
        category TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_faq_groups_published
    ON faq_groups(is_published, frequency_score DESC);

    CREATE TABLE IF NOT EXISTS question_groups (
        question_id TEXT NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
        group_id TEXT NOT NULL REFERENCES faq_groups(id) ON DELETE CASCADE,
        similarity_score REAL NOT NULL DEFAULT 0,
        is_representative INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        PRIMARY KEY (question_id, group_id)
    );

    CREATE INDEX IF NOT EXISTS idx_question_groups_group ON question_groups(group_id);
"""

REQUIRED_TABLES: dict[str, list[str]] = {
    "emails": ["id", "subject", "body_text", "processed_for_faq", "processing_error"],
    "questions": ["id", "email_id", "question_text", "confidence_score", "embedding"],
    "faq_groups": ["id", "title", "question_count", "frequency_score", "avg_confidence"],
    "question_groups": ["question_id", "group_id", "similarity_score", "is_representative"],
}


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Args:
        db_path: Path to the database file

    Side Effects:
    - Creates the parent directory if needed
    - Creates tables and indexes that don't exist yet
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database schema initialized at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Args:
        conn: Active database connection

    Returns:
        True if valid

    Raises:
        ValueError: If tables or columns are missing
    """
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(REQUIRED_TABLES) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in REQUIRED_TABLES.items():
        # Identifiers can't be bound parameters; names come from REQUIRED_TABLES only
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}
        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table {table} missing columns: {missing_cols}")

    return True
