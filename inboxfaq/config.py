"""Centralized configuration for inboxfaq.

Re-exports everything from inboxfaq.infrastructure.settings so callers have a
single import point, then adds typed constants for the database, the question
pipeline, FAQ generation and the bounded batch processor. Environment variable
overrides use safe defaults so nothing extra is required to start.
"""

from __future__ import annotations

import os

from inboxfaq.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("INBOXFAQ_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("INBOXFAQ_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("INBOXFAQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("INBOXFAQ_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("INBOXFAQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("INBOXFAQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("INBOXFAQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("INBOXFAQ_DB_RETRY_JITTER", "0.1"))

# --- Question extraction ---
QUESTION_CONFIDENCE_THRESHOLD: float = float(
    os.getenv("INBOXFAQ_QUESTION_CONFIDENCE_THRESHOLD", "0.7")
)
MIN_QUESTION_LENGTH: int = int(os.getenv("INBOXFAQ_MIN_QUESTION_LENGTH", "10"))
MAX_QUESTION_LENGTH: int = int(os.getenv("INBOXFAQ_MAX_QUESTION_LENGTH", "500"))
STORED_QUESTION_MAX_CHARS: int = 500
STORED_ANSWER_MAX_CHARS: int = 2000
STORED_CONTEXT_MAX_CHARS: int = 500
DEFAULT_QUESTION_CONFIDENCE: float = 0.5
THREAD_CONTEXT_EMAILS: int = 3
THREAD_CONTEXT_BODY_CHARS: int = 500

# --- Clustering / FAQ generation ---
SIMILARITY_THRESHOLD: float = float(os.getenv("INBOXFAQ_SIMILARITY_THRESHOLD", "0.8"))
DUPLICATE_THRESHOLD: float = 0.95
FAQ_SEARCH_MIN_SIMILARITY: float = 0.7
FAQ_MIN_QUESTION_COUNT: int = int(os.getenv("INBOXFAQ_MIN_QUESTION_COUNT", "2"))
FAQ_MAX_PER_RUN: int = int(os.getenv("INBOXFAQ_MAX_FAQS", "100"))
FAQ_AUTO_PUBLISH_THRESHOLD: int = int(os.getenv("INBOXFAQ_AUTO_PUBLISH_THRESHOLD", "5"))
FAQ_TITLE_MAX_CHARS: int = 100
FAQ_DEFAULT_CATEGORY: str = "General Inquiry"
EMBEDDING_BACKFILL_BATCH: int = int(os.getenv("INBOXFAQ_EMBEDDING_BACKFILL_BATCH", "50"))
EMBEDDING_REQUEST_MAX_TEXTS: int = 100

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("INBOXFAQ_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("INBOXFAQ_LLM_MAX_RETRIES", "3"))

# --- Bounded batch processor ---
PROCESSOR_ITEM_TIMEOUT_SECONDS: float = float(os.getenv("INBOXFAQ_ITEM_TIMEOUT", "25"))
PROCESSOR_BODY_MAX_CHARS: int = int(os.getenv("INBOXFAQ_BODY_MAX_CHARS", "8000"))
PROCESSOR_MAX_CONSECUTIVE_ERRORS: int = int(
    os.getenv("INBOXFAQ_MAX_CONSECUTIVE_ERRORS", "10")
)
PROCESSOR_MAX_TOTAL_ERRORS: int = int(os.getenv("INBOXFAQ_MAX_TOTAL_ERRORS", "25"))
PROCESSOR_MEMORY_CEILING_MB: int = int(os.getenv("INBOXFAQ_MEMORY_CEILING_MB", "2048"))
PROCESSOR_MEMORY_HIGH_RATIO: float = 0.75
PROCESSOR_MEMORY_CRITICAL_RATIO: float = 0.90
PROCESSOR_MEMORY_CHECK_INTERVAL: int = int(os.getenv("INBOXFAQ_MEMORY_CHECK_INTERVAL", "2"))
PROCESSOR_GC_PAUSE_SECONDS: float = 0.1
PROCESSOR_MEMORY_SAMPLES_KEPT: int = 5
