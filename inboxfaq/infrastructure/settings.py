"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env from the working directory (no-op when absent)
load_dotenv()

# Logging
LOG_LEVEL = os.getenv("INBOXFAQ_LOG_LEVEL", "INFO")

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "1200"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.1"))

# Embeddings (Vertex text-embedding models)
EMBEDDING_MODEL = os.getenv("INBOXFAQ_EMBEDDING_MODEL", "text-embedding-004")
EMBEDDING_DIMENSION = int(os.getenv("INBOXFAQ_EMBEDDING_DIMENSION", "768"))

# Feature Flags
USE_LLM = os.getenv("INBOXFAQ_USE_LLM", "true").lower() == "true"
REFINE_QUESTIONS = os.getenv("INBOXFAQ_REFINE_QUESTIONS", "true").lower() == "true"
