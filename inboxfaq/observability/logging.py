from __future__ import annotations

import logging
from typing import Final

from inboxfaq.infrastructure.settings import LOG_LEVEL

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level() -> int:
    level_name = LOG_LEVEL.upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; the first call attaches one stream handler to the root."""
    global _HANDLER_ATTACHED

    level = _resolve_level()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(level)
        _HANDLER_ATTACHED = True

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def preview(text: str | None, limit: int = 50) -> str:
    """Shorten user-supplied text (subjects, questions) before it reaches a log line."""
    if not text:
        return ""
    text = " ".join(text.split())
    return text if len(text) <= limit else f"{text[:limit]}..."
