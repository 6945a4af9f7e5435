"""inboxfaq - Turn recurring customer-support questions into FAQ entries"""

from __future__ import annotations

__version__ = "0.1.0"


# Lazy imports keep `import inboxfaq` free of numpy / Vertex AI start-up cost
def __getattr__(name: str):
    if name in ("FAQGenerator", "GenerationOptions"):
        from inboxfaq.faq import generation

        return getattr(generation, name)

    if name in ("BoundedBatchProcessor", "ProcessorConfig"):
        from inboxfaq.processing import batch_processor

        return getattr(batch_processor, name)

    if name == "QuestionStore":
        from inboxfaq.faq.repository import QuestionStore

        return QuestionStore

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "BoundedBatchProcessor",
    "FAQGenerator",
    "GenerationOptions",
    "ProcessorConfig",
    "QuestionStore",
]
