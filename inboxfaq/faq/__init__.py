"""
inboxfaq FAQ module - question clustering and FAQ consolidation.
"""

from inboxfaq.faq.consolidator import ConsolidationOutcome, FAQConsolidator
from inboxfaq.faq.generation import FAQGenerator, GenerationOptions, GenerationSummary
from inboxfaq.faq.models import (
    Cluster,
    ConsolidationAction,
    Email,
    FAQGroup,
    Question,
    QuestionGroup,
)
from inboxfaq.faq.repository import QuestionStore
from inboxfaq.faq.representative import RepresentativeSelector
from inboxfaq.faq.similarity import (
    CentroidIndex,
    DimensionMismatchError,
    ExactCentroidIndex,
    SimilarityEngine,
    cosine_similarity,
)

__all__ = [
    # Models
    "Cluster",
    "ConsolidationAction",
    "Email",
    "FAQGroup",
    "Question",
    "QuestionGroup",
    # Similarity
    "CentroidIndex",
    "DimensionMismatchError",
    "ExactCentroidIndex",
    "SimilarityEngine",
    "cosine_similarity",
    "RepresentativeSelector",
    # Persistence
    "QuestionStore",
    # Consolidation
    "ConsolidationOutcome",
    "FAQConsolidator",
    "FAQGenerator",
    "GenerationOptions",
    "GenerationSummary",
]
