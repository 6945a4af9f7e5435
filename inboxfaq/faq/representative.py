"""
Representative question selection.

The representative is the canonical text (and embedding) of a cluster: it
becomes the FAQ's representative_question, seeds its title and is the one
association row flagged is_representative.
"""

from __future__ import annotations

from collections.abc import Sequence

from inboxfaq.faq.models import Question


class RepresentativeSelector:
    """Highest confidence wins; ties go to the earliest created, then lowest id.

    A missing confidence ranks below any real score, including 0.0.
    """

    @staticmethod
    def rank_key(question: Question):
        has_no_score = question.confidence_score is None
        return (has_no_score, -(question.confidence_score or 0.0), question.created_at, question.id)

    def select(self, questions: Sequence[Question]) -> Question:
        """
        Pick the representative of a cluster.

        Raises:
            ValueError: If questions is empty
        """
        if not questions:
            raise ValueError("Cannot select a representative from an empty cluster")
        return min(questions, key=self.rank_key)

    def rank(self, questions: Sequence[Question]) -> list[Question]:
        """All members, best representative candidate first."""
        return sorted(questions, key=self.rank_key)
