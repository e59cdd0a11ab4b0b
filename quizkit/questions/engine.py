"""
Question engine collaborator.

Answers capability queries per question type and regrades recorded
question attempts.
"""
from __future__ import annotations

from loguru import logger

from quizkit.db.models import Question, QuestionAttempt
from quizkit.questions.types import IMMEDIATE_BEHAVIOURS, QUESTION_TYPES, QuestionType

MISSING_TYPE = "missingtype"
RANDOM_TYPE = "random"


class QuestionEngine:
    """Capability queries and regrading for the registered question types."""

    def __init__(self, types: dict[str, QuestionType] | None = None):
        self._types = dict(types or QUESTION_TYPES)

    def qtype_exists(self, qtype: str | None) -> bool:
        return qtype is not None and qtype in self._types

    def get_type(self, qtype: str | None) -> QuestionType:
        if not self.qtype_exists(qtype):
            return self._types[MISSING_TYPE]
        return self._types[qtype]

    @staticmethod
    def behaviour_can_finish_during_attempt(behaviour: str) -> bool:
        """Whether questions in general may finish early under this behaviour."""
        return behaviour in IMMEDIATE_BEHAVIOURS

    def can_finish_during_attempt(self, qtype: str, behaviour: str) -> bool:
        return self.get_type(qtype).can_finish_during_attempt(behaviour)

    def can_analyse_responses(self, qtype: str) -> bool:
        return self.get_type(qtype).can_analyse_responses

    def regrade(
        self,
        question: Question,
        question_attempt: QuestionAttempt,
        finished: bool,
    ) -> float | None:
        """
        Recompute the fraction for a recorded question attempt.

        Manually graded types keep their stored fraction. An unanswered
        question in a finished attempt scores 0; in an unfinished attempt
        it stays ungraded.

        Returns:
            The new fraction (None when the attempt is not gradable yet)
        """
        qtype = self.get_type(question.qtype)
        if not qtype.auto_graded:
            return question_attempt.fraction

        fraction = qtype.grade(question.answer or {}, question_attempt.response)
        if fraction is None:
            fraction = 0.0 if finished else None
        logger.debug(
            f"Regraded attempt {question_attempt.attempt_id} slot {question_attempt.slot}: "
            f"{question_attempt.fraction} -> {fraction}"
        )
        return fraction
