"""
Question type behaviours.

Each question type answers a small fixed set of capability queries and
knows how to turn a stored response into a fraction:

- can_finish_during_attempt: may a question of this type be complete
  before the attempt is submitted (so a later slot can depend on it)?
- can_analyse_responses: are responses worth tallying in statistics?
- grade: response -> fraction in [0, 1], or None when ungradable
"""
from __future__ import annotations

import math
from typing import Any

# Behaviours under which a question is graded as soon as it is answered
IMMEDIATE_BEHAVIOURS = frozenset({"immediatefeedback", "immediatecbm", "interactive", "adaptive"})


class QuestionType:
    """Base behaviour: a manually graded question that keeps its fraction."""

    name = "base"
    auto_graded = False
    can_analyse_responses = False

    def can_finish_during_attempt(self, behaviour: str) -> bool:
        return self.auto_graded and behaviour in IMMEDIATE_BEHAVIOURS

    def grade(self, answer: dict, response: Any) -> float | None:
        raise NotImplementedError


class TrueFalseType(QuestionType):
    name = "truefalse"
    auto_graded = True
    can_analyse_responses = True

    def grade(self, answer: dict, response: Any) -> float | None:
        if not isinstance(response, dict) or "answer" not in response:
            return None
        return 1.0 if bool(response["answer"]) == bool(answer.get("correct")) else 0.0


class MultiChoiceType(QuestionType):
    name = "multichoice"
    auto_graded = True
    can_analyse_responses = True

    def grade(self, answer: dict, response: Any) -> float | None:
        if not isinstance(response, dict) or response.get("choice") is None:
            return None
        choices = answer.get("choices", [])
        index = int(response["choice"])
        if not 0 <= index < len(choices):
            return 0.0
        return max(0.0, min(1.0, float(choices[index].get("fraction", 0.0))))


class ShortAnswerType(QuestionType):
    name = "shortanswer"
    auto_graded = True
    can_analyse_responses = True

    def grade(self, answer: dict, response: Any) -> float | None:
        if not isinstance(response, dict) or response.get("answer") is None:
            return None
        given = str(response["answer"]).strip()
        case_sensitive = bool(answer.get("case_sensitive", False))
        if not case_sensitive:
            given = given.lower()
        best = 0.0
        for option in answer.get("answers", []):
            text = str(option.get("text", "")).strip()
            if not case_sensitive:
                text = text.lower()
            if text == given:
                best = max(best, float(option.get("fraction", 0.0)))
        return best


class NumericalType(QuestionType):
    name = "numerical"
    auto_graded = True
    can_analyse_responses = True

    def grade(self, answer: dict, response: Any) -> float | None:
        if not isinstance(response, dict) or response.get("answer") is None:
            return None
        try:
            given = float(response["answer"])
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(given):
            return 0.0
        best = 0.0
        for option in answer.get("answers", []):
            value = float(option.get("value", 0.0))
            tolerance = abs(float(option.get("tolerance", 0.0)))
            if abs(given - value) <= tolerance:
                best = max(best, float(option.get("fraction", 0.0)))
        return best


class EssayType(QuestionType):
    name = "essay"


class DescriptionType(QuestionType):
    """Informational item: zero length, never graded."""

    name = "description"

    def can_finish_during_attempt(self, behaviour: str) -> bool:
        return True


class RandomType(QuestionType):
    """Placeholder slot type; attempts record the concrete question drawn."""

    name = "random"


class MissingType(QuestionType):
    """Stand-in for a question whose type or record no longer exists."""

    name = "missingtype"


QUESTION_TYPES: dict[str, QuestionType] = {
    qtype.name: qtype
    for qtype in (
        TrueFalseType(),
        MultiChoiceType(),
        ShortAnswerType(),
        NumericalType(),
        EssayType(),
        DescriptionType(),
        RandomType(),
        MissingType(),
    )
}
