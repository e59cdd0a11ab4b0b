"""
Question engine collaborator.

This module provides:
- QuestionEngine: capability queries and regrading per question type
- QuestionType and its concrete behaviours (truefalse, multichoice,
  shortanswer, numerical, essay, description, random, missingtype)
"""

from .engine import MISSING_TYPE, RANDOM_TYPE, QuestionEngine
from .types import QUESTION_TYPES, QuestionType

__all__ = [
    "QuestionEngine",
    "QuestionType",
    "QUESTION_TYPES",
    "MISSING_TYPE",
    "RANDOM_TYPE",
]
