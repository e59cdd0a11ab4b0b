"""
Exception hierarchy for quizkit.

- PreconditionError: an edit was refused before anything was written
- NotFoundError: a referenced quiz, slot, section, question or attempt is missing
- StaleStructureError: a structure handle was used after it was mutated
"""
from __future__ import annotations


class QuizError(Exception):
    """Base class for all quizkit errors."""


class PreconditionError(QuizError):
    """The requested change would break a structural rule, or editing is locked."""


class NotFoundError(QuizError):
    """A referenced record does not exist."""


class StaleStructureError(QuizError):
    """The structure was mutated and must be reloaded before further use."""
