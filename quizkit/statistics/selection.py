"""
Attempt selection for statistics.

Only finished, non-preview attempts count. On top of that each policy
keeps at most one attempt per student (first, last or highest scoring),
except AVERAGE which keeps them all.
"""
from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from quizkit.db.models import AttemptState, QuizAttempt
from quizkit.statistics.calculated import WhichAttempts


def _graded(attempt) -> ColumnElement:
    return func.coalesce(attempt.sum_grades, 0)


def attempts_conditions(
    quiz_id: int,
    group_students: Iterable[int] | None = None,
    which: int = WhichAttempts.AVERAGE,
) -> list[ColumnElement]:
    """WHERE clauses (over QuizAttempt) for the attempts a policy selects."""
    conditions: list[ColumnElement] = [
        QuizAttempt.quiz_id == quiz_id,
        QuizAttempt.preview.is_(False),
        QuizAttempt.state == AttemptState.FINISHED,
    ]
    students = sorted(set(group_students or ()))
    if students:
        conditions.append(QuizAttempt.user_id.in_(students))

    which = WhichAttempts(which)
    if which == WhichAttempts.AVERAGE:
        return conditions

    other = aliased(QuizAttempt)
    same_student = [
        other.quiz_id == QuizAttempt.quiz_id,
        other.user_id == QuizAttempt.user_id,
        other.preview.is_(False),
        other.state == AttemptState.FINISHED,
    ]
    if which == WhichAttempts.FIRST:
        better = other.attempt < QuizAttempt.attempt
    elif which == WhichAttempts.LAST:
        better = other.attempt > QuizAttempt.attempt
    else:
        # Ties on the highest score go to the earlier attempt
        better = or_(
            _graded(other) > _graded(QuizAttempt),
            and_(_graded(other) == _graded(QuizAttempt), other.attempt < QuizAttempt.attempt),
        )
    conditions.append(~exists().where(*same_student, better))
    return conditions


def attempts_selection(
    quiz_id: int,
    group_students: Iterable[int] | None = None,
    which: int = WhichAttempts.AVERAGE,
):
    """SELECT of the QuizAttempt rows a policy picks."""
    return select(QuizAttempt).where(*attempts_conditions(quiz_id, group_students, which))


def selection_hash(quiz_id: int, which: int, group_students: Iterable[int] | None = None) -> str:
    """
    Stable cache key for an attempt selection.

    The student list is de-duplicated and sorted, so the same group in any
    order gives the same key.
    """
    canonical = json.dumps(
        {
            "quiz_id": int(quiz_id),
            "which": int(which),
            "students": sorted({int(s) for s in group_students or ()}),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()
