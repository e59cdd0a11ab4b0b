"""
Quiz grade bookkeeping.

- update_sumgrades: quiz total = sum of slot max marks
- update_all_attempt_sumgrades: attempt total = sum of slot marks
- update_all_final_grades: one rescaled grade per student in quiz_grades
"""
from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Sequence

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from quizkit.db.models import (
    AttemptState,
    GradeMethod,
    QuestionAttempt,
    Quiz,
    QuizAttempt,
    QuizGrade,
    QuizSlot,
)

SUMGRADES_EPSILON = 0.000005


def calculate_best_grade(method: int, attempts: Sequence[QuizAttempt]) -> float | None:
    """
    Combine a student's attempts (in attempt order) into one raw grade.

    Average ignores ungraded attempts; highest of nothing graded is None.
    """
    if not attempts:
        return None
    method = GradeMethod(method)
    if method == GradeMethod.FIRST:
        return attempts[0].sum_grades
    if method == GradeMethod.LAST:
        return attempts[-1].sum_grades
    if method == GradeMethod.AVERAGE:
        graded = [a.sum_grades for a in attempts if a.sum_grades is not None]
        if not graded:
            return None
        return sum(graded) / len(graded)

    best = None
    for attempt in attempts:
        if attempt.sum_grades is not None and (best is None or attempt.sum_grades > best):
            best = attempt.sum_grades
    return best


def rescale_grade(raw_grade: float | None, quiz: Quiz) -> float | None:
    """Convert a raw sum of marks to a grade out of quiz.grade."""
    if raw_grade is None:
        return None
    if quiz.sum_grades >= SUMGRADES_EPSILON:
        return raw_grade * quiz.grade / quiz.sum_grades
    return 0.0


def update_sumgrades(session: Session, quiz: Quiz) -> float:
    total = session.execute(
        select(func.coalesce(func.sum(QuizSlot.max_mark), 0.0)).where(QuizSlot.quiz_id == quiz.id)
    ).scalar()
    quiz.sum_grades = float(total)
    session.flush()
    logger.debug(f"Quiz {quiz.id} sum of grades is now {quiz.sum_grades}")
    return quiz.sum_grades


def update_all_attempt_sumgrades(session: Session, quiz: Quiz, now: int | None = None) -> int:
    """Recompute sum_grades of every finished attempt from its slot marks."""
    marks = (
        select(func.sum(QuestionAttempt.fraction * QuestionAttempt.max_mark))
        .where(QuestionAttempt.attempt_id == QuizAttempt.id)
        .scalar_subquery()
    )
    result = session.execute(
        update(QuizAttempt)
        .where(QuizAttempt.quiz_id == quiz.id, QuizAttempt.state == AttemptState.FINISHED)
        .values(sum_grades=marks, time_modified=int(time.time()) if now is None else now)
        .execution_options(synchronize_session=False)
    )
    logger.debug(f"Quiz {quiz.id}: recomputed sum of grades for {result.rowcount} attempts")
    return result.rowcount


def update_all_final_grades(session: Session, quiz: Quiz, now: int | None = None) -> dict[int, float | None]:
    """
    Recompute every student's final grade from their finished attempts.

    Students left without finished attempts lose their quiz_grades row.

    Returns:
        user id -> rescaled grade (None when no attempt is graded)
    """
    now = int(time.time()) if now is None else now
    attempts = session.scalars(
        select(QuizAttempt)
        .where(
            QuizAttempt.quiz_id == quiz.id,
            QuizAttempt.state == AttemptState.FINISHED,
            QuizAttempt.preview.is_(False),
        )
        .order_by(QuizAttempt.user_id, QuizAttempt.attempt)
        .execution_options(populate_existing=True)
    ).all()

    by_user: dict[int, list[QuizAttempt]] = defaultdict(list)
    for attempt in attempts:
        by_user[attempt.user_id].append(attempt)

    existing = {
        grade.user_id: grade
        for grade in session.scalars(select(QuizGrade).where(QuizGrade.quiz_id == quiz.id))
    }

    grades: dict[int, float | None] = {}
    for user_id, user_attempts in by_user.items():
        grade = rescale_grade(calculate_best_grade(quiz.grade_method, user_attempts), quiz)
        grades[user_id] = grade
        row = existing.get(user_id)
        if grade is None:
            if row is not None:
                session.delete(row)
            continue
        if row is None:
            session.add(QuizGrade(quiz_id=quiz.id, user_id=user_id, grade=grade, time_modified=now))
        else:
            row.grade = grade
            row.time_modified = now

    stale_users = set(existing) - set(by_user)
    if stale_users:
        session.execute(
            delete(QuizGrade)
            .where(QuizGrade.quiz_id == quiz.id, QuizGrade.user_id.in_(stale_users))
            .execution_options(synchronize_session=False)
        )
    session.flush()
    logger.info(f"Quiz {quiz.id}: final grades updated for {len(grades)} students")
    return grades
