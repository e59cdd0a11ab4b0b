"""
Reusable queries shared by the structure, statistics and regrade services.
"""
from __future__ import annotations

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from quizkit.db.models import Quiz, QuizAttempt, QuizSection
from quizkit.exceptions import NotFoundError


def get_quiz(session: Session, quiz_id: int) -> Quiz:
    """Fetch a quiz or raise NotFoundError."""
    quiz = session.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFoundError(f"Quiz {quiz_id} does not exist")
    return quiz


def has_attempts(session: Session, quiz_id: int) -> bool:
    """Whether the quiz has any non-preview attempts."""
    stmt = select(
        exists().where(QuizAttempt.quiz_id == quiz_id, QuizAttempt.preview.is_(False))
    )
    return bool(session.execute(stmt).scalar())


def create_quiz(session: Session, name: str, **settings) -> Quiz:
    """
    Create a quiz together with its default first section.

    Args:
        session: Active session (caller commits)
        name: Quiz name
        **settings: Any other Quiz column (grade, grade_method, questions_per_page, ...)

    Returns:
        The flushed Quiz
    """
    quiz = Quiz(name=name, **settings)
    session.add(quiz)
    session.flush()
    session.add(QuizSection(quiz_id=quiz.id, first_slot=1, heading="", shuffle_questions=False))
    session.flush()
    return quiz
