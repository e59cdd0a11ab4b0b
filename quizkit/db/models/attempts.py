"""
Attempt models.

Implements:
- QuizAttempt: one student's attempt at a quiz (sum_grades is the raw total)
- QuestionAttempt: the recorded response and fraction for one slot of an attempt
- QuizGrade: a student's final, rescaled grade for a quiz

The attempt id doubles as the question usage id referenced by the regrade ledger.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, List

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .quiz import Quiz


class AttemptState:
    IN_PROGRESS = "inprogress"
    OVERDUE = "overdue"
    FINISHED = "finished"
    ABANDONED = "abandoned"


class QuizAttempt(Base):
    """A student's attempt at a quiz."""

    __tablename__ = "quiz_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, default=1)  # Attempt number for this user
    state: Mapped[str] = mapped_column(String(16), default=AttemptState.IN_PROGRESS)
    preview: Mapped[bool] = mapped_column(Boolean, default=False)
    sum_grades: Mapped[float | None] = mapped_column(Float, nullable=True)
    time_modified: Mapped[int] = mapped_column(Integer, default=0)

    quiz: Mapped["Quiz"] = relationship("Quiz", back_populates="attempts")
    question_attempts: Mapped[List["QuestionAttempt"]] = relationship(
        "QuestionAttempt",
        back_populates="quiz_attempt",
        order_by="QuestionAttempt.slot",
        cascade="all, delete-orphan",
    )

    @property
    def is_finished(self) -> bool:
        return self.state == AttemptState.FINISHED

    def __repr__(self) -> str:
        return f"<QuizAttempt(id={self.id}, user={self.user_id}, attempt={self.attempt}, state={self.state})>"


class QuestionAttempt(Base):
    """The state of one slot within an attempt."""

    __tablename__ = "question_attempts"
    __table_args__ = (UniqueConstraint("attempt_id", "slot", name="uq_question_attempts_slot"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(
        ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False
    )
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)  # The question actually asked
    max_mark: Mapped[float] = mapped_column(Float, default=1.0)
    fraction: Mapped[float | None] = mapped_column(Float, nullable=True)  # None until graded
    response: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    quiz_attempt: Mapped["QuizAttempt"] = relationship("QuizAttempt", back_populates="question_attempts")

    @property
    def mark(self) -> float | None:
        if self.fraction is None:
            return None
        return self.fraction * self.max_mark

    def __repr__(self) -> str:
        return f"<QuestionAttempt(attempt={self.attempt_id}, slot={self.slot}, fraction={self.fraction})>"


class QuizGrade(Base):
    """Final grade for one student on one quiz."""

    __tablename__ = "quiz_grades"
    __table_args__ = (UniqueConstraint("quiz_id", "user_id", name="uq_quiz_grades_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    grade: Mapped[float] = mapped_column(Float, nullable=False)
    time_modified: Mapped[int] = mapped_column(Integer, default=0)
