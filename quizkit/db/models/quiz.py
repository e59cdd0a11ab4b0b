"""
Quiz layout models.

Implements:
- Quiz: quiz settings that affect layout and grading
- Question: question bank entries placed into slots
- QuizSlot: one question placement (slot number, page, max mark)
- QuizSection: a named run of slots starting at first_slot

Layout rules (enforced by quizkit.structure, not the database):
- slot numbers are dense 1..N per quiz (unique index on quiz_id, slot)
- page numbers never decrease as the slot number increases
- the first section of every quiz starts at slot 1
"""
from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .attempts import QuizAttempt


class GradeMethod(IntEnum):
    """How a student's attempts combine into one grade (also which attempts feed statistics)."""

    HIGHEST = 1
    AVERAGE = 2
    FIRST = 3
    LAST = 4


class NavigationMethod:
    FREE = "free"
    SEQUENTIAL = "sequential"


class Quiz(Base):
    """Quiz settings row."""

    __tablename__ = "quizzes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Grading
    grade: Mapped[float] = mapped_column(Float, default=10.0)  # Maximum quiz grade
    sum_grades: Mapped[float] = mapped_column(Float, default=0.0)  # Total of slot max marks
    grade_method: Mapped[int] = mapped_column(Integer, default=int(GradeMethod.HIGHEST))
    attempts_allowed: Mapped[int] = mapped_column(Integer, default=0)  # 0 = unlimited

    # Layout
    questions_per_page: Mapped[int] = mapped_column(Integer, default=1)  # 0 = unlimited
    navigation_method: Mapped[str] = mapped_column(String(16), default=NavigationMethod.FREE)
    preferred_behaviour: Mapped[str] = mapped_column(String(32), default="deferredfeedback")

    slots: Mapped[List["QuizSlot"]] = relationship(
        "QuizSlot", back_populates="quiz", order_by="QuizSlot.slot", cascade="all, delete-orphan"
    )
    sections: Mapped[List["QuizSection"]] = relationship(
        "QuizSection",
        back_populates="quiz",
        order_by="QuizSection.first_slot",
        cascade="all, delete-orphan",
    )
    attempts: Mapped[List["QuizAttempt"]] = relationship(
        "QuizAttempt", back_populates="quiz", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Quiz(id={self.id}, name={self.name!r})>"


class Question(Base):
    """
    Question bank entry.

    The answer JSON structure varies by qtype:

    truefalse:    {"correct": true}
    multichoice:  {"choices": [{"fraction": 1.0}, {"fraction": 0.0}]}
    shortanswer:  {"answers": [{"text": "Paris", "fraction": 1.0}], "case_sensitive": false}
    numerical:    {"answers": [{"value": 3.14, "tolerance": 0.01, "fraction": 1.0}]}
    essay, description, random: {}
    """

    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    qtype: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="")
    question_text: Mapped[str] = mapped_column(Text, default="")
    length: Mapped[int] = mapped_column(Integer, default=1)  # 0 for informational items
    default_mark: Mapped[float] = mapped_column(Float, default=1.0)
    answer: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, qtype={self.qtype}, name={self.name!r})>"


class QuizSlot(Base):
    """One question placement within a quiz."""

    __tablename__ = "quiz_slots"
    __table_args__ = (UniqueConstraint("quiz_id", "slot", name="uq_quiz_slots_quiz_slot"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    page: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # No FK: a slot may outlive its question and is then shown as a missing question
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    max_mark: Mapped[float] = mapped_column(Float, default=1.0)
    require_previous: Mapped[bool] = mapped_column(Boolean, default=False)

    quiz: Mapped["Quiz"] = relationship("Quiz", back_populates="slots")

    def __repr__(self) -> str:
        return f"<QuizSlot(quiz={self.quiz_id}, slot={self.slot}, page={self.page})>"


class QuizSection(Base):
    """A heading that starts at first_slot and runs until the next section."""

    __tablename__ = "quiz_sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    first_slot: Mapped[int] = mapped_column(Integer, nullable=False)
    heading: Mapped[str] = mapped_column(Text, default="")
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, default=False)

    quiz: Mapped["Quiz"] = relationship("Quiz", back_populates="sections")

    def __repr__(self) -> str:
        return f"<QuizSection(quiz={self.quiz_id}, first_slot={self.first_slot}, heading={self.heading!r})>"
