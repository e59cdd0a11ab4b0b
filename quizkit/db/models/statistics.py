"""
Statistics cache and regrade ledger models.

Cached rows share a hashcode computed from the attempt selection
(quiz, which attempts, student subset), so one selection can be dropped
in a single pass across all three statistics tables.
"""
from __future__ import annotations

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QuizStatisticsRow(Base):
    """Cached whole-quiz statistics for one attempt selection."""

    __tablename__ = "quiz_statistics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hashcode: Mapped[str] = mapped_column(String(40), index=True, nullable=False)
    quiz_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    which_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    time_modified: Mapped[int] = mapped_column(Integer, nullable=False)

    # Counts and averages for every selection policy
    first_attempts_count: Mapped[int] = mapped_column(Integer, default=0)
    highest_attempts_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempts_count: Mapped[int] = mapped_column(Integer, default=0)
    all_attempts_count: Mapped[int] = mapped_column(Integer, default=0)
    first_attempts_avg: Mapped[float | None] = mapped_column(Float)
    highest_attempts_avg: Mapped[float | None] = mapped_column(Float)
    last_attempts_avg: Mapped[float | None] = mapped_column(Float)
    all_attempts_avg: Mapped[float | None] = mapped_column(Float)

    # Moments of the selected policy
    median: Mapped[float | None] = mapped_column(Float)
    standard_deviation: Mapped[float | None] = mapped_column(Float)
    skewness: Mapped[float | None] = mapped_column(Float)
    kurtosis: Mapped[float | None] = mapped_column(Float)
    cic: Mapped[float | None] = mapped_column(Float)
    error_ratio: Mapped[float | None] = mapped_column(Float)
    standard_error: Mapped[float | None] = mapped_column(Float)


class QuestionStatisticsRow(Base):
    """Cached per-slot statistics."""

    __tablename__ = "question_statistics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hashcode: Mapped[str] = mapped_column(String(40), index=True, nullable=False)
    quiz_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    s: Mapped[int] = mapped_column(Integer, default=0)
    facility: Mapped[float | None] = mapped_column(Float)
    standard_deviation: Mapped[float | None] = mapped_column(Float)
    mark_variance: Mapped[float | None] = mapped_column(Float)
    discrimination_index: Mapped[float | None] = mapped_column(Float)
    time_modified: Mapped[int] = mapped_column(Integer, nullable=False)


class ResponseAnalysisRow(Base):
    """How many selected attempts gave a particular response in a slot."""

    __tablename__ = "question_response_analysis"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hashcode: Mapped[str] = mapped_column(String(40), index=True, nullable=False)
    quiz_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)  # Canonical JSON
    count: Mapped[int] = mapped_column(Integer, default=0)
    time_modified: Mapped[int] = mapped_column(Integer, nullable=False)


class RegradeRecord(Base):
    """A slot whose fraction changed when an attempt was regraded."""

    __tablename__ = "quiz_overview_regrades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    question_usage_id: Mapped[int] = mapped_column(
        ForeignKey("quiz_attempts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    old_fraction: Mapped[float | None] = mapped_column(Float)
    new_fraction: Mapped[float | None] = mapped_column(Float)
    regraded: Mapped[bool] = mapped_column(Boolean, default=False)  # False = dry run, still pending
    time_modified: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<RegradeRecord(usage={self.question_usage_id}, slot={self.slot}, "
            f"{self.old_fraction} -> {self.new_fraction}, regraded={self.regraded})>"
        )
