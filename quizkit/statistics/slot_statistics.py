"""
Per-slot (item) statistics.

For every real slot over the selected attempts:
- facility: mean mark as a fraction of the slot's max mark
- standard deviation of that fraction
- sample variance of the raw mark (summed for the quiz cic)
- discrimination index: 100 x Pearson r of the slot mark against the
  attempt's mark on the rest of the quiz
"""
from __future__ import annotations

import math
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from quizkit.db.models import Question, QuestionAttempt, QuestionStatisticsRow, QuizAttempt, QuizSlot
from quizkit.progress import NullProgress, ProgressReporter
from quizkit.statistics.calculated import WhichAttempts
from quizkit.statistics.selection import attempts_conditions


@dataclass
class SlotStatistics:
    slot: int
    question_id: int
    max_mark: float
    s: int = 0
    facility: float | None = None
    standard_deviation: float | None = None
    mark_variance: float | None = None
    discrimination_index: float | None = None

    def to_row(self, hashcode: str, quiz_id: int, time_modified: int) -> QuestionStatisticsRow:
        return QuestionStatisticsRow(
            hashcode=hashcode,
            quiz_id=quiz_id,
            slot=self.slot,
            question_id=self.question_id,
            s=self.s,
            facility=self.facility,
            standard_deviation=self.standard_deviation,
            mark_variance=self.mark_variance,
            discrimination_index=self.discrimination_index,
            time_modified=time_modified,
        )


@dataclass
class SlotStatisticsSet:
    """All slot statistics of one selection, plus the inputs the quiz calculator needs."""

    slots: list[SlotStatistics] = field(default_factory=list)

    @property
    def position_count(self) -> int:
        return len(self.slots)

    @property
    def sum_of_mark_variance(self) -> float:
        return sum(stat.mark_variance or 0.0 for stat in self.slots)

    def for_slot(self, slot: int) -> SlotStatistics | None:
        return next((stat for stat in self.slots if stat.slot == slot), None)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _sample_variance(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = _mean(values)
    return sum((v - mean) ** 2 for v in values) / (len(values) - 1)


def _pearson(xs: Sequence[float], ys: Sequence[float]) -> float | None:
    if len(xs) < 2:
        return None
    mean_x, mean_y = _mean(xs), _mean(ys)
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    sxx = sum((x - mean_x) ** 2 for x in xs)
    syy = sum((y - mean_y) ** 2 for y in ys)
    if sxx == 0 or syy == 0:
        return None
    return sxy / math.sqrt(sxx * syy)


class SlotStatisticsCalculator:
    """Item analysis for the real (non-informational) slots of a quiz."""

    def __init__(
        self,
        session: Session,
        progress: ProgressReporter | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.progress = progress or NullProgress()
        self.clock = clock

    def real_slots(self, quiz_id: int) -> list[tuple[int, int, float]]:
        """(slot, question_id, max_mark) for slots holding a scored question."""
        rows = self.session.execute(
            select(QuizSlot.slot, QuizSlot.question_id, QuizSlot.max_mark, Question.length)
            .outerjoin(Question, Question.id == QuizSlot.question_id)
            .where(QuizSlot.quiz_id == quiz_id)
            .order_by(QuizSlot.slot)
        ).all()
        return [(slot, qid, max_mark) for slot, qid, max_mark, length in rows if length != 0]

    def calculate(
        self,
        quiz_id: int,
        which: int = WhichAttempts.AVERAGE,
        group_students: Iterable[int] | None = None,
        hashcode: str | None = None,
    ) -> SlotStatisticsSet:
        """Compute slot statistics; persist them under hashcode when one is given."""
        slots = self.real_slots(quiz_id)
        marks = self._marks_by_attempt(quiz_id, which, group_students, {slot for slot, _, _ in slots})

        result = SlotStatisticsSet()
        self.progress.start_progress(len(slots), "Calculating question statistics")
        for done, (slot, question_id, max_mark) in enumerate(slots, start=1):
            result.slots.append(self._slot_statistics(slot, question_id, max_mark, marks))
            self.progress.advance(done, len(slots))
        self.progress.end_progress()

        if hashcode is not None:
            now = int(self.clock())
            self.session.add_all([stat.to_row(hashcode, quiz_id, now) for stat in result.slots])
            self.session.flush()

        logger.debug(
            f"Quiz {quiz_id}: {result.position_count} positions, "
            f"sum of mark variance {result.sum_of_mark_variance:.4f}"
        )
        return result

    def get_cached(self, hashcode: str) -> SlotStatisticsSet:
        rows = self.session.scalars(
            select(QuestionStatisticsRow)
            .where(QuestionStatisticsRow.hashcode == hashcode)
            .order_by(QuestionStatisticsRow.slot)
        ).all()
        return SlotStatisticsSet(
            [
                SlotStatistics(
                    slot=row.slot,
                    question_id=row.question_id,
                    max_mark=0.0,
                    s=row.s,
                    facility=row.facility,
                    standard_deviation=row.standard_deviation,
                    mark_variance=row.mark_variance,
                    discrimination_index=row.discrimination_index,
                )
                for row in rows
            ]
        )

    def _marks_by_attempt(
        self,
        quiz_id: int,
        which: int,
        group_students: Iterable[int] | None,
        real_slots: set[int],
    ) -> dict[int, dict[int, float]]:
        """attempt id -> {slot: mark} over the selected attempts (ungraded counts as 0)."""
        selected = select(QuizAttempt.id).where(*attempts_conditions(quiz_id, group_students, which))
        rows = self.session.execute(
            select(
                QuestionAttempt.attempt_id,
                QuestionAttempt.slot,
                QuestionAttempt.fraction,
                QuestionAttempt.max_mark,
            ).where(QuestionAttempt.attempt_id.in_(selected))
        ).all()

        marks: dict[int, dict[int, float]] = defaultdict(dict)
        for attempt_id, slot, fraction, max_mark in rows:
            if slot in real_slots:
                marks[attempt_id][slot] = (fraction or 0.0) * max_mark
        return marks

    @staticmethod
    def _slot_statistics(
        slot: int,
        question_id: int,
        max_mark: float,
        marks: dict[int, dict[int, float]],
    ) -> SlotStatistics:
        stat = SlotStatistics(slot=slot, question_id=question_id, max_mark=max_mark)
        slot_marks: list[float] = []
        rest_marks: list[float] = []
        for attempt_marks in marks.values():
            if slot not in attempt_marks:
                continue
            mark = attempt_marks[slot]
            slot_marks.append(mark)
            rest_marks.append(sum(attempt_marks.values()) - mark)

        stat.s = len(slot_marks)
        if not slot_marks:
            return stat

        stat.mark_variance = _sample_variance(slot_marks)
        if max_mark:
            stat.facility = _mean(slot_marks) / max_mark
            if stat.s > 1:
                stat.standard_deviation = math.sqrt(stat.mark_variance) / max_mark

        r = _pearson(slot_marks, rest_marks)
        if r is not None:
            stat.discrimination_index = 100 * r
        return stat
