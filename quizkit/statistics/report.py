"""
Statistics report: the cached entry point used by the CLI.

get_statistics() returns fresh cached values when they exist; otherwise it
clears the selection's cache rows, then recomputes slot statistics, quiz
statistics and response analysis and stores them under one hash.
"""
from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.orm import Session

from quizkit.db.queries import get_quiz
from quizkit.progress import NullProgress, ProgressReporter
from quizkit.questions import QuestionEngine
from quizkit.statistics.cache import StatisticsCache
from quizkit.statistics.calculated import CalculatedStatistics, WhichAttempts
from quizkit.statistics.calculator import StatisticsCalculator
from quizkit.statistics.responses import ResponseAnalyser, ResponseCounts
from quizkit.statistics.selection import selection_hash
from quizkit.statistics.slot_statistics import SlotStatisticsCalculator, SlotStatisticsSet


@dataclass
class QuizStatisticsResult:
    quiz: CalculatedStatistics
    slots: SlotStatisticsSet
    responses: ResponseCounts = field(default_factory=dict)
    hashcode: str = ""
    from_cache: bool = False


class QuizStatisticsReport:
    def __init__(
        self,
        session: Session,
        question_engine: QuestionEngine | None = None,
        progress: ProgressReporter | None = None,
        cache: StatisticsCache | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.progress = progress or NullProgress()
        self.cache = cache or StatisticsCache(session, clock=clock)
        self.slot_calculator = SlotStatisticsCalculator(session, clock=self.cache.clock)
        self.quiz_calculator = StatisticsCalculator(session, progress=self.progress, cache=self.cache)
        self.response_analyser = ResponseAnalyser(session, question_engine, clock=self.cache.clock)

    def get_statistics(
        self,
        quiz_id: int,
        which: int | None = None,
        group_students: Iterable[int] | None = None,
        recalculate: bool = False,
    ) -> QuizStatisticsResult:
        """
        Statistics for one attempt selection, from cache when fresh.

        Args:
            quiz_id: Quiz to analyse
            which: Selection policy; defaults to the quiz's grade method
            group_students: Restrict to these user ids
            recalculate: Ignore any cached value
        """
        quiz = get_quiz(self.session, quiz_id)
        which = WhichAttempts(quiz.grade_method if which is None else which)
        students = sorted(set(group_students or ()))
        hashcode = selection_hash(quiz_id, which, students)

        if not recalculate and self.cache.get_last_calculated_time(hashcode) is not None:
            cached = self.cache.get_cached(hashcode)
            if cached is not None:
                logger.debug(f"Quiz {quiz_id}: using cached statistics from {cached.time_modified}")
                return QuizStatisticsResult(
                    quiz=cached,
                    slots=self.slot_calculator.get_cached(hashcode),
                    responses=self.response_analyser.get_cached(hashcode),
                    hashcode=hashcode,
                    from_cache=True,
                )

        self.cache.invalidate(hashcode)
        self.progress.start_progress(1, "Question statistics")
        slots = self.slot_calculator.calculate(quiz_id, which, students, hashcode)
        self.progress.advance(1, 1, "Question statistics")
        self.progress.end_progress()

        # Reports its own steps through the same progress
        stats = self.quiz_calculator.calculate(
            quiz_id, which, students, slots.position_count, slots.sum_of_mark_variance
        )

        responses: ResponseCounts = {}
        if stats.s():
            self.progress.start_progress(1, "Response analysis")
            responses = self.response_analyser.analyse(quiz_id, which, students, hashcode)
            self.progress.advance(1, 1, "Response analysis")
            self.progress.end_progress()

        return QuizStatisticsResult(quiz=stats, slots=slots, responses=responses, hashcode=hashcode)
