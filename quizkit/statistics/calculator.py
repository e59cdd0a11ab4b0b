"""
Whole-quiz statistics.

Moments of the attempt sum-of-grades distribution, as described in
"Quiz statistics calculations":

- count and mean for every selection policy
- median (order statistic)
- sample standard deviation (s > 1)
- skewness and coefficient of internal consistency (s > 2, k2 != 0)
- kurtosis (s > 3)

Small samples simply leave the higher moments as None.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from quizkit.db.models import QuizAttempt
from quizkit.progress import NullProgress, ProgressReporter
from quizkit.statistics.cache import StatisticsCache
from quizkit.statistics.calculated import CalculatedStatistics, WhichAttempts
from quizkit.statistics.selection import attempts_conditions, selection_hash


@dataclass
class PowerSums:
    """Sums of (x - mean)^k over the selected attempts."""

    power2: float = 0.0
    power3: float = 0.0
    power4: float = 0.0


def _graded():
    return func.coalesce(QuizAttempt.sum_grades, 0)


class StatisticsCalculator:
    """Compute (and, given a cache, persist) CalculatedStatistics for a quiz."""

    def __init__(
        self,
        session: Session,
        progress: ProgressReporter | None = None,
        cache: StatisticsCache | None = None,
    ):
        self.session = session
        self.progress = progress or NullProgress()
        self.cache = cache

    def calculate(
        self,
        quiz_id: int,
        which: int,
        group_students: Iterable[int] | None,
        p: int,
        sum_of_mark_variance: float,
    ) -> CalculatedStatistics:
        """
        Compute quiz statistics for one attempt selection.

        Args:
            quiz_id: Quiz to analyse
            which: WhichAttempts policy driving median and higher moments
            group_students: Restrict to these user ids (empty = everyone)
            p: Number of scored positions (real slots)
            sum_of_mark_variance: Sum of per-slot mark variances (for cic)

        Returns:
            The statistics; stored in the cache when any attempt was selected
        """
        students = sorted(set(group_students or ()))
        which = WhichAttempts(which)
        self.progress.start_progress(3, "Calculating quiz statistics")

        stats = CalculatedStatistics(which_attempts=which)
        for policy in WhichAttempts:
            count, avg = self._count_and_average(quiz_id, students, policy)
            stats.set_count_and_avg(policy, count, avg)
        self.progress.advance(1, 3, "Counts and averages")

        s = stats.s()
        if s != 0:
            conditions = attempts_conditions(quiz_id, students, which)
            stats.median = self._median(s, conditions)
            self.progress.advance(2, 3, "Median")

            if s > 1:
                powers = self._sum_of_powers_of_difference_to_mean(stats.avg(), conditions)
                self.progress.advance(3, 3, "Moments")
                stats.standard_deviation = math.sqrt(powers.power2 / (s - 1))

                if s > 2:
                    self._add_higher_moments(stats, powers, s, p, sum_of_mark_variance)

            if self.cache is not None:
                self.cache.store(selection_hash(quiz_id, which, students), quiz_id, stats)

        self.progress.end_progress()
        logger.info(
            f"Quiz {quiz_id} statistics ({which.name.lower()}): s={s}, "
            f"mean={stats.avg()}, median={stats.median}, sd={stats.standard_deviation}"
        )
        return stats

    @staticmethod
    def _add_higher_moments(
        stats: CalculatedStatistics,
        powers: PowerSums,
        s: int,
        p: int,
        sum_of_mark_variance: float,
    ) -> None:
        m2 = powers.power2 / s
        m3 = powers.power3 / s
        m4 = powers.power4 / s

        k2 = s * m2 / (s - 1)
        k3 = s * s * m3 / ((s - 1) * (s - 2))
        if k2 == 0:
            return

        stats.skewness = k3 / k2**1.5
        if s > 3:
            k4 = s * s * ((s + 1) * m4 - 3 * (s - 1) * m2 * m2) / ((s - 1) * (s - 2) * (s - 3))
            stats.kurtosis = k4 / (k2 * k2)

        if p > 1:
            stats.cic = (100 * p / (p - 1)) * (1 - sum_of_mark_variance / k2)
            remainder = 1 - stats.cic / 100
            if remainder >= 0:
                stats.error_ratio = 100 * math.sqrt(remainder)
                stats.standard_error = stats.error_ratio * stats.standard_deviation / 100
            else:
                logger.debug(f"cic {stats.cic:.2f} above 100; error ratio omitted")

    # ========================================
    # Queries
    # ========================================

    def _count_and_average(
        self, quiz_id: int, students: list[int], which: WhichAttempts
    ) -> tuple[int, float | None]:
        conditions = attempts_conditions(quiz_id, students, which)
        count, avg = self.session.execute(
            select(func.count(QuizAttempt.id), func.avg(_graded())).where(*conditions)
        ).one()
        return int(count or 0), (float(avg) if avg is not None else None)

    def _median(self, s: int, conditions) -> float:
        if s % 2 == 0:
            offset, limit = s // 2 - 1, 2
        else:
            offset, limit = s // 2, 1
        marks = self.session.scalars(
            select(_graded())
            .where(*conditions)
            .order_by(_graded(), QuizAttempt.id)
            .offset(offset)
            .limit(limit)
        ).all()
        return sum(float(mark) for mark in marks) / len(marks)

    def _sum_of_powers_of_difference_to_mean(self, mean: float, conditions) -> PowerSums:
        powers = PowerSums()
        for mark in self.session.scalars(select(_graded()).where(*conditions)):
            diff = float(mark) - mean
            powers.power2 += diff**2
            powers.power3 += diff**3
            powers.power4 += diff**4
        return powers
