"""
Time-boxed cache for calculated statistics.

Rows are keyed by selection_hash(). An entry older than the TTL is treated
as absent but is not deleted; invalidate() removes it together with the
per-slot statistics and response analysis that share its hash.
"""
from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from config import get_settings
from quizkit.db.models import QuestionStatisticsRow, QuizStatisticsRow, ResponseAnalysisRow
from quizkit.statistics.calculated import CalculatedStatistics

_CACHED_TABLES = (QuizStatisticsRow, QuestionStatisticsRow, ResponseAnalysisRow)


class StatisticsCache:
    """Store and look up CalculatedStatistics by selection hash."""

    def __init__(
        self,
        session: Session,
        ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.ttl = get_settings().statistics_cache_ttl if ttl is None else ttl
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    def _fresh_row(self, hashcode: str) -> QuizStatisticsRow | None:
        cutoff = self.now() - self.ttl
        return self.session.scalars(
            select(QuizStatisticsRow)
            .where(QuizStatisticsRow.hashcode == hashcode, QuizStatisticsRow.time_modified > cutoff)
            .order_by(QuizStatisticsRow.time_modified.desc())
            .limit(1)
        ).first()

    def get_cached(self, hashcode: str) -> CalculatedStatistics | None:
        row = self._fresh_row(hashcode)
        if row is None:
            return None
        return CalculatedStatistics.from_row(row)

    def get_last_calculated_time(self, hashcode: str) -> int | None:
        row = self._fresh_row(hashcode)
        return row.time_modified if row is not None else None

    def store(self, hashcode: str, quiz_id: int, stats: CalculatedStatistics) -> CalculatedStatistics:
        """Persist stats under hashcode, stamped with the current time."""
        stats.time_modified = self.now()
        self.session.add(stats.to_row(hashcode, quiz_id))
        self.session.flush()
        logger.debug(f"Cached statistics for quiz {quiz_id} ({hashcode[:8]}) at {stats.time_modified}")
        return stats

    def invalidate(self, hashcode: str) -> int:
        """Drop every cached row sharing hashcode. Returns the number of rows removed."""
        removed = 0
        for table in _CACHED_TABLES:
            result = self.session.execute(
                delete(table).where(table.hashcode == hashcode).execution_options(synchronize_session=False)
            )
            removed += result.rowcount or 0
        logger.debug(f"Invalidated statistics {hashcode[:8]} ({removed} rows)")
        return removed

    def invalidate_quiz(self, quiz_id: int) -> int:
        """Drop every cached statistics row of a quiz, whatever the selection."""
        removed = 0
        for table in _CACHED_TABLES:
            result = self.session.execute(
                delete(table).where(table.quiz_id == quiz_id).execution_options(synchronize_session=False)
            )
            removed += result.rowcount or 0
        if removed:
            logger.info(f"Invalidated {removed} cached statistics rows for quiz {quiz_id}")
        return removed
