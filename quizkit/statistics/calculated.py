"""
CalculatedStatistics value object.

Holds the count and mean of every attempt-selection policy plus the higher
moments of the policy that was asked for. Moments whose sample-size
preconditions were not met stay None.
"""
from __future__ import annotations

from dataclasses import dataclass, fields

from quizkit.db.models import GradeMethod, QuizStatisticsRow

# Statistics select attempts the same way a grade method picks them
WhichAttempts = GradeMethod

_STRING_IDS = {
    WhichAttempts.FIRST: "firstattempts",
    WhichAttempts.HIGHEST: "highestattempts",
    WhichAttempts.LAST: "lastattempts",
    WhichAttempts.AVERAGE: "allattempts",
}


def using_attempts_string_id(which: int) -> str:
    """Field prefix (and label id) for a selection policy, e.g. 'firstattempts'."""
    try:
        return _STRING_IDS[WhichAttempts(which)]
    except ValueError:
        raise ValueError(f"Unknown attempt selection policy: {which}") from None


@dataclass
class CalculatedStatistics:
    which_attempts: int = WhichAttempts.AVERAGE
    time_modified: int | None = None

    first_attempts_count: int = 0
    highest_attempts_count: int = 0
    last_attempts_count: int = 0
    all_attempts_count: int = 0
    first_attempts_avg: float | None = None
    highest_attempts_avg: float | None = None
    last_attempts_avg: float | None = None
    all_attempts_avg: float | None = None

    median: float | None = None
    standard_deviation: float | None = None
    skewness: float | None = None
    kurtosis: float | None = None
    cic: float | None = None
    error_ratio: float | None = None
    standard_error: float | None = None

    def _prefix(self) -> str:
        return using_attempts_string_id(self.which_attempts).replace("attempts", "_attempts")

    def s(self) -> int:
        """Number of attempts selected by the chosen policy."""
        return getattr(self, f"{self._prefix()}_count") or 0

    def avg(self) -> float | None:
        """Mean sum of grades under the chosen policy."""
        return getattr(self, f"{self._prefix()}_avg")

    def set_count_and_avg(self, which: int, count: int, avg: float | None) -> None:
        prefix = using_attempts_string_id(which).replace("attempts", "_attempts")
        setattr(self, f"{prefix}_count", count)
        setattr(self, f"{prefix}_avg", avg)

    def to_row(self, hashcode: str, quiz_id: int) -> QuizStatisticsRow:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["which_attempts"] = int(values["which_attempts"])
        return QuizStatisticsRow(hashcode=hashcode, quiz_id=quiz_id, **values)

    @classmethod
    def from_row(cls, row: QuizStatisticsRow) -> CalculatedStatistics:
        values = {f.name: getattr(row, f.name) for f in fields(cls)}
        values["which_attempts"] = WhichAttempts(row.which_attempts)
        return cls(**values)
