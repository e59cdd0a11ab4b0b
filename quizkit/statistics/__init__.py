"""
Quiz statistics and their cache.

This module provides:
- StatisticsCalculator: mean, median, standard deviation, skewness,
  kurtosis and internal consistency of attempt totals
- SlotStatisticsCalculator: facility, variance and discrimination per slot
- ResponseAnalyser: counts of each distinct response per slot
- StatisticsCache: TTL cache keyed by selection_hash()
- QuizStatisticsReport: cached entry point combining all of the above
"""

from .cache import StatisticsCache
from .calculated import CalculatedStatistics, WhichAttempts, using_attempts_string_id
from .calculator import StatisticsCalculator
from .report import QuizStatisticsReport, QuizStatisticsResult
from .responses import ResponseAnalyser
from .selection import attempts_conditions, attempts_selection, selection_hash
from .slot_statistics import SlotStatistics, SlotStatisticsCalculator, SlotStatisticsSet

__all__ = [
    "CalculatedStatistics",
    "WhichAttempts",
    "using_attempts_string_id",
    "StatisticsCalculator",
    "StatisticsCache",
    "SlotStatistics",
    "SlotStatisticsSet",
    "SlotStatisticsCalculator",
    "ResponseAnalyser",
    "QuizStatisticsReport",
    "QuizStatisticsResult",
    "attempts_conditions",
    "attempts_selection",
    "selection_hash",
]
