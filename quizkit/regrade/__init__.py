"""
Regrading recorded attempts.
"""

from .engine import RegradeEngine, RegradeSummary, fraction_changed

__all__ = ["RegradeEngine", "RegradeSummary", "fraction_changed"]
