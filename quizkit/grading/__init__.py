"""
Grades and gradebook propagation.
"""

from .gradebook import Gradebook, HttpGradebook, NullGradebook, gradebook_from_settings
from .grades import (
    calculate_best_grade,
    rescale_grade,
    update_all_attempt_sumgrades,
    update_all_final_grades,
    update_sumgrades,
)

__all__ = [
    "Gradebook",
    "NullGradebook",
    "HttpGradebook",
    "gradebook_from_settings",
    "calculate_best_grade",
    "rescale_grade",
    "update_sumgrades",
    "update_all_attempt_sumgrades",
    "update_all_final_grades",
]
