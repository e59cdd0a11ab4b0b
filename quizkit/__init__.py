"""
quizkit: quiz structure editing, statistics and regrading.
"""

__version__ = "0.1.0"
