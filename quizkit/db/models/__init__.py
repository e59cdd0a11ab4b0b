# SQLAlchemy models
from .attempts import AttemptState, QuestionAttempt, QuizAttempt, QuizGrade
from .base import Base
from .quiz import GradeMethod, NavigationMethod, Question, Quiz, QuizSection, QuizSlot
from .statistics import (
    QuestionStatisticsRow,
    QuizStatisticsRow,
    RegradeRecord,
    ResponseAnalysisRow,
)

__all__ = [
    # Base
    "Base",
    # Layout
    "Quiz",
    "Question",
    "QuizSlot",
    "QuizSection",
    "GradeMethod",
    "NavigationMethod",
    # Attempts
    "QuizAttempt",
    "QuestionAttempt",
    "QuizGrade",
    "AttemptState",
    # Statistics cache
    "QuizStatisticsRow",
    "QuestionStatisticsRow",
    "ResponseAnalysisRow",
    # Regrade ledger
    "RegradeRecord",
]
