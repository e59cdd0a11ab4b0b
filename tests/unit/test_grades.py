"""
Unit tests for grade bookkeeping and the gradebook clients.
"""

import httpx
import pytest
from sqlalchemy import select

from config import Settings
from quizkit.db.models import AttemptState, GradeMethod, QuizAttempt, QuizGrade
from quizkit.grading import (
    HttpGradebook,
    NullGradebook,
    calculate_best_grade,
    gradebook_from_settings,
    rescale_grade,
    update_all_attempt_sumgrades,
    update_all_final_grades,
    update_sumgrades,
)


def attempts(*totals):
    return [QuizAttempt(attempt=number, sum_grades=total) for number, total in enumerate(totals, start=1)]


class TestBestGrade:
    @pytest.mark.parametrize(
        "method, expected",
        [
            (GradeMethod.HIGHEST, 8.0),
            (GradeMethod.AVERAGE, 5.0),
            (GradeMethod.FIRST, 3.0),
            (GradeMethod.LAST, 4.0),
        ],
    )
    def test_methods(self, method, expected):
        assert calculate_best_grade(method, attempts(3.0, 8.0, 4.0)) == pytest.approx(expected)

    def test_average_ignores_ungraded(self):
        assert calculate_best_grade(GradeMethod.AVERAGE, attempts(2.0, None, 4.0)) == pytest.approx(3.0)

    def test_nothing_graded(self):
        assert calculate_best_grade(GradeMethod.HIGHEST, attempts(None)) is None
        assert calculate_best_grade(GradeMethod.HIGHEST, []) is None


class TestRescale:
    def test_scales_to_quiz_grade(self, make_quiz):
        quiz = make_quiz([("TF1", 1, "truefalse"), ("TF2", 1, "truefalse")], grade=10.0)
        assert quiz.sum_grades == pytest.approx(2.0)
        assert rescale_grade(1.0, quiz) == pytest.approx(5.0)

    def test_zero_total_marks(self, make_quiz):
        quiz = make_quiz([], grade=10.0)
        assert rescale_grade(1.0, quiz) == 0.0
        assert rescale_grade(None, quiz) is None


class TestUpdateGrades:
    def test_update_sumgrades_follows_slot_marks(self, session, make_quiz):
        quiz = make_quiz([("TF1", 1, "truefalse"), ("TF2", 1, "truefalse")])

        assert update_sumgrades(session, quiz) == pytest.approx(2.0)

    def test_attempt_totals_and_final_grades(self, session, make_quiz, make_attempt):
        quiz = make_quiz([("TF1", 1, "truefalse"), ("TF2", 1, "truefalse")], grade=10.0)
        first = make_attempt(quiz, 1, attempt=1, answers={1: (1.0, None), 2: (0.0, None)})
        make_attempt(quiz, 1, attempt=2, answers={1: (1.0, None), 2: (1.0, None)})
        make_attempt(quiz, 2, attempt=1, answers={1: (0.5, None), 2: (0.0, None)})
        make_attempt(quiz, 3, attempt=1, state=AttemptState.IN_PROGRESS, answers={1: (1.0, None)})
        session.add(QuizGrade(quiz_id=quiz.id, user_id=99, grade=7.0))
        session.flush()

        assert update_all_attempt_sumgrades(session, quiz, now=123) == 3
        grades = update_all_final_grades(session, quiz, now=123)

        session.refresh(first)
        assert first.sum_grades == pytest.approx(1.0)
        assert grades == {1: pytest.approx(10.0), 2: pytest.approx(2.5)}
        stored = {row.user_id: row.grade for row in session.scalars(select(QuizGrade))}
        assert stored == {1: pytest.approx(10.0), 2: pytest.approx(2.5)}


# ========================================
# Gradebook
# ========================================


class TestGradebook:
    def test_posts_grades(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        HttpGradebook("https://grades.example/api", client=client).update_grades(4, {1: 7.5, 2: None})

        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert b'"quiz_id":4' in seen[0].content.replace(b" ", b"")
        assert b'"1":7.5' in seen[0].content.replace(b" ", b"")

    def test_http_error_is_raised(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))

        with pytest.raises(httpx.HTTPStatusError):
            HttpGradebook("https://grades.example/api", client=client).update_grades(4, {1: 1.0})

    def test_timeouts_are_retried(self, monkeypatch):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        monkeypatch.setattr("quizkit.grading.gradebook.time.sleep", lambda seconds: None)
        client = httpx.Client(transport=httpx.MockTransport(handler))

        with pytest.raises(httpx.TimeoutException):
            HttpGradebook("https://grades.example/api", retry_attempts=3, client=client).update_grades(4, {})
        assert len(calls) == 3

    def test_factory_picks_client_from_settings(self):
        assert isinstance(gradebook_from_settings(Settings(gradebook_url=None)), NullGradebook)
        gradebook = gradebook_from_settings(Settings(gradebook_url="https://grades.example/api"))
        assert isinstance(gradebook, HttpGradebook)
        gradebook.close()
