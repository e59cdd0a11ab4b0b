"""
Unit tests for the regrade engine and its ledger.
"""

import httpx
import pytest
from sqlalchemy import func, select

from quizkit.db.models import (
    AttemptState,
    Question,
    QuestionAttempt,
    QuizGrade,
    QuizSlot,
    QuizStatisticsRow,
    RegradeRecord,
)
from quizkit.progress import RecordingProgress
from quizkit.regrade import RegradeEngine, fraction_changed

RIGHT = {"answer": True}
WRONG = {"answer": False}


class RecordingGradebook:
    def __init__(self, error: Exception | None = None):
        self.calls = []
        self.error = error

    def update_grades(self, quiz_id, grades):
        self.calls.append((quiz_id, dict(grades)))
        if self.error is not None:
            raise self.error


def question_in_slot(session, quiz, slot_number) -> Question:
    return session.scalars(
        select(Question)
        .join(QuizSlot, QuizSlot.question_id == Question.id)
        .where(QuizSlot.quiz_id == quiz.id, QuizSlot.slot == slot_number)
    ).one()


def fractions(session, attempt) -> dict[int, float | None]:
    session.expire_all()
    return {
        qa.slot: qa.fraction
        for qa in session.scalars(select(QuestionAttempt).where(QuestionAttempt.attempt_id == attempt.id))
    }


def ledger(session) -> list[tuple]:
    return [
        (row.question_usage_id, row.slot, row.old_fraction, row.new_fraction, row.regraded)
        for row in session.scalars(select(RegradeRecord).order_by(RegradeRecord.question_usage_id, RegradeRecord.slot))
    ]


@pytest.fixture
def engine_factory(session):
    def build(**kwargs):
        kwargs.setdefault("gradebook", RecordingGradebook())
        return RegradeEngine(session, clock=lambda: 1_700_000_000, **kwargs)

    return build


class TestFractionChanged:
    @pytest.mark.parametrize(
        "old, new, changed",
        [
            (0.5, 0.5, False),
            (0.5, 0.5 + 1e-9, False),
            (0.5, 0.75, True),
            (None, None, False),
            (None, 0.0, True),
            (1.0, None, True),
        ],
    )
    def test_fraction_changed(self, old, new, changed):
        assert fraction_changed(old, new) is changed


class TestRegradeAttempt:
    def test_unchanged_fraction_writes_no_record(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("MC", 1, "multichoice")])
        question_in_slot(session, quiz, 1).answer = {"choices": [{"fraction": 0.5}, {"fraction": 1.0}]}
        session.flush()
        attempt = make_attempt(quiz, 1, answers={1: (0.5, {"choice": 0})})

        assert engine_factory().regrade_attempt(attempt) == 0
        assert ledger(session) == []

    def test_changed_fraction_is_recorded_and_applied(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("MC", 1, "multichoice")])
        question_in_slot(session, quiz, 1).answer = {"choices": [{"fraction": 0.75}, {"fraction": 1.0}]}
        session.flush()
        attempt = make_attempt(quiz, 1, answers={1: (0.5, {"choice": 0})})

        assert engine_factory().regrade_attempt(attempt) == 1

        assert ledger(session) == [(attempt.id, 1, 0.5, 0.75, True)]
        assert fractions(session, attempt) == {1: 0.75}

    def test_dry_run_only_writes_the_ledger(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("TF1", 1, "truefalse"), ("TF2", 1, "truefalse")])
        attempt = make_attempt(quiz, 1, answers={1: (0.0, RIGHT), 2: (0.0, WRONG)})

        assert engine_factory().regrade_attempt(attempt, dry_run=True) == 1

        assert ledger(session) == [(attempt.id, 1, 0.0, 1.0, False)]
        assert fractions(session, attempt) == {1: 0.0, 2: 0.0}

    def test_repeated_dry_run_replaces_pending_rows(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("TF1", 1, "truefalse")])
        attempt = make_attempt(quiz, 1, answers={1: (0.0, RIGHT)})
        engine = engine_factory()

        engine.regrade_attempt(attempt, dry_run=True)
        engine.regrade_attempt(attempt, dry_run=True)

        assert len(ledger(session)) == 1

    def test_unanswered_question(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("TF1", 1, "truefalse")])
        finished = make_attempt(quiz, 1, answers={1: (None, None)})
        in_progress = make_attempt(quiz, 2, state=AttemptState.IN_PROGRESS, answers={1: (None, None)})
        engine = engine_factory()

        assert engine.regrade_attempt(in_progress) == 0
        assert engine.regrade_attempt(finished) == 1
        assert fractions(session, finished) == {1: 0.0}

    def test_manually_graded_fraction_is_kept(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("Essay", 1, "essay")])
        attempt = make_attempt(quiz, 1, answers={1: (0.8, {"text": "An essay"})})

        assert engine_factory().regrade_attempt(attempt) == 0
        assert fractions(session, attempt) == {1: 0.8}

    def test_missing_question_is_skipped(self, session, make_quiz, make_attempt, engine_factory):
        quiz = make_quiz([("TF1", 1, "truefalse"), ("TF2", 1, "truefalse")])
        attempt = make_attempt(quiz, 1, answers={1: (0.0, RIGHT), 2: (0.0, RIGHT)})
        session.delete(question_in_slot(session, quiz, 2))
        session.flush()

        assert engine_factory().regrade_attempt(attempt) == 1
        assert fractions(session, attempt) == {1: 1.0, 2: 0.0}


class TestBatch:
    @pytest.fixture
    def quiz(self, make_quiz):
        return make_quiz([("TF1", 1, "truefalse"), ("TF2", 1, "truefalse")], grade=10.0)

    def test_real_run_updates_grades_and_notifies_gradebook(self, session, quiz, make_attempt, engine_factory):
        make_attempt(quiz, 1, answers={1: (0.0, RIGHT), 2: (1.0, RIGHT)})
        make_attempt(quiz, 2, answers={1: (1.0, WRONG), 2: (0.0, WRONG)})
        gradebook = RecordingGradebook()
        progress = RecordingProgress()

        summary = engine_factory(gradebook=gradebook, progress=progress).regrade_attempts(quiz)

        assert (summary.total, summary.regraded, summary.records_written) == (2, 2, 2)
        assert summary.ok
        stored = {row.user_id: row.grade for row in session.scalars(select(QuizGrade))}
        assert stored == {1: pytest.approx(10.0), 2: pytest.approx(0.0)}
        assert gradebook.calls == [(quiz.id, {1: pytest.approx(10.0), 2: pytest.approx(0.0)})]
        assert progress.started and progress.ended == 1
        assert progress.updates[-1][:2] == (2, 2)

    def test_dry_run_then_regrade_pending(self, session, quiz, make_attempt, engine_factory):
        attempt = make_attempt(quiz, 1, answers={1: (0.0, RIGHT), 2: (1.0, RIGHT)})
        make_attempt(quiz, 2, answers={1: (0.0, WRONG), 2: (0.0, WRONG)})
        gradebook = RecordingGradebook()
        engine = engine_factory(gradebook=gradebook)

        summary = engine.regrade_attempts(quiz, dry_run=True)

        assert summary.dry_run and summary.records_written == 1
        assert gradebook.calls == []
        assert engine.count_attempts_needing_regrade(quiz) == 1
        assert engine.has_regraded_questions(quiz)
        assert fractions(session, attempt) == {1: 0.0, 2: 1.0}

        pending = engine.regrade_attempts_needing_regrade(quiz)

        assert (pending.total, pending.regraded) == (1, 1)
        assert engine.count_attempts_needing_regrade(quiz) == 0
        assert fractions(session, attempt) == {1: 1.0, 2: 1.0}
        assert ledger(session) == [(attempt.id, 1, 0.0, 1.0, True)]
        assert len(gradebook.calls) == 1

    def test_failing_attempt_is_rolled_back_and_skipped(
        self, session, quiz, make_attempt, engine_factory, monkeypatch
    ):
        good = make_attempt(quiz, 1, answers={1: (0.0, RIGHT), 2: (0.0, RIGHT)})
        bad = make_attempt(quiz, 2, answers={1: (0.0, RIGHT), 2: (0.0, RIGHT)})
        engine = engine_factory()
        original = engine.question_engine.regrade

        def flaky(question, question_attempt, finished):
            if question_attempt.attempt_id == bad.id and question_attempt.slot == 2:
                raise RuntimeError("corrupt response")
            return original(question, question_attempt, finished)

        monkeypatch.setattr(engine.question_engine, "regrade", flaky)
        bad_id = bad.id

        summary = engine.regrade_attempts(quiz)

        assert summary.failures == [(bad_id, "corrupt response")]
        assert summary.regraded == 1
        assert not summary.ok
        assert fractions(session, good) == {1: 1.0, 2: 1.0}
        assert fractions(session, bad) == {1: 0.0, 2: 0.0}
        assert all(row[0] == good.id for row in ledger(session))

    def test_subset_of_students_and_attempts(self, session, quiz, make_attempt, engine_factory):
        first = make_attempt(quiz, 1, answers={1: (0.0, RIGHT)})
        make_attempt(quiz, 2, answers={1: (0.0, RIGHT)})
        engine = engine_factory()

        assert engine.regrade_attempts(quiz, dry_run=True, group_students=[2]).total == 1
        assert engine.regrade_attempts(quiz, dry_run=True, attempt_ids=[first.id]).total == 1
        assert engine.count_attempts_needing_regrade(quiz, group_students=[1]) == 1

    def test_preview_attempts_are_ignored(self, session, quiz, make_attempt, engine_factory):
        make_attempt(quiz, 1, preview=True, answers={1: (0.0, RIGHT)})

        summary = engine_factory().regrade_attempts(quiz)

        assert summary.total == 0

    def test_gradebook_failure_is_reported_not_raised(self, session, quiz, make_attempt, engine_factory):
        make_attempt(quiz, 1, answers={1: (0.0, RIGHT), 2: (1.0, RIGHT)})
        gradebook = RecordingGradebook(error=httpx.ConnectError("gradebook down"))

        summary = engine_factory(gradebook=gradebook).regrade_attempts(quiz)

        assert summary.gradebook_error == "gradebook down"
        assert not summary.ok
        assert session.scalar(select(func.count(QuizGrade.id))) == 1

    def test_real_run_drops_cached_statistics(self, session, quiz, make_attempt, engine_factory):
        make_attempt(quiz, 1, answers={1: (0.0, RIGHT)})
        session.add(QuizStatisticsRow(hashcode="x" * 40, quiz_id=quiz.id, which_attempts=1, time_modified=1))
        session.flush()

        engine_factory().regrade_attempts(quiz)

        assert session.scalar(select(func.count(QuizStatisticsRow.id))) == 0

    def test_clear_regrade_ledger(self, session, quiz, make_attempt, engine_factory):
        make_attempt(quiz, 1, answers={1: (0.0, RIGHT)})
        make_attempt(quiz, 2, answers={1: (0.0, RIGHT)})
        engine = engine_factory()
        engine.regrade_attempts(quiz, dry_run=True)

        assert engine.clear_regrade_ledger(quiz, group_students=[1]) == 1
        assert engine.count_attempts_needing_regrade(quiz) == 1
        assert engine.clear_regrade_ledger(quiz) == 1
        assert not engine.has_regraded_questions(quiz)
