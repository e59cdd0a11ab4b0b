"""
Regrade Engine.

Re-runs grading over recorded responses and keeps a ledger
(quiz_overview_regrades) of every slot whose fraction changed:

- regrade_attempt: one attempt, one SAVEPOINT; dry runs only write the ledger
- regrade_attempts: best-effort batch; a failing attempt is rolled back,
  reported in the summary and skipped
- regrade_attempts_needing_regrade: finish the slots a dry run flagged

Real runs finish by recomputing attempt totals and final grades, pushing
them to the gradebook, and dropping the quiz's cached statistics.
"""
from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import httpx
from loguru import logger
from sqlalchemy import delete, distinct, exists, func, select
from sqlalchemy.orm import Session

from quizkit.db.models import Question, QuestionAttempt, Quiz, QuizAttempt, RegradeRecord
from quizkit.grading import Gradebook, NullGradebook, update_all_attempt_sumgrades, update_all_final_grades
from quizkit.progress import NullProgress, ProgressReporter
from quizkit.questions import QuestionEngine
from quizkit.statistics import StatisticsCache

FRACTION_EPSILON = 1e-7


def fraction_changed(old: float | None, new: float | None) -> bool:
    """Graded vs ungraded counts as a change; two ungraded values do not."""
    if old is None or new is None:
        return old is not new
    return abs(old - new) > FRACTION_EPSILON


@dataclass
class RegradeSummary:
    """Outcome of a regrade batch."""

    total: int = 0
    regraded: int = 0
    records_written: int = 0
    dry_run: bool = False
    failures: list[tuple[int, str]] = field(default_factory=list)
    gradebook_error: str | None = None

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures and self.gradebook_error is None


class RegradeEngine:
    """Regrade attempts of a quiz and maintain the regrade ledger."""

    def __init__(
        self,
        session: Session,
        question_engine: QuestionEngine | None = None,
        progress: ProgressReporter | None = None,
        gradebook: Gradebook | None = None,
        cache: StatisticsCache | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.question_engine = question_engine or QuestionEngine()
        self.progress = progress or NullProgress()
        self.gradebook = gradebook or NullGradebook()
        self.cache = cache or StatisticsCache(session, clock=clock)
        self.clock = clock

    # ========================================
    # Single attempt
    # ========================================

    def regrade_attempt(
        self,
        attempt: QuizAttempt,
        dry_run: bool = False,
        slots: Iterable[int] | None = None,
    ) -> int:
        """
        Regrade one attempt atomically.

        Args:
            attempt: The attempt to regrade
            dry_run: Record what would change without touching fractions
            slots: Only these slots (default: every slot of the attempt)

        Returns:
            Number of ledger records written
        """
        wanted = None if slots is None else set(slots)
        written = 0
        with self.session.begin_nested():
            self._clear_attempt_ledger(attempt.id, wanted)

            finished = attempt.is_finished
            now = int(self.clock())
            for question_attempt in self._question_attempts(attempt.id, wanted):
                question = self.session.get(Question, question_attempt.question_id)
                if question is None:
                    logger.warning(
                        f"Attempt {attempt.id} slot {question_attempt.slot}: "
                        f"question {question_attempt.question_id} is missing; not regraded"
                    )
                    continue

                old_fraction = question_attempt.fraction
                new_fraction = self.question_engine.regrade(question, question_attempt, finished)
                if fraction_changed(old_fraction, new_fraction):
                    self.session.add(
                        RegradeRecord(
                            question_usage_id=attempt.id,
                            slot=question_attempt.slot,
                            old_fraction=old_fraction,
                            new_fraction=new_fraction,
                            regraded=not dry_run,
                            time_modified=now,
                        )
                    )
                    written += 1
                if not dry_run:
                    question_attempt.fraction = new_fraction

            self.session.flush()

        logger.debug(f"Regraded attempt {attempt.id}{' (dry run)' if dry_run else ''}: {written} changes")
        return written

    def _question_attempts(self, attempt_id: int, slots: set[int] | None) -> list[QuestionAttempt]:
        stmt = (
            select(QuestionAttempt)
            .where(QuestionAttempt.attempt_id == attempt_id)
            .order_by(QuestionAttempt.slot)
        )
        if slots is not None:
            stmt = stmt.where(QuestionAttempt.slot.in_(slots))
        return list(self.session.scalars(stmt))

    def _clear_attempt_ledger(self, attempt_id: int, slots: set[int] | None) -> None:
        stmt = delete(RegradeRecord).where(RegradeRecord.question_usage_id == attempt_id)
        if slots is not None:
            stmt = stmt.where(RegradeRecord.slot.in_(slots))
        self.session.execute(stmt.execution_options(synchronize_session=False))

    # ========================================
    # Batches
    # ========================================

    def regrade_attempts(
        self,
        quiz: Quiz,
        dry_run: bool = False,
        group_students: Iterable[int] | None = None,
        attempt_ids: Iterable[int] | None = None,
    ) -> RegradeSummary:
        """Regrade every matching non-preview attempt, continuing past failures."""
        stmt = select(QuizAttempt).where(QuizAttempt.quiz_id == quiz.id, QuizAttempt.preview.is_(False))
        students = sorted(set(group_students or ()))
        if students:
            stmt = stmt.where(QuizAttempt.user_id.in_(students))
        ids = sorted(set(attempt_ids or ()))
        if ids:
            stmt = stmt.where(QuizAttempt.id.in_(ids))
        attempts = list(self.session.scalars(stmt.order_by(QuizAttempt.id)))

        summary = RegradeSummary(total=len(attempts), dry_run=dry_run)
        if not attempts:
            logger.info(f"Quiz {quiz.id}: no attempts to regrade")
            return summary

        logger.info(f"Quiz {quiz.id}: regrading {len(attempts)} attempts{' (dry run)' if dry_run else ''}")
        self._run_batch(quiz, [(attempt, None) for attempt in attempts], dry_run, summary)
        if not dry_run:
            self._finish_real_run(quiz, summary)
        return summary

    def regrade_attempts_needing_regrade(
        self,
        quiz: Quiz,
        group_students: Iterable[int] | None = None,
    ) -> RegradeSummary:
        """Regrade, for real, only the slots a previous dry run flagged."""
        pending: dict[int, list[int]] = defaultdict(list)
        for attempt_id, slot in self.session.execute(
            self._pending_query(quiz, group_students, QuizAttempt.id, RegradeRecord.slot)
        ):
            pending[attempt_id].append(slot)

        summary = RegradeSummary(total=len(pending))
        if not pending:
            logger.info(f"Quiz {quiz.id}: no attempts need regrading")
            return summary

        attempts = self.session.scalars(
            select(QuizAttempt).where(QuizAttempt.id.in_(list(pending))).order_by(QuizAttempt.id)
        ).all()
        self._run_batch(quiz, [(attempt, pending[attempt.id]) for attempt in attempts], False, summary)
        self._finish_real_run(quiz, summary)
        return summary

    def _run_batch(
        self,
        quiz: Quiz,
        work: list[tuple[QuizAttempt, list[int] | None]],
        dry_run: bool,
        summary: RegradeSummary,
    ) -> None:
        total = len(work)
        self.progress.start_progress(total, f"Regrading quiz {quiz.id}")
        for done, (attempt, slots) in enumerate(work, start=1):
            attempt_id = attempt.id
            try:
                summary.records_written += self.regrade_attempt(attempt, dry_run=dry_run, slots=slots)
                summary.regraded += 1
            except Exception as e:  # Intentionally broad - one bad attempt must not stop the batch
                summary.failures.append((attempt_id, str(e)))
                logger.warning(f"Regrade of attempt {attempt_id} failed, skipped: {e}")
            self.progress.advance(done, total, f"Regrading attempt {done} of {total}")
        self.progress.end_progress()

        if summary.failures:
            logger.warning(f"Quiz {quiz.id}: {summary.failure_count} of {total} attempts failed to regrade")

    def _finish_real_run(self, quiz: Quiz, summary: RegradeSummary) -> None:
        summary.gradebook_error = self.update_overall_grades(quiz)
        self.cache.invalidate_quiz(quiz.id)

    def update_overall_grades(self, quiz: Quiz) -> str | None:
        """
        Recompute attempt totals and final grades, then notify the gradebook.

        Returns:
            The gradebook error message, or None if the update went through
        """
        now = int(self.clock())
        update_all_attempt_sumgrades(self.session, quiz, now=now)
        grades = update_all_final_grades(self.session, quiz, now=now)
        try:
            self.gradebook.update_grades(quiz.id, grades)
        except httpx.HTTPError as e:
            logger.warning(f"Quiz {quiz.id}: gradebook update failed ({e}); grades saved locally")
            return str(e)
        return None

    # ========================================
    # Ledger queries
    # ========================================

    def _pending_query(self, quiz: Quiz, group_students: Iterable[int] | None, *columns):
        stmt = (
            select(*columns)
            .select_from(QuizAttempt)
            .join(RegradeRecord, RegradeRecord.question_usage_id == QuizAttempt.id)
            .where(
                QuizAttempt.quiz_id == quiz.id,
                QuizAttempt.preview.is_(False),
                RegradeRecord.regraded.is_(False),
            )
        )
        students = sorted(set(group_students or ()))
        if students:
            stmt = stmt.where(QuizAttempt.user_id.in_(students))
        return stmt

    def count_attempts_needing_regrade(self, quiz: Quiz, group_students: Iterable[int] | None = None) -> int:
        stmt = self._pending_query(quiz, group_students, func.count(distinct(QuizAttempt.id)))
        return int(self.session.execute(stmt).scalar() or 0)

    def has_regraded_questions(self, quiz: Quiz, group_students: Iterable[int] | None = None) -> bool:
        condition = [
            QuizAttempt.id == RegradeRecord.question_usage_id,
            QuizAttempt.quiz_id == quiz.id,
        ]
        students = sorted(set(group_students or ()))
        if students:
            condition.append(QuizAttempt.user_id.in_(students))
        return bool(self.session.execute(select(exists().where(*condition))).scalar())

    def clear_regrade_ledger(self, quiz: Quiz, group_students: Iterable[int] | None = None) -> int:
        """Delete ledger rows (pending and done) for a quiz, optionally only some students."""
        attempts = select(QuizAttempt.id).where(QuizAttempt.quiz_id == quiz.id)
        students = sorted(set(group_students or ()))
        if students:
            attempts = attempts.where(QuizAttempt.user_id.in_(students))
        result = self.session.execute(
            delete(RegradeRecord)
            .where(RegradeRecord.question_usage_id.in_(attempts))
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Quiz {quiz.id}: cleared {result.rowcount} regrade records")
        return result.rowcount
