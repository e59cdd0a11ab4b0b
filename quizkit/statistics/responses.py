"""
Response analysis: how often each distinct response was given in a slot.

Only question types that report can_analyse_responses are tallied.
Responses are keyed by their canonical JSON so equal answers group
together regardless of key order.
"""
from __future__ import annotations

import json
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from quizkit.db.models import Question, QuestionAttempt, QuizAttempt, ResponseAnalysisRow
from quizkit.progress import NullProgress, ProgressReporter
from quizkit.questions import QuestionEngine
from quizkit.statistics.calculated import WhichAttempts
from quizkit.statistics.selection import attempts_conditions

# (slot, question_id) -> {canonical response: count}
ResponseCounts = dict[tuple[int, int], dict[str, int]]


def canonical_response(response) -> str:
    return json.dumps(response, sort_keys=True, separators=(",", ":"))


class ResponseAnalyser:
    def __init__(
        self,
        session: Session,
        question_engine: QuestionEngine | None = None,
        progress: ProgressReporter | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.question_engine = question_engine or QuestionEngine()
        self.progress = progress or NullProgress()
        self.clock = clock

    def analyse(
        self,
        quiz_id: int,
        which: int = WhichAttempts.AVERAGE,
        group_students: Iterable[int] | None = None,
        hashcode: str | None = None,
    ) -> ResponseCounts:
        """Tally responses over the selected attempts; persist under hashcode when given."""
        selected = select(QuizAttempt.id).where(*attempts_conditions(quiz_id, group_students, which))
        rows = self.session.execute(
            select(QuestionAttempt.slot, QuestionAttempt.question_id, Question.qtype, QuestionAttempt.response)
            .outerjoin(Question, Question.id == QuestionAttempt.question_id)
            .where(QuestionAttempt.attempt_id.in_(selected))
            .order_by(QuestionAttempt.slot)
        ).all()

        tallies: dict[tuple[int, int], Counter] = defaultdict(Counter)
        skipped: set[str] = set()
        for slot, question_id, qtype, response in rows:
            if not self.question_engine.can_analyse_responses(qtype):
                skipped.add(str(qtype))
                continue
            if response is None:
                continue
            tallies[(slot, question_id)][canonical_response(response)] += 1

        counts: ResponseCounts = {}
        self.progress.start_progress(len(tallies), "Analysing responses")
        for done, key in enumerate(sorted(tallies), start=1):
            counts[key] = dict(tallies[key])
            self.progress.advance(done, len(tallies))
        self.progress.end_progress()

        if skipped:
            logger.debug(f"Quiz {quiz_id}: responses not analysed for types {sorted(skipped)}")

        if hashcode is not None:
            now = int(self.clock())
            self.session.add_all(
                [
                    ResponseAnalysisRow(
                        hashcode=hashcode,
                        quiz_id=quiz_id,
                        slot=slot,
                        question_id=question_id,
                        response=response,
                        count=count,
                        time_modified=now,
                    )
                    for (slot, question_id), responses in counts.items()
                    for response, count in responses.items()
                ]
            )
            self.session.flush()
        return counts

    def get_cached(self, hashcode: str) -> ResponseCounts:
        counts: ResponseCounts = defaultdict(dict)
        rows = self.session.scalars(
            select(ResponseAnalysisRow)
            .where(ResponseAnalysisRow.hashcode == hashcode)
            .order_by(ResponseAnalysisRow.slot, ResponseAnalysisRow.id)
        )
        for row in rows:
            counts[(row.slot, row.question_id)][row.response] = row.count
        return dict(counts)
