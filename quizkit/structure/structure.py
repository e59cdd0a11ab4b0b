"""
Quiz Structure Manager.

Owns the in-memory layout of one quiz (slots, pages, sections) and the
algorithms that change it:

- load: slots joined with question metadata, sections attached by range
- move_slot: renumber the affected span, shift section starts, re-pack pages
- remove_slot / add_question: close or open a gap in the slot sequence
- page breaks, repagination and section heading edits

Every mutation runs inside one SAVEPOINT (all or nothing) and leaves the
handle STALE: load a fresh structure before reading again.
"""
from __future__ import annotations

import functools
from collections.abc import Iterable

from loguru import logger
from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.orm import Session

from config import get_settings
from quizkit.db.models import (
    NavigationMethod,
    Question,
    QuestionAttempt,
    Quiz,
    QuizAttempt,
    QuizSection,
    QuizSlot,
)
from quizkit.db.queries import get_quiz, has_attempts
from quizkit.exceptions import NotFoundError, PreconditionError, StaleStructureError
from quizkit.grading import update_all_attempt_sumgrades, update_all_final_grades, update_sumgrades
from quizkit.questions import MISSING_TYPE, RANDOM_TYPE, QuestionEngine
from quizkit.statistics import StatisticsCache
from quizkit.structure.models import (
    INFO_LABEL,
    PageBreak,
    QuestionInfo,
    Section,
    Slot,
    StructureState,
)
from quizkit.structure.paging import apply_page_break, refresh_page_numbers, repaginate_slots

MARK_EPSILON = 1e-7
MISSING_QUESTION_NAME = "Missing question"


def requires_loaded(method):
    """Refuse to read from a structure that has been mutated."""

    @functools.wraps(method)
    def wrapper(self: QuizStructure, *args, **kwargs):
        self._check_loaded()
        return method(self, *args, **kwargs)

    return wrapper


def mutation(method):
    """
    Run a structural edit as one unit of work.

    Precondition and lookup failures happen before any write and leave the
    handle usable. Anything else, success included, makes it STALE.
    """

    @functools.wraps(method)
    def wrapper(self: QuizStructure, *args, **kwargs):
        self._check_loaded()
        try:
            with self.session.begin_nested():
                result = method(self, *args, **kwargs)
        except (PreconditionError, NotFoundError):
            raise
        except Exception:  # Intentionally broad - savepoint already rolled back, handle is unreliable
            self._mark_stale(method.__name__)
            raise
        self._mark_stale(method.__name__)
        return result

    return wrapper


class QuizStructure:
    """
    The ordered, paginated, sectioned sequence of questions in a quiz.

    Build one with QuizStructure.load(); use it for queries or for exactly
    one mutation.
    """

    def __init__(
        self,
        session: Session,
        quiz: Quiz,
        slots: list[Slot],
        sections: list[Section],
        question_engine: QuestionEngine | None = None,
    ):
        self.session = session
        self.quiz = quiz
        self.quiz_id = quiz.id
        self.question_engine = question_engine or QuestionEngine()
        self.state = StructureState.LOADED
        self._slots_in_order = slots
        self._slots_by_id = {slot.id: slot for slot in slots}
        self._sections = sections
        self._can_be_edited: bool | None = None

    # ========================================
    # Loading
    # ========================================

    @classmethod
    def load(
        cls,
        session: Session,
        quiz_id: int,
        question_engine: QuestionEngine | None = None,
    ) -> QuizStructure:
        """
        Load every slot and section of a quiz.

        Slots whose question row is gone, or whose type is not registered,
        get missing-question placeholders so the layout still loads.

        Raises:
            NotFoundError: if the quiz does not exist
        """
        engine = question_engine or QuestionEngine()
        quiz = get_quiz(session, quiz_id)

        rows = session.execute(
            select(QuizSlot, Question)
            .outerjoin(Question, Question.id == QuizSlot.question_id)
            .where(QuizSlot.quiz_id == quiz_id)
            .order_by(QuizSlot.slot)
            .execution_options(populate_existing=True)
        ).all()
        slots = [cls._slot_from_row(slot_row, question, engine) for slot_row, question in rows]

        section_rows = session.scalars(
            select(QuizSection)
            .where(QuizSection.quiz_id == quiz_id)
            .order_by(QuizSection.first_slot)
            .execution_options(populate_existing=True)
        ).all()
        sections = [
            Section(
                id=row.id,
                quiz_id=row.quiz_id,
                heading=row.heading or "",
                first_slot=row.first_slot,
                shuffle_questions=bool(row.shuffle_questions),
            )
            for row in section_rows
        ]

        _attach_sections(slots, sections)
        _number_questions(slots)
        logger.debug(f"Loaded quiz {quiz_id}: {len(slots)} slots, {len(sections)} sections")
        return cls(session, quiz, slots, sections, engine)

    @staticmethod
    def _slot_from_row(row: QuizSlot, question: Question | None, engine: QuestionEngine) -> Slot:
        if question is None:
            info = QuestionInfo(
                id=row.question_id,
                qtype=MISSING_TYPE,
                name=MISSING_QUESTION_NAME,
                length=1,
                is_missing=True,
            )
            max_mark = 0.0
            require_previous = False
        else:
            qtype = question.qtype if engine.qtype_exists(question.qtype) else MISSING_TYPE
            info = QuestionInfo(
                id=question.id,
                qtype=qtype,
                name=question.name,
                length=question.length,
                is_missing=qtype == MISSING_TYPE,
            )
            max_mark = row.max_mark
            require_previous = bool(row.require_previous)

        return Slot(
            id=row.id,
            quiz_id=row.quiz_id,
            slot=row.slot,
            page=row.page,
            question_id=row.question_id,
            max_mark=max_mark,
            require_previous=require_previous,
            question=info,
        )

    # ========================================
    # State
    # ========================================

    def _check_loaded(self) -> None:
        if self.state is StructureState.STALE:
            raise StaleStructureError(
                f"Structure for quiz {self.quiz_id} was modified; load it again"
            )

    def _mark_stale(self, operation: str) -> None:
        self.state = StructureState.STALE
        logger.debug(f"Quiz {self.quiz_id} structure is stale after {operation}")

    @property
    def is_stale(self) -> bool:
        return self.state is StructureState.STALE

    @requires_loaded
    def can_be_edited(self) -> bool:
        """Structure is locked once any real attempt exists (cached per load)."""
        if self._can_be_edited is None:
            self._can_be_edited = not has_attempts(self.session, self.quiz_id)
        return self._can_be_edited

    def check_can_be_edited(self) -> None:
        if not self.can_be_edited():
            raise PreconditionError(
                f"Quiz {self.quiz_id} has attempts; its structure can no longer be edited"
            )

    @requires_loaded
    def can_be_repaginated(self) -> bool:
        return self.can_be_edited() and self.get_question_count() >= 2

    # ========================================
    # Slot queries
    # ========================================

    @requires_loaded
    def has_questions(self) -> bool:
        return bool(self._slots_in_order)

    @requires_loaded
    def get_question_count(self) -> int:
        return len(self._slots_in_order)

    @requires_loaded
    def get_slots(self) -> list[Slot]:
        return list(self._slots_in_order)

    @requires_loaded
    def get_slot_by_id(self, slot_id: int) -> Slot:
        try:
            return self._slots_by_id[slot_id]
        except KeyError:
            raise NotFoundError(f"Slot id {slot_id} is not in quiz {self.quiz_id}") from None

    @requires_loaded
    def get_slot_by_number(self, slot_number: int) -> Slot:
        if not 1 <= slot_number <= len(self._slots_in_order):
            raise NotFoundError(f"Quiz {self.quiz_id} has no slot {slot_number}")
        return self._slots_in_order[slot_number - 1]

    def get_question_in_slot(self, slot_number: int) -> QuestionInfo:
        return self.get_slot_by_number(slot_number).question

    def get_displayed_number_for_slot(self, slot_number: int) -> int | str:
        return self.get_slot_by_number(slot_number).displayed_number

    def get_page_number_for_slot(self, slot_number: int) -> int:
        return self.get_slot_by_number(slot_number).page

    def get_last_slot(self) -> Slot | None:
        slots = self.get_slots()
        return slots[-1] if slots else None

    def is_real_question(self, slot_number: int) -> bool:
        return self.get_question_in_slot(slot_number).is_real

    def is_question_dependent_on_previous_slot(self, slot_number: int) -> bool:
        return self.get_slot_by_number(slot_number).require_previous

    def can_question_depend_on_previous_slot(self, slot_number: int) -> bool:
        return slot_number > 1 and self.can_finish_during_the_attempt(slot_number - 1)

    def can_finish_during_the_attempt(self, slot_number: int) -> bool:
        """Whether the question in this slot can be complete before the attempt is submitted."""
        slot = self.get_slot_by_number(slot_number)
        if self.quiz.navigation_method == NavigationMethod.SEQUENTIAL:
            return False
        if slot.section is not None and slot.section.shuffle_questions:
            return False

        behaviour = self.quiz.preferred_behaviour
        if slot.question.qtype in (RANDOM_TYPE, MISSING_TYPE):
            return self.question_engine.behaviour_can_finish_during_attempt(behaviour)

        if slot.can_finish is None:
            slot.can_finish = self.question_engine.can_finish_during_attempt(
                slot.question.qtype, behaviour
            )
        return slot.can_finish

    def is_first_slot_on_page(self, slot_number: int) -> bool:
        if slot_number == 1:
            return True
        return self.get_page_number_for_slot(slot_number) != self.get_page_number_for_slot(slot_number - 1)

    def is_last_slot_on_page(self, slot_number: int) -> bool:
        if self.is_last_slot_in_quiz(slot_number):
            return True
        return self.get_page_number_for_slot(slot_number) != self.get_page_number_for_slot(slot_number + 1)

    def is_last_slot_in_section(self, slot_number: int) -> bool:
        return slot_number == self.get_slot_by_number(slot_number).section.last_slot

    def is_only_slot_in_section(self, slot_number: int) -> bool:
        section = self.get_slot_by_number(slot_number).section
        return section.first_slot == section.last_slot

    @requires_loaded
    def is_last_slot_in_quiz(self, slot_number: int) -> bool:
        return slot_number == len(self._slots_in_order)

    # ========================================
    # Section queries
    # ========================================

    @requires_loaded
    def get_sections(self) -> list[Section]:
        return list(self._sections)

    @requires_loaded
    def get_section_by_id(self, section_id: int) -> Section:
        for section in self._sections:
            if section.id == section_id:
                return section
        raise NotFoundError(f"Section {section_id} is not in quiz {self.quiz_id}")

    @requires_loaded
    def get_section_count(self) -> int:
        return len(self._sections)

    @requires_loaded
    def is_first_section(self, section: Section) -> bool:
        return section.first_slot == 1

    @requires_loaded
    def is_last_section(self, section: Section) -> bool:
        return bool(self._sections) and section.id == self._sections[-1].id

    @requires_loaded
    def get_slots_in_section(self, section_id: int) -> list[int]:
        return [
            slot.slot
            for slot in self._slots_in_order
            if slot.section is not None and slot.section.id == section_id
        ]

    @requires_loaded
    def can_add_section_heading(self, page_number: int) -> bool:
        """A heading can go on any page after the first that does not already start a section."""
        if page_number <= 1:
            return False
        first_slots = {section.first_slot for section in self._sections}
        return not any(
            slot.page == page_number and slot.slot in first_slots for slot in self._slots_in_order
        )

    # ========================================
    # Moving slots
    # ========================================

    @mutation
    def move_slot(self, moving_slot_id: int, move_after_slot_id: int | None, page: int) -> None:
        """
        Move a slot to just after another slot (None or 0 = to the start), on a given page.

        Only the slots between the old and new positions are renumbered.
        Section starts inside that span shift with them; a heading exactly
        at the insertion point stays with whichever group the target page
        belongs to.

        Raises:
            PreconditionError: editing locked, page out of range, or the
                move would leave a section empty
            NotFoundError: an unknown slot id
        """
        self.check_can_be_edited()

        moving_slot = self.get_slot_by_id(moving_slot_id)
        moving_number = moving_slot.slot
        if move_after_slot_id:
            move_after = self.get_slot_by_id(move_after_slot_id).slot
        else:
            move_after = 0

        # Moving a slot to just after itself is the same as leaving it in place
        if move_after == moving_number:
            move_after -= 1

        following = move_after + 1
        if following == moving_number:
            following += 1

        page = page or 1
        if page < 1 or (move_after > 0 and page < self.get_page_number_for_slot(move_after)):
            raise PreconditionError(f"Target page {page} is too small")
        if following <= self.get_question_count() and page > self.get_page_number_for_slot(following):
            raise PreconditionError(f"Target page {page} is too large")

        reorder: dict[int, int] = {}
        if move_after > moving_number:
            # Moving down
            reorder[moving_number] = move_after
            for number in range(moving_number, move_after):
                reorder[number + 1] = number

            heading_after = moving_number
            if self.is_last_slot_in_quiz(move_after) or page == self.get_page_number_for_slot(move_after + 1):
                # Landing at the start of a section: that heading moves up too
                heading_before = move_after + 1
            else:
                heading_before = move_after
            heading_shift = -1

        elif move_after < moving_number - 1:
            # Moving up
            reorder[moving_number] = move_after + 1
            for number in range(move_after + 1, moving_number):
                reorder[number] = number + 1

            if page == self.get_page_number_for_slot(move_after + 1):
                # Landing at the start of a section: leave that heading in place
                heading_after = move_after + 1
            else:
                heading_after = move_after
            heading_before = moving_number + 1
            heading_shift = 1

        else:
            # Same position, possibly a different page and section
            if page > moving_slot.page:
                heading_after = moving_number
                heading_before = moving_number + 2
                heading_shift = -1
            elif page < moving_slot.page:
                heading_after = moving_number - 1
                heading_before = moving_number + 1
                heading_shift = 1
            else:
                logger.debug(f"Quiz {self.quiz_id}: slot {moving_number} is already in place")
                return

        if self.is_only_slot_in_section(moving_number) and self.get_section_count() > 1:
            raise PreconditionError("The last slot in a section cannot be moved out of it")

        self._renumber_slots(reorder)
        if moving_slot.page != page:
            self.session.execute(update(QuizSlot).where(QuizSlot.id == moving_slot.id).values(page=page))

        self.session.execute(
            update(QuizSection)
            .where(
                QuizSection.quiz_id == self.quiz_id,
                QuizSection.first_slot > heading_after,
                QuizSection.first_slot < heading_before,
            )
            .values(first_slot=QuizSection.first_slot + heading_shift)
            .execution_options(synchronize_session=False)
        )

        self._repack_pages()
        logger.info(
            f"Quiz {self.quiz_id}: moved slot {moving_number} to "
            f"{reorder.get(moving_number, moving_number)} on page {page}"
        )

    # ========================================
    # Removing and adding slots
    # ========================================

    @mutation
    def remove_slot(self, slot_number: int) -> None:
        """
        Delete a slot and close the gap it leaves.

        A random question that nothing else uses is deleted with its slot.
        """
        self.check_can_be_edited()

        slot = self.get_slot_by_number(slot_number)
        if self.is_only_slot_in_section(slot_number) and self.get_section_count() > 1:
            raise PreconditionError("The last slot in a section cannot be removed")

        max_slot = self.get_question_count()
        self.session.execute(delete(QuizSlot).where(QuizSlot.id == slot.id))
        self._renumber_slots({number: number - 1 for number in range(slot_number + 1, max_slot + 1)})

        self.session.execute(
            update(QuizSection)
            .where(QuizSection.quiz_id == self.quiz_id, QuizSection.first_slot > slot_number)
            .values(first_slot=QuizSection.first_slot - 1)
            .execution_options(synchronize_session=False)
        )

        if slot.question.qtype == RANDOM_TYPE:
            self._delete_random_question_if_unused(slot.question_id)

        self._repack_pages()
        self._update_quiz_totals()
        logger.info(f"Quiz {self.quiz_id}: removed slot {slot_number}")

    def _delete_random_question_if_unused(self, question_id: int) -> None:
        in_slots = exists().where(QuizSlot.question_id == question_id)
        in_attempts = exists().where(QuestionAttempt.question_id == question_id)
        used = self.session.execute(select(in_slots | in_attempts)).scalar()
        if used:
            logger.debug(f"Random question {question_id} still in use; kept")
            return
        self.session.execute(delete(Question).where(Question.id == question_id))
        logger.debug(f"Deleted unused random question {question_id}")

    @mutation
    def add_question(self, question_id: int, page: int = 0, max_mark: float | None = None) -> bool:
        """
        Add a question to the quiz.

        page=0 appends it, starting a new page when the last one already
        holds questions_per_page questions. A positive page makes it the
        last slot on that page; later slots and section starts shift down.

        Returns:
            False if the question is already in the quiz
        """
        self.check_can_be_edited()

        question = self.session.get(Question, question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} does not exist")
        if any(slot.question_id == question_id for slot in self._slots_in_order):
            return False

        max_page = 1
        on_last_page = 0
        for slot in self._slots_in_order:
            if slot.page > max_page:
                max_page = slot.page
                on_last_page = 1
            else:
                on_last_page += 1

        if page >= 1:
            last_slot_before = 0
            shifted: dict[int, int] = {}
            for slot in reversed(self._slots_in_order):
                if slot.page > page:
                    shifted[slot.slot] = slot.slot + 1
                else:
                    last_slot_before = slot.slot
                    break
            self._renumber_slots(shifted)
            new_number = last_slot_before + 1
            new_page = min(page, max_page + 1)

            self.session.execute(
                update(QuizSection)
                .where(
                    QuizSection.quiz_id == self.quiz_id,
                    QuizSection.first_slot > max(last_slot_before, 1),
                )
                .values(first_slot=QuizSection.first_slot + 1)
                .execution_options(synchronize_session=False)
            )
        else:
            new_number = len(self._slots_in_order) + 1
            per_page = self.quiz.questions_per_page
            if per_page and on_last_page >= per_page:
                new_page = max_page + 1
            else:
                new_page = max_page

        self.session.add(
            QuizSlot(
                quiz_id=self.quiz_id,
                slot=new_number,
                page=new_page,
                question_id=question_id,
                max_mark=question.default_mark if max_mark is None else max_mark,
                require_previous=False,
            )
        )
        self.session.flush()
        self._update_quiz_totals()
        logger.info(f"Quiz {self.quiz_id}: added question {question_id} as slot {new_number} on page {new_page}")
        return True

    # ========================================
    # Marks and dependencies
    # ========================================

    def update_slot_max_mark(self, slot: Slot, max_mark: float) -> bool:
        """
        Change the maximum mark of a slot, re-weighting existing attempts too.

        Changes smaller than 1e-7 are ignored and nothing is written.

        Returns:
            True if the mark changed
        """
        self._check_loaded()
        if max_mark < 0:
            raise PreconditionError(f"Maximum mark must not be negative (got {max_mark})")
        # Placeholder slots show 0.0, so compare with what is stored
        stored = self.session.execute(select(QuizSlot.max_mark).where(QuizSlot.id == slot.id)).scalar()
        if stored is None:
            raise NotFoundError(f"Slot {slot.id} does not exist")
        if abs(max_mark - stored) < MARK_EPSILON:
            return False
        self._write_slot_max_mark(slot, stored, max_mark)
        return True

    @mutation
    def _write_slot_max_mark(self, slot: Slot, old_mark: float, max_mark: float) -> None:
        self.session.execute(update(QuizSlot).where(QuizSlot.id == slot.id).values(max_mark=max_mark))
        attempt_ids = select(QuizAttempt.id).where(QuizAttempt.quiz_id == self.quiz_id)
        result = self.session.execute(
            update(QuestionAttempt)
            .where(QuestionAttempt.attempt_id.in_(attempt_ids), QuestionAttempt.slot == slot.slot)
            .values(max_mark=max_mark)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            f"Quiz {self.quiz_id}: slot {slot.slot} max mark {old_mark} -> {max_mark} "
            f"({result.rowcount} attempts updated)"
        )
        self._update_quiz_totals(reweighted=result.rowcount > 0)

    def _update_quiz_totals(self, reweighted: bool = False) -> None:
        """Bring the quiz total, and after re-weighting the attempt totals and grades, in line with the slots."""
        update_sumgrades(self.session, self.quiz)
        if not reweighted:
            return
        update_all_attempt_sumgrades(self.session, self.quiz)
        update_all_final_grades(self.session, self.quiz)
        StatisticsCache(self.session).invalidate_quiz(self.quiz_id)

    @mutation
    def update_question_dependency(self, slot_id: int, require_previous: bool) -> None:
        slot = self.get_slot_by_id(slot_id)
        self.session.execute(
            update(QuizSlot).where(QuizSlot.id == slot.id).values(require_previous=bool(require_previous))
        )

    # ========================================
    # Pages
    # ========================================

    @mutation
    def update_page_break(self, slot_id: int, action: PageBreak) -> list[Slot]:
        """Add (UNLINK) or remove (LINK) the page break after a slot."""
        self.check_can_be_edited()
        slot = self.get_slot_by_id(slot_id)
        if PageBreak(action) == PageBreak.LINK and any(
            section.first_slot == slot.slot + 1 for section in self._sections
        ):
            raise PreconditionError(f"Slot {slot.slot} ends a section; its page break cannot be removed")
        rows = self._fetch_slot_rows()
        apply_page_break(rows, slot.slot, PageBreak(action))
        self.session.flush()
        logger.info(f"Quiz {self.quiz_id}: {PageBreak(action).name} page break after slot {slot.slot}")
        return [_slot_from_page_row(row) for row in rows]

    @mutation
    def repaginate(self, slots_per_page: int) -> list[Slot]:
        """Lay out every slot again, at most slots_per_page per page (0 = all on one page per section)."""
        self.check_can_be_edited()
        if slots_per_page < 0:
            raise PreconditionError("Slots per page must not be negative")
        rows = self._fetch_slot_rows()
        repaginate_slots(rows, slots_per_page, (section.first_slot for section in self._sections))
        self.session.flush()
        logger.info(f"Quiz {self.quiz_id}: repaginated with {slots_per_page} slots per page")
        return [_slot_from_page_row(row) for row in rows]

    @staticmethod
    def refresh_page_numbers(slots: Iterable[Slot]) -> list[Slot]:
        """Compress page numbers to a dense 1..M run; no database access."""
        return refresh_page_numbers(slots)

    @mutation
    def refresh_page_numbers_and_update_db(self) -> list[Slot]:
        self.check_can_be_edited()
        return [_slot_from_page_row(row) for row in self._repack_pages()]

    # ========================================
    # Sections
    # ========================================

    @mutation
    def add_section_heading(self, page_number: int, heading: str | None = None) -> int:
        """
        Start a new section at the first slot of a page.

        Returns:
            The new section id
        """
        self.check_can_be_edited()
        if heading is None:
            heading = get_settings().default_section_heading

        first_slot = self.session.execute(
            select(func.min(QuizSlot.slot)).where(
                QuizSlot.quiz_id == self.quiz_id, QuizSlot.page == page_number
            )
        ).scalar()
        if first_slot is None:
            raise NotFoundError(f"Quiz {self.quiz_id} has no page {page_number}")
        if any(section.first_slot == first_slot for section in self._sections):
            raise PreconditionError(f"A section already starts on page {page_number}")

        section = QuizSection(
            quiz_id=self.quiz_id, first_slot=first_slot, heading=heading, shuffle_questions=False
        )
        self.session.add(section)
        self.session.flush()
        logger.info(f"Quiz {self.quiz_id}: added section {section.id} at slot {first_slot}")
        return section.id

    @mutation
    def set_section_heading(self, section_id: int, heading: str) -> None:
        section = self._get_section_row(section_id)
        section.heading = heading
        self.session.flush()

    @mutation
    def set_section_shuffle(self, section_id: int, shuffle: bool) -> None:
        section = self._get_section_row(section_id)
        section.shuffle_questions = bool(shuffle)
        self.session.flush()

    @mutation
    def remove_section_heading(self, section_id: int) -> None:
        self.check_can_be_edited()
        section = self._get_section_row(section_id)
        if section.first_slot == 1:
            raise PreconditionError("The first section of a quiz cannot be removed")
        self.session.delete(section)
        self.session.flush()
        logger.info(f"Quiz {self.quiz_id}: removed section {section_id}")

    # ========================================
    # Persistence helpers
    # ========================================

    def _get_section_row(self, section_id: int) -> QuizSection:
        section = self.session.get(QuizSection, section_id)
        if section is None or section.quiz_id != self.quiz_id:
            raise NotFoundError(f"Section {section_id} is not in quiz {self.quiz_id}")
        return section

    def _fetch_slot_rows(self) -> list[QuizSlot]:
        self.session.expire_all()
        return list(
            self.session.scalars(
                select(QuizSlot).where(QuizSlot.quiz_id == self.quiz_id).order_by(QuizSlot.slot)
            )
        )

    def _renumber_slots(self, mapping: dict[int, int]) -> None:
        """
        Apply old -> new slot numbers without tripping the unique (quiz_id, slot) index.

        Targets are parked at their negated value first, then flipped back.
        """
        if not mapping:
            return
        for old, new in mapping.items():
            self.session.execute(
                update(QuizSlot)
                .where(QuizSlot.quiz_id == self.quiz_id, QuizSlot.slot == old)
                .values(slot=-new)
                .execution_options(synchronize_session=False)
            )
        self.session.execute(
            update(QuizSlot)
            .where(QuizSlot.quiz_id == self.quiz_id, QuizSlot.slot < 0)
            .values(slot=-QuizSlot.slot)
            .execution_options(synchronize_session=False)
        )

    def _repack_pages(self) -> list[QuizSlot]:
        rows = refresh_page_numbers(self._fetch_slot_rows())
        self.session.flush()
        return rows

    def __repr__(self) -> str:
        return (
            f"<QuizStructure(quiz={self.quiz_id}, slots={len(self._slots_in_order)}, "
            f"sections={len(self._sections)}, state={self.state.value})>"
        )


# ========================================
# Load helpers
# ========================================


def _attach_sections(slots: list[Slot], sections: list[Section]) -> None:
    """Set each section's last slot and point each slot at its section."""
    for index, section in enumerate(sections):
        if index + 1 < len(sections):
            section.last_slot = sections[index + 1].first_slot - 1
        else:
            section.last_slot = len(slots)
        for number in range(section.first_slot, section.last_slot + 1):
            if 1 <= number <= len(slots):
                slots[number - 1].section = section


def _number_questions(slots: list[Slot]) -> None:
    number = 1
    for slot in slots:
        if slot.question.length == 0:
            slot.displayed_number = INFO_LABEL
        else:
            slot.displayed_number = number
            number += 1


def _slot_from_page_row(row: QuizSlot) -> Slot:
    return Slot(
        id=row.id,
        quiz_id=row.quiz_id,
        slot=row.slot,
        page=row.page,
        question_id=row.question_id,
        max_mark=row.max_mark,
        require_previous=bool(row.require_previous),
    )
