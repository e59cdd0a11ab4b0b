"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.

Quiz layouts are written the same way everywhere:

    layout = [
        "Heading 1",
        ("TF1", 1, "truefalse"),
        "Heading 2*",
        ("TF2", 2, "truefalse"),
    ]

A string starts a section on the page of the next question (a trailing *
means the section is shuffled); a tuple is (question name, page, qtype).
"""
import sys
from pathlib import Path

import pytest
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from quizkit.db import build_engine, create_quiz, create_session_factory, init_db  # noqa: E402
from quizkit.db.models import (  # noqa: E402
    AttemptState,
    Question,
    QuestionAttempt,
    QuizAttempt,
    QuizSection,
    QuizSlot,
)
from quizkit.grading import update_sumgrades  # noqa: E402
from quizkit.structure import QuizStructure  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


# ========================================
# Database
# ========================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = create_session_factory(engine)()
    yield session
    session.close()


# ========================================
# Quiz builders
# ========================================

TF_ANSWER = {"correct": True}


def parse_section_name(heading: str) -> tuple[str, bool]:
    if heading.endswith("*"):
        return heading[:-1], True
    return heading, False


def add_question(session, name: str, qtype: str = "truefalse", **kwargs) -> Question:
    kwargs.setdefault("length", 0 if qtype == "description" else 1)
    kwargs.setdefault("answer", TF_ANSWER if qtype == "truefalse" else {})
    question = Question(qtype=qtype, name=name, **kwargs)
    session.add(question)
    session.flush()
    return question


def build_quiz(session, layout, **settings):
    """Create a quiz from a layout list (see module docstring)."""
    settings.setdefault("questions_per_page", 0)
    settings.setdefault("grade", 100.0)
    settings.setdefault("preferred_behaviour", "immediatefeedback")
    quiz = create_quiz(session, "Test quiz", **settings)

    headings: dict[int, str] = {}
    slot = 0
    last_page = 0
    for item in layout:
        if isinstance(item, str):
            if last_page + 1 in headings:
                raise ValueError("Sections cannot be empty")
            headings[last_page + 1] = item
            continue

        name, page, qtype = item
        if page < 1 or not (page == last_page + 1 or (last_page + 1 not in headings and page == last_page)):
            raise ValueError(f"Page numbers wrong at {name}")
        question = add_question(session, name, qtype)
        slot += 1
        session.add(
            QuizSlot(quiz_id=quiz.id, slot=slot, page=page, question_id=question.id, max_mark=1.0)
        )
        session.flush()
        last_page = page

    first_section = session.query(QuizSection).filter_by(quiz_id=quiz.id, first_slot=1).one()
    for page, text in headings.items():
        heading, shuffle = parse_section_name(text)
        if page == 1:
            first_section.heading = heading
            first_section.shuffle_questions = shuffle
            continue
        first_slot = (
            session.query(QuizSlot.slot)
            .filter_by(quiz_id=quiz.id, page=page)
            .order_by(QuizSlot.slot)
            .first()[0]
        )
        session.add(
            QuizSection(quiz_id=quiz.id, first_slot=first_slot, heading=heading, shuffle_questions=shuffle)
        )
    session.flush()
    update_sumgrades(session, quiz)
    return quiz


def layout_of(structure: QuizStructure) -> list:
    """Describe a loaded structure in layout notation (default untitled first section omitted)."""
    starts = {section.first_slot: section for section in structure.get_sections()}
    layout = []
    for slot in structure.get_slots():
        section = starts.get(slot.slot)
        if section is not None and not (slot.slot == 1 and section.heading == ""):
            layout.append(section.heading + ("*" if section.shuffle_questions else ""))
        layout.append((slot.question.name, slot.page, slot.question.qtype))
    return layout


def assert_layout(session, quiz, expected) -> QuizStructure:
    structure = QuizStructure.load(session, quiz.id)
    assert layout_of(structure) == expected
    slots = structure.get_slots()
    assert [slot.slot for slot in slots] == list(range(1, len(slots) + 1))
    return structure


def add_attempt(
    session,
    quiz,
    user_id: int,
    attempt: int = 1,
    sum_grades: float | None = None,
    state: str = AttemptState.FINISHED,
    preview: bool = False,
    answers: dict[int, tuple] | None = None,
) -> QuizAttempt:
    """
    Record an attempt.

    answers maps slot number -> (fraction, response); question ids and max
    marks are copied from the quiz slots.
    """
    row = QuizAttempt(
        quiz_id=quiz.id,
        user_id=user_id,
        attempt=attempt,
        state=state,
        preview=preview,
        sum_grades=sum_grades,
    )
    session.add(row)
    session.flush()
    slots = {slot.slot: slot for slot in session.query(QuizSlot).filter_by(quiz_id=quiz.id)}
    for slot_number, (fraction, response) in (answers or {}).items():
        slot = slots[slot_number]
        session.add(
            QuestionAttempt(
                attempt_id=row.id,
                slot=slot_number,
                question_id=slot.question_id,
                max_mark=slot.max_mark,
                fraction=fraction,
                response=response,
            )
        )
    session.flush()
    return row


@pytest.fixture
def make_quiz(session):
    """Build a quiz from a layout list."""
    return lambda layout, **settings: build_quiz(session, layout, **settings)


@pytest.fixture
def make_question(session):
    return lambda name, qtype="truefalse", **kwargs: add_question(session, name, qtype, **kwargs)


@pytest.fixture
def make_attempt(session):
    return lambda quiz, user_id, **kwargs: add_attempt(session, quiz, user_id, **kwargs)


@pytest.fixture
def check_layout(session):
    """Assert a quiz matches a layout list; returns the freshly loaded structure."""
    return lambda quiz, expected: assert_layout(session, quiz, expected)
