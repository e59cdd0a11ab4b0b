"""
In-memory view of a quiz layout.

Slot and Section are plain dataclasses loaded from quiz_slots and
quiz_sections; Section.last_slot and Slot.section are derived at load
time from the ordered section starts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

INFO_LABEL = "i"  # Displayed instead of a number for zero-length items


class StructureState(Enum):
    """A structure is reliable until something is written through it."""

    LOADED = "loaded"
    STALE = "stale"


class PageBreak(IntEnum):
    LINK = 1  # Remove the break: following slots join this page
    UNLINK = 2  # Insert a break after this slot


@dataclass
class QuestionInfo:
    """The slice of question metadata the layout needs."""

    id: int
    qtype: str
    name: str = ""
    length: int = 1
    is_missing: bool = False

    @property
    def is_real(self) -> bool:
        return self.length != 0


@dataclass
class Section:
    id: int
    quiz_id: int
    heading: str
    first_slot: int
    shuffle_questions: bool = False
    last_slot: int = 0

    @property
    def slot_count(self) -> int:
        return self.last_slot - self.first_slot + 1


@dataclass
class Slot:
    id: int
    quiz_id: int
    slot: int
    page: int
    question_id: int
    max_mark: float
    require_previous: bool = False
    question: QuestionInfo | None = None
    section: Section | None = field(default=None, repr=False)
    displayed_number: int | str | None = None
    can_finish: bool | None = field(default=None, repr=False)
