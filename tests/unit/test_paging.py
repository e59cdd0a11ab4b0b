"""
Unit tests for the pure page-numbering helpers.
"""

from dataclasses import dataclass

import pytest

from quizkit.exceptions import NotFoundError, PreconditionError
from quizkit.structure import PageBreak, QuizStructure, apply_page_break, refresh_page_numbers, repaginate_slots


@dataclass
class FakeSlot:
    slot: int
    page: int


def make_slots(*pages: int) -> list[FakeSlot]:
    return [FakeSlot(slot=number, page=page) for number, page in enumerate(pages, start=1)]


def pages(slots) -> list[int]:
    return [slot.page for slot in slots]


class TestRefreshPageNumbers:
    def test_gaps_are_closed(self):
        assert pages(refresh_page_numbers(make_slots(1, 3, 3, 7))) == [1, 2, 2, 3]

    def test_already_dense_is_unchanged(self):
        assert pages(refresh_page_numbers(make_slots(1, 1, 2, 3))) == [1, 1, 2, 3]

    def test_empty(self):
        assert refresh_page_numbers([]) == []

    def test_static_method_on_structure(self):
        assert pages(QuizStructure.refresh_page_numbers(make_slots(2, 2, 5))) == [1, 1, 2]


class TestApplyPageBreak:
    def test_link_joins_following_page(self):
        assert pages(apply_page_break(make_slots(1, 2, 3), 1, PageBreak.LINK)) == [1, 1, 2]

    def test_unlink_splits_page(self):
        assert pages(apply_page_break(make_slots(1, 1, 1), 2, PageBreak.UNLINK)) == [1, 1, 2]

    def test_link_without_break_is_noop(self):
        assert pages(apply_page_break(make_slots(1, 1, 2), 1, PageBreak.LINK)) == [1, 1, 2]

    def test_unlink_at_existing_break_is_noop(self):
        assert pages(apply_page_break(make_slots(1, 2), 1, PageBreak.UNLINK)) == [1, 2]

    def test_unknown_slot(self):
        with pytest.raises(NotFoundError):
            apply_page_break(make_slots(1, 2), 5, PageBreak.LINK)

    def test_last_slot_has_no_following_break(self):
        with pytest.raises(PreconditionError):
            apply_page_break(make_slots(1, 2), 2, PageBreak.UNLINK)


class TestRepaginate:
    @pytest.mark.parametrize(
        "per_page, expected",
        [
            (1, [1, 2, 3, 4, 5]),
            (2, [1, 1, 2, 2, 3]),
            (3, [1, 1, 1, 2, 2]),
            (0, [1, 1, 1, 1, 1]),
        ],
    )
    def test_slots_per_page(self, per_page, expected):
        assert pages(repaginate_slots(make_slots(1, 1, 1, 1, 1), per_page)) == expected

    def test_section_starts_begin_new_page(self):
        slots = repaginate_slots(make_slots(1, 1, 1, 1, 1), 2, section_starts=[1, 2, 5])
        assert pages(slots) == [1, 2, 2, 3, 4]
