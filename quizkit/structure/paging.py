"""
Pure page-numbering helpers.

All functions take slots in slot order and return them with updated page
numbers; persisting the result is the caller's job.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol, TypeVar

from quizkit.exceptions import NotFoundError, PreconditionError
from quizkit.structure.models import PageBreak


class HasPage(Protocol):
    slot: int
    page: int


S = TypeVar("S", bound=HasPage)


def refresh_page_numbers(slots: Iterable[S]) -> list[S]:
    """
    Compress page numbers to a dense 1..M run, keeping slot grouping.

    Slots must be in slot order. A new page starts wherever the stored
    page number changes.
    """
    ordered = list(slots)
    new_page = 0
    old_page = None
    for slot in ordered:
        if slot.page != old_page:
            old_page = slot.page
            new_page += 1
        slot.page = new_page
    return ordered


def apply_page_break(slots: Sequence[S], slot_number: int, action: PageBreak) -> list[S]:
    """
    Add or remove the page boundary immediately after slot_number.

    LINK pulls every later slot back one page when a boundary exists;
    UNLINK pushes every later slot forward one page when none exists.
    Page numbers are then re-packed.
    """
    by_number = {slot.slot: slot for slot in slots}
    if slot_number not in by_number:
        raise NotFoundError(f"Slot {slot_number} does not exist")
    if slot_number + 1 not in by_number:
        raise PreconditionError("There is no page break after the last slot")

    current = by_number[slot_number]
    following = by_number[slot_number + 1]
    if action == PageBreak.LINK and following.page > current.page:
        shift = current.page - following.page
    elif action == PageBreak.UNLINK and following.page == current.page:
        shift = 1
    else:
        shift = 0

    if shift:
        for slot in slots:
            if slot.slot > slot_number:
                slot.page += shift
    return refresh_page_numbers(sorted(slots, key=lambda s: s.slot))


def repaginate_slots(
    slots: Sequence[S],
    slots_per_page: int,
    section_starts: Iterable[int] = (),
) -> list[S]:
    """
    Lay slots out with at most slots_per_page on each page (0 = unlimited).

    Every slot listed in section_starts (other than slot 1) begins a new page.
    """
    starts = {start for start in section_starts if start != 1}
    current_page = 1
    on_this_page = 0
    ordered = sorted(slots, key=lambda s: s.slot)
    for slot in ordered:
        if slot.slot in starts or (on_this_page and on_this_page == slots_per_page):
            current_page += 1
            on_this_page = 0
        slot.page = current_page
        on_this_page += 1
    return ordered
