"""
Quiz structure editing.

This module provides:
- QuizStructure: load a quiz layout, query it, and apply one edit
- Slot, Section, QuestionInfo: the loaded layout
- PageBreak: LINK / UNLINK actions for update_page_break
- Pure paging helpers (refresh_page_numbers, repaginate_slots)
"""

from .models import PageBreak, QuestionInfo, Section, Slot, StructureState
from .paging import apply_page_break, refresh_page_numbers, repaginate_slots
from .structure import QuizStructure

__all__ = [
    "QuizStructure",
    "Slot",
    "Section",
    "QuestionInfo",
    "PageBreak",
    "StructureState",
    "apply_page_break",
    "refresh_page_numbers",
    "repaginate_slots",
]
