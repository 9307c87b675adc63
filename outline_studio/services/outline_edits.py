"""Edits applied to the chapter outline.

Every function returns a new list and leaves its input untouched. Indices are
validated eagerly: an out-of-range index is a caller bug and raises
``IndexError``.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Sequence

from ..models import OutlineEntry

NEW_CHAPTER_TITLE = "新章节 {number}"
NEW_CHAPTER_BEAT = "新的节拍"
EDITABLE_FIELDS = ("title", "beat")


def append_chapter(outline: Sequence[OutlineEntry]) -> List[OutlineEntry]:
    placeholder = OutlineEntry(
        title=NEW_CHAPTER_TITLE.format(number=len(outline) + 1),
        beat=NEW_CHAPTER_BEAT,
    )
    return [*outline, placeholder]


def extend_outline(outline: Sequence[OutlineEntry], entries: Iterable[OutlineEntry]) -> List[OutlineEntry]:
    return [*outline, *entries]


def delete_chapter(outline: Sequence[OutlineEntry], index: int) -> List[OutlineEntry]:
    _check_index(outline, index)
    return [entry for position, entry in enumerate(outline) if position != index]


def update_chapter_field(
    outline: Sequence[OutlineEntry],
    index: int,
    field_name: str,
    value: str,
) -> List[OutlineEntry]:
    if field_name not in EDITABLE_FIELDS:
        raise ValueError(f"Unknown outline field: {field_name!r}")
    _check_index(outline, index)
    updated = replace(outline[index], **{field_name: value})
    return replace_chapter(outline, index, updated)


def replace_chapter(outline: Sequence[OutlineEntry], index: int, entry: OutlineEntry) -> List[OutlineEntry]:
    _check_index(outline, index)
    result = list(outline)
    result[index] = entry
    return result


def _check_index(outline: Sequence[OutlineEntry], index: int) -> None:
    if not 0 <= index < len(outline):
        raise IndexError(f"Chapter index {index} is out of range for an outline of {len(outline)} entries")
