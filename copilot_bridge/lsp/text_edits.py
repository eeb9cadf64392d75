"""Utilities for mapping LSP positions onto buffer text and applying text edits."""

from __future__ import annotations

from typing import Any, Iterable

from .types import Position, Range, TextEdit, codepoint_index_from_utf16_units, utf16_code_units


def offset_at(text: str, position: Position, eol: str = "\n") -> int:
    """Codepoint offset of `position` (UTF-16 character units) inside `text`."""
    source = str(text or "")
    if not source:
        return 0
    lines = source.split(eol)
    line_index = max(0, int(position.line))
    if line_index >= len(lines):
        return len(source)

    start_offset = sum(len(part) + len(eol) for part in lines[:line_index])
    line_text = lines[line_index]
    char_index = codepoint_index_from_utf16_units(line_text, position.character)
    return start_offset + min(len(line_text), char_index)


def position_at(text: str, offset: int, eol: str = "\n") -> Position:
    source = str(text or "")
    idx = max(0, min(len(source), int(offset)))
    prefix = source[:idx]
    line = prefix.count(eol)
    line_start = prefix.rfind(eol)
    tail = prefix if line_start < 0 else prefix[line_start + len(eol):]
    return Position(line=line, character=utf16_code_units(tail))


def position_after_text(start: Position, inserted: str, eol: str = "\n") -> Position:
    """Position reached after inserting `inserted` at `start`."""
    parts = str(inserted or "").split(eol)
    if len(parts) == 1:
        return Position(line=start.line, character=start.character + utf16_code_units(parts[0]))
    return Position(line=start.line + len(parts) - 1, character=utf16_code_units(parts[-1]))


def slice_text_by_range(text: str, text_range: Range, eol: str = "\n") -> str:
    start = offset_at(text, text_range.start, eol)
    end = offset_at(text, text_range.end, eol)
    if end < start:
        start, end = end, start
    return str(text or "")[start:end]


def apply_text_edits(source_text: str, edits: Iterable[Any], eol: str = "\n") -> str:
    """Apply non-overlapping edits expressed in the coordinates of `source_text`."""
    text = str(source_text or "")
    normalized = _normalize_text_edits(edits)
    if not normalized:
        return text

    offsets: list[tuple[int, int, str]] = []
    for item in normalized:
        start = offset_at(text, item.range.start, eol)
        end = offset_at(text, item.range.end, eol)
        if end < start:
            start, end = end, start
        offsets.append((start, end, item.new_text))

    updated = text
    for start, end, replacement in sorted(offsets, key=lambda row: (row[0], row[1]), reverse=True):
        updated = f"{updated[:start]}{replacement}{updated[end:]}"
    return updated


def _normalize_text_edits(edits_obj: Iterable[Any] | None) -> list[TextEdit]:
    out: list[TextEdit] = []
    for item in list(edits_obj or []):
        if isinstance(item, TextEdit):
            out.append(item)
            continue
        text_range = getattr(item, "range", None)
        if isinstance(text_range, Range):
            out.append(TextEdit(range=text_range, new_text=str(getattr(item, "text", "") or "")))
            continue
        if not isinstance(item, dict):
            continue
        range_obj = item.get("range")
        if not isinstance(range_obj, dict):
            continue
        new_text = item.get("text", item.get("newText"))
        out.append(TextEdit(range=Range.from_dict(range_obj), new_text=str(new_text or "")))
    return out
