"""Turn two whole-buffer snapshots into the range edits that transform one into the other."""

from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any

from copilot_bridge.lsp.text_edits import offset_at, position_at
from copilot_bridge.lsp.types import Position, Range


@dataclass(frozen=True)
class TextChange:
    range: Range
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"range": self.range.to_dict(), "text": self.text}


# (old_start, old_end, new_start, new_end), codepoint offsets
_Span = tuple[int, int, int, int]


def compute_text_changes(
    old_text: str,
    new_text: str,
    caret_hint: int | Position | None = None,
    eol: str = "\n",
) -> list[TextChange]:
    """Edits in `old_text` coordinates, ascending and non-overlapping.

    `caret_hint` is the caret in `new_text` (an offset or a position); when the
    change is a single insertion ending there or a single deletion starting
    there, exactly that edit is returned.
    """
    old = str(old_text or "")
    new = str(new_text or "")
    if old == new:
        return []

    caret = caret_hint
    if isinstance(caret, Position):
        caret = offset_at(new, caret, eol)
    spans = None
    if caret is not None:
        span = _caret_span(old, new, int(caret))
        spans = [span] if span is not None else None
    if spans is None:
        spans = _diff_spans(old, new)
    if eol == "\r\n":
        spans = _merge_spans([_snap_crlf(old, new, span) for span in spans])

    return [
        TextChange(
            range=Range(position_at(old, old_start, eol), position_at(old, old_end, eol)),
            text=new[new_start:new_end],
        )
        for old_start, old_end, new_start, new_end in spans
    ]


def text_changes_to_content_changes(changes: list[TextChange]) -> list[dict[str, Any]]:
    """`textDocument/didChange` entries; the server applies them in order, so the last edit goes first."""
    return [change.to_dict() for change in reversed(changes)]


def _caret_span(old: str, new: str, caret: int) -> _Span | None:
    delta = len(new) - len(old)
    if caret < 0 or caret > len(new):
        return None
    if delta > 0:
        start = caret - delta
        if start >= 0 and new[:start] == old[:start] and new[caret:] == old[start:]:
            return (start, start, start, caret)
    elif delta < 0:
        end = caret - delta
        if end <= len(old) and old[:caret] == new[:caret] and old[end:] == new[caret:]:
            return (caret, end, caret, caret)
    return None


def _diff_spans(old: str, new: str) -> list[_Span]:
    prefix = 0
    limit = min(len(old), len(new))
    while prefix < limit and old[prefix] == new[prefix]:
        prefix += 1
    suffix = 0
    while suffix < limit - prefix and old[len(old) - 1 - suffix] == new[len(new) - 1 - suffix]:
        suffix += 1

    old_mid = old[prefix : len(old) - suffix]
    new_mid = new[prefix : len(new) - suffix]
    if not old_mid or not new_mid:
        return [(prefix, prefix + len(old_mid), prefix, prefix + len(new_mid))]

    spans: list[_Span] = []
    current: list[int] | None = None
    matcher = SequenceMatcher(None, old_mid, new_mid, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            if current is not None:
                spans.append((current[0], current[1], current[2], current[3]))
                current = None
            continue
        # Adjacent delete/insert/replace runs collapse into one replacement.
        if current is None:
            current = [prefix + i1, prefix + i2, prefix + j1, prefix + j2]
        else:
            current[1] = prefix + i2
            current[3] = prefix + j2
    if current is not None:
        spans.append((current[0], current[1], current[2], current[3]))
    return spans


def _splits_crlf(text: str, index: int) -> bool:
    return 0 < index < len(text) and text[index - 1] == "\r" and text[index] == "\n"


def _snap_crlf(old: str, new: str, span: _Span) -> _Span:
    old_start, old_end, new_start, new_end = span
    while _splits_crlf(old, old_start) or _splits_crlf(new, new_start):
        old_start -= 1
        new_start -= 1
    while _splits_crlf(old, old_end) or _splits_crlf(new, new_end):
        old_end += 1
        new_end += 1
    return (old_start, old_end, new_start, new_end)


def _merge_spans(spans: list[_Span]) -> list[_Span]:
    merged: list[_Span] = []
    for span in spans:
        if merged and span[0] <= merged[-1][1]:
            last = merged[-1]
            merged[-1] = (last[0], max(last[1], span[1]), last[2], max(last[3], span[3]))
        else:
            merged.append(span)
    return merged
