"""Small LSP dataclasses/helpers for positions and edits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, order=True)
class Position:
    line: int
    character: int

    def to_dict(self) -> dict[str, int]:
        return {"line": int(self.line), "character": int(self.character)}

    @classmethod
    def from_dict(cls, value: Any) -> "Position":
        data = value if isinstance(value, dict) else {}
        return cls(
            line=max(0, int(data.get("line", 0) or 0)),
            character=max(0, int(data.get("character", 0) or 0)),
        )


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}

    @classmethod
    def from_dict(cls, value: Any) -> "Range":
        data = value if isinstance(value, dict) else {}
        start = Position.from_dict(data.get("start"))
        end = Position.from_dict(data.get("end"))
        if end < start:
            start, end = end, start
        return cls(start=start, end=end)

    @classmethod
    def empty(cls, position: Position) -> "Range":
        return cls(start=position, end=position)


@dataclass(frozen=True)
class TextEdit:
    range: Range
    new_text: str

    def to_dict(self) -> dict[str, Any]:
        return {"range": self.range.to_dict(), "text": self.new_text}


def utf16_code_units(text: str) -> int:
    if not text:
        return 0
    return len(text.encode("utf-16-le")) // 2


def codepoint_index_from_utf16_units(text: str, utf16_units: int) -> int:
    if not text:
        return 0
    remaining = max(0, int(utf16_units))
    idx = 0
    while idx < len(text):
        ch = text[idx]
        units = 1 if ord(ch) <= 0xFFFF else 2
        if remaining < units:
            break
        remaining -= units
        idx += 1
    return idx
