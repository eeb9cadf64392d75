from __future__ import annotations

from copilot_bridge.lsp.text_edits import (
    apply_text_edits,
    offset_at,
    position_after_text,
    position_at,
    slice_text_by_range,
)
from copilot_bridge.lsp.types import Position, Range, TextEdit, codepoint_index_from_utf16_units, utf16_code_units


def test_positions_count_utf16_units() -> None:
    text = "a😀b\nx"
    assert utf16_code_units("😀") == 2
    assert position_at(text, 2) == Position(0, 3)
    assert offset_at(text, Position(0, 3)) == 2
    assert offset_at(text, Position(1, 1)) == len(text)
    assert codepoint_index_from_utf16_units("😀b", 1) == 0


def test_offsets_clamp_past_line_and_document_end() -> None:
    text = "ab\ncd"
    assert offset_at(text, Position(0, 99)) == 2
    assert offset_at(text, Position(9, 0)) == len(text)
    assert position_at(text, 999) == Position(1, 2)


def test_crlf_line_breaks() -> None:
    text = "ab\r\ncd"
    assert offset_at(text, Position(1, 0), "\r\n") == 4
    assert position_at(text, 5, "\r\n") == Position(1, 1)
    assert slice_text_by_range(text, Range(Position(0, 1), Position(1, 1)), "\r\n") == "b\r\nc"


def test_position_after_text() -> None:
    assert position_after_text(Position(2, 4), "abc") == Position(2, 7)
    assert position_after_text(Position(2, 4), "abc\nde") == Position(3, 2)
    assert position_after_text(Position(0, 0), "x\r\n😀", "\r\n") == Position(1, 2)


def test_apply_edits_in_original_coordinates() -> None:
    source = "def f():\n    return 1\n"
    edits = [
        TextEdit(Range(Position(0, 4), Position(0, 5)), "g"),
        {"range": Range(Position(1, 11), Position(1, 12)).to_dict(), "newText": "42"},
    ]
    assert apply_text_edits(source, edits) == "def g():\n    return 42\n"


def test_range_from_dict_orders_endpoints() -> None:
    value = Range.from_dict({"start": {"line": 3, "character": 1}, "end": {"line": 1, "character": 0}})
    assert value == Range(Position(1, 0), Position(3, 1))
    assert Range.empty(Position(1, 1)).is_empty
