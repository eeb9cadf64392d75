"""Host editor collaborator: the surface the completion session drives, plus an in-memory buffer adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from PySide6.QtCore import QObject, Signal

from copilot_bridge.lsp.text_edits import offset_at, position_at
from copilot_bridge.lsp.types import Position, Range, utf16_code_units

if TYPE_CHECKING:
    from copilot_bridge.ai.copilot_client import Completion


class EditorApplyError(RuntimeError):
    """Raised by an editor adapter when an edit cannot be applied to the live buffer."""


@dataclass(slots=True)
class EditorKeyPress:
    key: str
    handled: bool = False


class SuggestionArtifact:
    """Whatever the editor rendered for a suggestion (ghost text, a panel, ...)."""

    def find(self) -> Range | None:
        raise NotImplementedError

    def remove(self) -> None:
        raise NotImplementedError


class HostEditor(QObject):
    """Editor surface used by completion sessions.

    `aboutToChange` fires before a user edit is applied, so listeners can still
    tear down a displayed suggestion against the pre-edit buffer.
    """

    aboutToChange = Signal(str)  # origin
    contentChanged = Signal()
    cursorMoved = Signal()
    modeToggling = Signal(bool)  # entering source mode
    keyPressed = Signal(object)  # EditorKeyPress

    def text(self) -> str:
        raise NotImplementedError

    def eol(self) -> str:
        return "\n"

    def caret_position(self) -> Position:
        raise NotImplementedError

    def has_focus(self) -> bool:
        return True

    def file_path(self) -> str:
        return ""

    def language_id(self) -> str:
        return ""

    def insert_text(self, text: str) -> None:
        raise NotImplementedError

    def replace_range(self, text_range: Range, text: str) -> None:
        raise NotImplementedError

    def set_cursor(self, position: Position) -> None:
        raise NotImplementedError

    def snapshot_history(self) -> Any:
        raise NotImplementedError

    def restore_history(self, snapshot: Any) -> None:
        raise NotImplementedError

    def show_suggestion(self, completion: "Completion", *, inline: bool) -> SuggestionArtifact:
        raise NotImplementedError


class _InlineTextArtifact(SuggestionArtifact):
    def __init__(self, editor: "TextBufferEditor", offset: int, text: str) -> None:
        self._editor = editor
        self._offset = int(offset)
        self._text = str(text or "")
        self._removed = False

    def find(self) -> Range | None:
        offsets = self._offsets()
        if offsets is None:
            return None
        source, eol = self._editor.text(), self._editor.eol()
        return Range(position_at(source, offsets[0], eol), position_at(source, offsets[1], eol))

    def remove(self) -> None:
        offsets = self._offsets()
        self._removed = True
        if offsets is not None:
            self._editor._splice(offsets[0], offsets[1], "", notify=False, move_caret=False)

    def _offsets(self) -> tuple[int, int] | None:
        if self._removed:
            return None
        end = self._offset + len(self._text)
        if self._editor.text()[self._offset:end] != self._text:
            return None
        return self._offset, end


class _PanelArtifact(SuggestionArtifact):
    def __init__(self, editor: "TextBufferEditor", completion: "Completion") -> None:
        self._editor = editor
        self._range = completion.range
        self.text = completion.display_text or completion.text

    def find(self) -> Range | None:
        if self._editor.panel_text != self.text:
            return None
        return self._range

    def remove(self) -> None:
        if self._editor.panel_text == self.text:
            self._editor.panel_text = ""


class TextBufferEditor(HostEditor):
    """Plain-text `HostEditor` with a caret, a linear undo stack and ghost-text rendering."""

    def __init__(
        self,
        text: str = "",
        *,
        file_path: str = "",
        language_id: str = "",
        eol: str = "\n",
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._text = str(text or "")
        self._file_path = str(file_path or "")
        self._language_id = str(language_id or "")
        self._eol = "\r\n" if eol == "\r\n" else "\n"
        self._caret = len(self._text)
        self._focused = True
        self._undo: list[tuple[str, int]] = []
        self.panel_text = ""

    # ----- HostEditor -----

    def text(self) -> str:
        return self._text

    def eol(self) -> str:
        return self._eol

    def caret_position(self) -> Position:
        return position_at(self._text, self._caret, self._eol)

    def has_focus(self) -> bool:
        return self._focused

    def set_focus(self, focused: bool) -> None:
        self._focused = bool(focused)

    def file_path(self) -> str:
        return self._file_path

    def set_file_path(self, path: str) -> None:
        self._file_path = str(path or "")

    def language_id(self) -> str:
        return self._language_id

    def insert_text(self, text: str, *, origin: str = "api") -> None:
        self.aboutToChange.emit(origin)
        self._splice(self._caret, self._caret, str(text or ""))

    def replace_range(self, text_range: Range, text: str, *, origin: str = "api") -> None:
        self.aboutToChange.emit(origin)
        start, end = self._checked_offsets(text_range)
        self._splice(start, end, str(text or ""))

    def set_cursor(self, position: Position) -> None:
        self._caret = offset_at(self._text, position, self._eol)
        self.cursorMoved.emit()

    def snapshot_history(self) -> list[tuple[str, int]]:
        return list(self._undo)

    def restore_history(self, snapshot: Any) -> None:
        self._undo = list(snapshot or [])

    def show_suggestion(self, completion: "Completion", *, inline: bool) -> SuggestionArtifact:
        if not inline:
            artifact = _PanelArtifact(self, completion)
            self.panel_text = artifact.text
            return artifact
        ghost = completion.display_text or completion.text
        offset = offset_at(self._text, completion.position, self._eol)
        self._splice(offset, offset, ghost, notify=False, move_caret=False)
        return _InlineTextArtifact(self, offset, ghost)

    # ----- user actions -----

    def type_text(self, text: str) -> None:
        self.insert_text(text, origin="input")

    def move_cursor(self, position: Position) -> None:
        self.set_cursor(position)

    def toggle_source_mode(self, entering: bool) -> None:
        self.modeToggling.emit(bool(entering))

    def press_key(self, key: str) -> EditorKeyPress:
        event = EditorKeyPress(key=str(key or ""))
        self.keyPressed.emit(event)
        if event.handled:
            return event
        if event.key == "Tab":
            self.type_text("\t")
        elif len(event.key) == 1:
            self.type_text(event.key)
        return event

    def undo(self) -> bool:
        if not self._undo:
            return False
        self.aboutToChange.emit("undo")
        text, caret = self._undo.pop()
        self._text = text
        self._caret = min(len(text), caret)
        self.contentChanged.emit()
        return True

    # ----- internals -----

    def _checked_offsets(self, text_range: Range) -> tuple[int, int]:
        lines = self._text.split(self._eol)
        for pos in (text_range.start, text_range.end):
            if pos.line >= len(lines) or pos.character > utf16_code_units(lines[pos.line]):
                raise EditorApplyError(f"Position {pos.line}:{pos.character} is outside the buffer")
        start = offset_at(self._text, text_range.start, self._eol)
        end = offset_at(self._text, text_range.end, self._eol)
        return start, end

    def _splice(self, start: int, end: int, text: str, *, notify: bool = True, move_caret: bool = True) -> None:
        self._undo.append((self._text, self._caret))
        self._text = f"{self._text[:start]}{text}{self._text[end:]}"
        if move_caret:
            self._caret = start + len(text)
        elif self._caret > start:
            self._caret = max(start, self._caret + len(text) - (end - start))
        if notify:
            self.contentChanged.emit()
