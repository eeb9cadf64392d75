"""Lifecycle of one displayed completion: proposed, then accepted or rejected exactly once."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from PySide6.QtCore import QObject, Signal

from copilot_bridge.ai.completion_tasks import CompletionTaskManager
from copilot_bridge.ai.copilot_client import Completion, CopilotClient
from copilot_bridge.ai.host_editor import EditorApplyError, EditorKeyPress, HostEditor, SuggestionArtifact
from copilot_bridge.lsp.text_edits import position_after_text, slice_text_by_range

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class CompletionSession(QObject):
    finished = Signal(object)  # SessionState

    def __init__(
        self,
        client: CopilotClient,
        editor: HostEditor,
        completion: Completion,
        *,
        task_manager: CompletionTaskManager | None = None,
        inline: bool = True,
        accept_key: str = "Tab",
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._client = client
        self._editor = editor
        self._completion = completion
        self._task_manager = task_manager
        self._inline = bool(inline)
        self._accept_key = str(accept_key or "Tab")
        self._state = SessionState.PROPOSED
        self._artifact: SuggestionArtifact | None = None
        self._history: Any = None
        self._listening = False
        self._closing = False
        self.reject_reason = ""

    @property
    def completion(self) -> Completion:
        return self._completion

    @property
    def uuid(self) -> str:
        return self._completion.uuid

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state is not SessionState.PROPOSED

    @property
    def artifact(self) -> SuggestionArtifact | None:
        return self._artifact

    def start(self) -> None:
        if self._artifact is not None or self.is_finished:
            raise RuntimeError(f"Completion session {self.uuid} was already started")
        self._history = self._editor.snapshot_history()
        self._artifact = self._editor.show_suggestion(self._completion, inline=self._inline)
        self._client.notify_shown(self.uuid)

        self._editor.aboutToChange.connect(self._on_about_to_change)
        self._editor.cursorMoved.connect(self._on_cursor_moved)
        self._editor.modeToggling.connect(self._on_mode_toggling)
        self._editor.keyPressed.connect(self._on_key_pressed)
        self._listening = True

    def accept(self) -> bool:
        if self.is_finished or self._closing:
            return False
        # The accept edit fires editor signals of its own.
        self._closing = True
        self._clear_listeners()

        if self._artifact is None or self._artifact.find() is None:
            logger.warning("Suggestion %s can no longer be located; rejecting it", self.uuid)
            self._finish_rejected("apply-failure")
            return False

        self._artifact.remove()
        self._editor.restore_history(self._history)
        try:
            self._apply_completion()
        except EditorApplyError as exc:
            logger.warning("Could not apply completion %s: %s", self.uuid, exc)
            self._finish_rejected("apply-failure")
            return False

        self._state = SessionState.ACCEPTED
        self._client.notify_accepted(self.uuid)
        logger.debug("Accepted completion %s", self.uuid)
        self.finished.emit(self._state)
        return True

    def reject(self, reason: str = "explicit") -> bool:
        if self.is_finished or self._closing:
            return False
        self._closing = True
        self._clear_listeners()
        if self._artifact is not None and self._artifact.find() is not None:
            self._artifact.remove()
            self._editor.restore_history(self._history)
        self._finish_rejected(reason)
        return True

    def _apply_completion(self) -> None:
        completion = self._completion
        text_range = completion.range
        eol = self._editor.eol()
        if self._editor.caret_position() == text_range.end:
            existing = slice_text_by_range(self._editor.text(), text_range, eol)
            if completion.text.startswith(existing):
                self._editor.insert_text(completion.text[len(existing):])
                return
        self._editor.replace_range(text_range, completion.text)
        self._editor.set_cursor(position_after_text(text_range.start, completion.text, eol))

    def _finish_rejected(self, reason: str) -> None:
        self._state = SessionState.REJECTED
        self.reject_reason = str(reason or "")
        self._client.notify_rejected([self.uuid])
        logger.debug("Rejected completion %s (%s)", self.uuid, self.reject_reason)
        self.finished.emit(self._state)

    def _clear_listeners(self) -> None:
        if not self._listening:
            return
        self._listening = False
        self._editor.aboutToChange.disconnect(self._on_about_to_change)
        self._editor.cursorMoved.disconnect(self._on_cursor_moved)
        self._editor.modeToggling.disconnect(self._on_mode_toggling)
        self._editor.keyPressed.disconnect(self._on_key_pressed)

    def _on_key_pressed(self, event: object) -> None:
        if not isinstance(event, EditorKeyPress) or event.handled:
            return
        if event.key != self._accept_key or not self._editor.has_focus():
            return
        event.handled = True
        self.accept()

    def _on_about_to_change(self, origin: str) -> None:
        if origin in ("undo", "redo") and self._task_manager is not None:
            self._task_manager.cancel_all()
        self.reject("edit")

    def _on_cursor_moved(self) -> None:
        if self._task_manager is not None:
            self._task_manager.cancel_all()
        self.reject("cursor-move")

    def _on_mode_toggling(self, entering: bool) -> None:
        logger.debug("Rejecting completion before toggling source mode %s", "on" if entering else "off")
        self.reject("mode-toggle")
