from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable

from PySide6.QtCore import QObject, QTimer, Signal

from copilot_bridge.ai.completion_session import CompletionSession
from copilot_bridge.ai.completion_tasks import CompletionTaskManager
from copilot_bridge.ai.copilot_client import Completion, CopilotClient
from copilot_bridge.ai.host_editor import HostEditor
from copilot_bridge.lsp.types import Position
from copilot_bridge.services.text_diff import compute_text_changes, text_changes_to_content_changes
from copilot_bridge.settings_schema import NormalizedCopilotConfig, default_copilot_settings
from copilot_bridge.settings_store import JsonSettingsStore

logger = logging.getLogger(__name__)

# TextDocumentSyncKind.Incremental
_SYNC_INCREMENTAL = 2


@dataclass(slots=True)
class _PendingChange:
    text: str
    caret: Position


class InlineCompletionController(QObject):
    """Owns the live completion session for one editor and keeps the server's document in sync."""

    sessionStarted = Signal(object)  # CompletionSession
    sessionFinished = Signal(object)  # CompletionSession

    def __init__(
        self,
        *,
        client: CopilotClient,
        editor: HostEditor,
        task_manager: CompletionTaskManager,
        settings: Any = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._client = client
        self._editor = editor
        self._tasks = task_manager
        self._cfg = NormalizedCopilotConfig.from_mapping(settings if settings is not None else default_copilot_settings())

        self._session: CompletionSession | None = None
        self._pending: _PendingChange | None = None
        self._latest_text = editor.text()
        self._synced_text = editor.text()

        self._debounce = QTimer(self)
        self._debounce.setSingleShot(True)
        self._debounce.timeout.connect(self._flush_debounced)

        editor.contentChanged.connect(self._on_content_changed)
        self._listening = True

    @property
    def session(self) -> CompletionSession | None:
        return self._session

    @property
    def config(self) -> NormalizedCopilotConfig:
        return self._cfg

    def has_pending_change(self) -> bool:
        return self._pending is not None

    def update_settings(self, settings: Any) -> None:
        self._cfg = NormalizedCopilotConfig.from_mapping(settings)
        self._tasks.tab_size = self._cfg.tab_size
        self._tasks.insert_spaces = self._cfg.insert_spaces
        if self._cfg.disable_completions:
            self.reject_current()
            self._tasks.cancel_all()
            self._debounce.stop()
            self._pending = None

    def bind_settings(self, store: JsonSettingsStore) -> Callable[[], None]:
        """Apply `store` now and on every later change; returns an unbind function."""

        def _on_setting_changed(_key: str, _value: Any) -> None:
            self.update_settings(store.data)

        unsubscribers = [store.on_change(key, _on_setting_changed) for key in default_copilot_settings()]
        self.update_settings(store.data)

        def _unbind() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return _unbind

    # ----- document lifecycle -----

    def open_document(self) -> None:
        path = self._editor.file_path()
        if not path:
            return
        self._tasks.active_file_path = path
        self._tasks.language_id = self._editor.language_id()
        text = self._editor.text()
        self._client.did_open(uri=self._client.path_to_uri(path), language_id=self._editor.language_id(), text=text)
        self._latest_text = text
        self._synced_text = text

    def set_active_file(self, new_path: str | None, old_path: str | None = None) -> None:
        self.reject_current()
        if old_path:
            self._client.did_close(uri=self._client.path_to_uri(old_path))
        self._debounce.stop()
        self._pending = None
        if new_path:
            self._tasks.active_file_path = str(new_path)
            self._tasks.language_id = self._editor.language_id()
            text = self._editor.text()
            self._client.did_open(
                uri=self._client.path_to_uri(new_path),
                language_id=self._editor.language_id(),
                text=text,
            )
            self._latest_text = text
            self._synced_text = text

    def set_workspace_folder(self, new_folder: str | None, old_folder: str | None = None) -> None:
        self._tasks.workspace_folder = str(new_folder or "")
        self._client.did_change_workspace_folders(
            added=[self._folder_entry(new_folder)] if new_folder else [],
            removed=[self._folder_entry(old_folder)] if old_folder else [],
        )

    def _folder_entry(self, folder: str) -> dict[str, str]:
        clean = str(folder).rstrip("/\\")
        return {"uri": self._client.path_to_uri(folder), "name": os.path.basename(clean) or clean}

    # ----- session slot -----

    def accept_current(self) -> bool:
        session = self._session
        return session.accept() if session is not None else False

    def reject_current(self, reason: str = "superseded") -> bool:
        session = self._session
        return session.reject(reason) if session is not None else False

    def present(self, completion: Completion) -> CompletionSession:
        """Replace the live session with one for `completion`."""
        self.reject_current("newer-completion")
        session = CompletionSession(
            self._client,
            self._editor,
            completion,
            task_manager=self._tasks,
            inline=self._cfg.use_inline_completion_text_in_source,
            accept_key=self._cfg.accept_key,
            parent=self,
        )
        session.finished.connect(lambda _state, s=session: self._on_session_finished(s))
        self._session = session
        session.start()
        self.sessionStarted.emit(session)
        return session

    def _on_session_finished(self, session: CompletionSession) -> None:
        if self._session is session:
            self._session = None
        self.sessionFinished.emit(session)
        session.deleteLater()

    # ----- change tracking -----

    def _on_content_changed(self) -> None:
        if self._cfg.disable_completions:
            return
        text = self._editor.text()
        if text == self._latest_text:
            return
        self._latest_text = text
        self.reject_current("edit")

        self._pending = _PendingChange(text=text, caret=self._editor.caret_position())
        self._debounce.start(int(self._cfg.debounce_ms))

    def flush(self) -> None:
        """Run the debounced update now, if one is waiting."""
        if self._pending is None:
            return
        self._debounce.stop()
        self._flush_debounced()

    def _flush_debounced(self) -> None:
        pending = self._pending
        self._pending = None
        if pending is None:
            return
        path = self._tasks.active_file_path or self._editor.file_path()
        uri = self._client.path_to_uri(path) if path else ""
        self._client.did_change(uri=uri, text=pending.text, content_changes=self._content_changes(pending))
        self._synced_text = pending.text
        self.request_completion()

    def request_completion(self) -> int:
        """Cancel in-flight fetches and ask for a completion at the caret."""
        self._tasks.cancel_all()
        return self._tasks.start_one(self._editor.caret_position(), on_completion=self._on_completion)

    def _content_changes(self, pending: _PendingChange) -> list[dict[str, Any]] | None:
        if self._sync_kind() != _SYNC_INCREMENTAL:
            return None
        changes = compute_text_changes(self._synced_text, pending.text, pending.caret, self._cfg.eol)
        logger.debug("Sending %s incremental change(s)", len(changes))
        return text_changes_to_content_changes(changes)

    def _sync_kind(self) -> int:
        sync = self._client.lsp.server_capabilities.get("textDocumentSync")
        if isinstance(sync, dict):
            sync = sync.get("change")
        try:
            return int(sync or 0)
        except (TypeError, ValueError):
            return 0

    def _on_completion(self, completion: Completion) -> None:
        if self._cfg.disable_completions or self._pending is not None:
            # Disabled, or the buffer moved on since the request was sent.
            self._client.notify_rejected([completion.uuid])
            return
        self.present(completion)

    def shutdown(self) -> None:
        self._debounce.stop()
        self._pending = None
        self.reject_current("shutdown")
        self._tasks.cancel_all()
        if self._listening:
            self._listening = False
            self._editor.contentChanged.disconnect(self._on_content_changed)
