from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable

from copilot_bridge.ai.copilot_client import Completion, CompletionOptions, CompletionResult, CopilotClient
from copilot_bridge.lsp.lsp_client import ResponseHandle
from copilot_bridge.lsp.types import Position

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[Completion], None]


@dataclass(slots=True)
class _TaskState:
    handle: ResponseHandle | None = None
    cancelled: bool = False


class CompletionTaskManager:
    """Tracks in-flight getCompletions requests and rejects candidates nobody will show."""

    def __init__(
        self,
        client: CopilotClient,
        *,
        workspace_folder: str = "",
        active_file_path: str = "",
        tab_size: int = 4,
        insert_spaces: bool = True,
    ) -> None:
        self._client = client
        self.workspace_folder = str(workspace_folder or "")
        self.active_file_path = str(active_file_path or "")
        self.language_id = ""
        self.tab_size = int(tab_size)
        self.insert_spaces = bool(insert_spaces)
        self._latest_task_id = 0
        self._tasks: dict[int, _TaskState] = {}

    @property
    def is_all_cancelled(self) -> bool:
        return all(state.cancelled for state in self._tasks.values())

    @property
    def task_ids(self) -> list[int]:
        return list(self._tasks)

    def relative_path(self) -> str:
        path = self.active_file_path
        if not self.workspace_folder or not path:
            return path
        try:
            return os.path.relpath(path, self.workspace_folder)
        except ValueError:
            # Different drives on Windows.
            return path

    def start_one(self, position: Position, on_completion: CompletionCallback | None = None) -> int:
        self._latest_task_id += 1
        task_id = self._latest_task_id
        state = _TaskState()
        self._tasks[task_id] = state

        self._client.report_request_activity(True)
        options = CompletionOptions(
            position=position,
            tab_size=self.tab_size,
            insert_spaces=self.insert_spaces,
            path=self.active_file_path,
            relative_path=self.relative_path(),
            language_id=self.language_id,
        )
        state.handle = self._client.get_completions(
            options,
            on_result=lambda result: self._on_result(task_id, state, result, on_completion),
            on_error=lambda error: self._on_error(task_id, error),
        )
        return task_id

    def cancel_one(self, task_id: int) -> None:
        state = self._tasks.get(int(task_id))
        if state is None:
            return
        state.cancelled = True
        if self.is_all_cancelled:
            self._client.report_request_activity(False)

    def cancel_all(self) -> None:
        for state in self._tasks.values():
            state.cancelled = True
        self._client.report_request_activity(False)

    def _on_result(
        self,
        task_id: int,
        state: _TaskState,
        result: CompletionResult,
        on_completion: CompletionCallback | None,
    ) -> None:
        self._tasks.pop(task_id, None)
        if self.is_all_cancelled:
            self._client.report_request_activity(False)

        uuids = [item.uuid for item in result.completions]
        if state.cancelled:
            if uuids:
                self._client.notify_rejected(uuids)
            return
        if result.cancellation_reason or not result.completions:
            return
        if len(uuids) > 1:
            self._client.notify_rejected(uuids[1:])
        if on_completion is not None:
            on_completion(result.completions[0])

    def _on_error(self, task_id: int, error: Exception) -> None:
        self._tasks.pop(task_id, None)
        logger.debug("Completion task %s failed: %s", task_id, error)
        if self.is_all_cancelled:
            self._client.report_request_activity(False)
