"""Typed client for the Copilot language server built on top of `LspClient`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from PySide6.QtCore import QObject, QUrl, Signal

from copilot_bridge.lsp.lsp_client import ErrorCallback, HandlerContext, LspClient, ResponseHandle, ResultCallback
from copilot_bridge.lsp.transport import LspTransport
from copilot_bridge.lsp.types import Position, Range


ACCOUNT_STATUS_OK = "OK"


class CopilotStatus(str, Enum):
    NORMAL = "Normal"
    IN_PROGRESS = "InProgress"
    WARNING = "Warning"


@dataclass(frozen=True)
class StatusChangeEvent:
    old_status: CopilotStatus
    new_status: CopilotStatus


@dataclass(frozen=True)
class Completion:
    uuid: str
    position: Position
    range: Range
    doc_version: int
    text: str
    display_text: str

    @classmethod
    def from_payload(cls, data: Any) -> "Completion":
        payload = data if isinstance(data, Mapping) else {}
        text_range = Range.from_dict(payload.get("range"))
        position = payload.get("position")
        return cls(
            uuid=str(payload.get("uuid") or ""),
            position=Position.from_dict(position) if isinstance(position, dict) else text_range.end,
            range=text_range,
            doc_version=int(payload.get("docVersion", 0) or 0),
            text=str(payload.get("text") or ""),
            display_text=str(payload.get("displayText") or ""),
        )


@dataclass(frozen=True)
class CompletionResult:
    completions: tuple[Completion, ...]
    cancellation_reason: str | None = None

    @classmethod
    def from_payload(cls, data: Any) -> "CompletionResult":
        payload = data if isinstance(data, Mapping) else {}
        items = payload.get("completions")
        completions = tuple(Completion.from_payload(item) for item in items or [] if isinstance(item, Mapping))
        reason = payload.get("cancellationReason")
        return cls(completions=completions, cancellation_reason=str(reason) if reason else None)


@dataclass(slots=True)
class CompletionOptions:
    position: Position
    tab_size: int = 4
    indent_size: int | None = None
    insert_spaces: bool = True
    path: str = ""
    uri: str | None = None
    relative_path: str | None = None
    language_id: str = ""
    version: int | None = None


class CopilotClient(QObject):
    """Copilot request/notification vocabulary plus the shared document version and status."""

    statusChanged = Signal(object)  # StatusChangeEvent
    initialized = Signal(object)  # initialize result

    EVENTS = ("changeStatus", "initialized")

    def __init__(
        self,
        transport: LspTransport,
        *,
        logging_level: str = "error",
        request_handlers: Mapping[str, Any] | None = None,
        notification_handlers: Mapping[str, Any] | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        handlers: dict[str, Any] = {
            "LogMessage": self._on_log_message,
            "statusNotification": self._on_status_notification,
        }
        handlers.update(dict(notification_handlers or {}))
        self.lsp = LspClient(
            transport,
            logging_level=logging_level,
            server_name="Copilot",
            request_handlers=request_handlers,
            notification_handlers=handlers,
            parent=self,
        )
        self.lsp.initialized.connect(self.initialized.emit)
        self.version = 0
        self._status = CopilotStatus.WARNING
        self._listeners: list[tuple[str, Callable[..., Any]]] = []

    @property
    def logger(self):
        return self.lsp.logger

    @property
    def status(self) -> CopilotStatus:
        return self._status

    def is_initialized(self) -> bool:
        return self.lsp.is_initialized()

    @staticmethod
    def path_to_uri(path: str) -> str:
        return QUrl.fromLocalFile(os.path.abspath(path)).toString()

    @staticmethod
    def uri_to_path(uri: str) -> str:
        url = QUrl(uri)
        if url.isLocalFile():
            return str(url.toLocalFile())
        return str(uri or "")

    # ----- events -----

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        signal = self._signal_for(event)
        if (event, handler) in self._listeners:
            return
        self._listeners.append((event, handler))
        signal.connect(handler)

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        signal = self._signal_for(event)
        if (event, handler) in self._listeners:
            self._listeners.remove((event, handler))
            signal.disconnect(handler)

    def _signal_for(self, event: str):
        if event == "changeStatus":
            return self.statusChanged
        if event == "initialized":
            return self.initialized
        raise ValueError(f"Unknown event {event!r}; expected one of {', '.join(self.EVENTS)}")

    # ----- status -----

    def _set_status(self, value: CopilotStatus) -> None:
        if value == self._status:
            return
        old = self._status
        self._status = value
        self.statusChanged.emit(StatusChangeEvent(old_status=old, new_status=value))

    def report_account_status(self, account_status: Any) -> None:
        """Map an account status from checkStatus/signIn/signOut onto the editor status."""
        ok = str(account_status or "") == ACCOUNT_STATUS_OK
        self._set_status(CopilotStatus.NORMAL if ok else CopilotStatus.WARNING)

    def report_request_activity(self, busy: bool) -> None:
        self._set_status(CopilotStatus.IN_PROGRESS if busy else CopilotStatus.NORMAL)

    def _apply_account_result(self, result: Any) -> Any:
        if isinstance(result, Mapping):
            self.report_account_status(result.get("status"))
        return result

    # ----- server notifications -----

    def _on_log_message(self, params: Any, context: HandlerContext) -> None:
        payload = params if isinstance(params, Mapping) else {}
        context.suppress_logging()
        extra = payload.get("extra")
        if extra:
            context.logger.debug("%s %s", payload.get("message", ""), extra)
        else:
            context.logger.debug("%s", payload.get("message", ""))

    def _on_status_notification(self, params: Any, context: HandlerContext) -> None:
        payload = params if isinstance(params, Mapping) else {}
        try:
            value = CopilotStatus(str(payload.get("status") or ""))
        except ValueError:
            context.logger.error("Unknown Copilot status %r", payload.get("status"))
            return
        self._set_status(value)

    # ----- requests -----

    def initialize(self, params: dict[str, Any], **kwargs: Any) -> ResponseHandle:
        return self.lsp.initialize(params, **kwargs)

    def shutdown(self, **kwargs: Any) -> ResponseHandle:
        return self.lsp.shutdown(**kwargs)

    def get_version(self, **kwargs: Any) -> ResponseHandle:
        return self.lsp.query("getVersion", {}, **kwargs)

    def check_status(self, local_checks_only: bool = False, **kwargs: Any) -> ResponseHandle:
        return self.lsp.query(
            "checkStatus",
            {"localChecksOnly": bool(local_checks_only)},
            transform=self._apply_account_result,
            **kwargs,
        )

    def sign_in_initiate(self, **kwargs: Any) -> ResponseHandle:
        return self.lsp.mutate("signInInitiate", {}, **kwargs)

    def sign_in_confirm(self, user_code: str, **kwargs: Any) -> ResponseHandle:
        return self.lsp.mutate(
            "signInConfirm",
            {"userCode": str(user_code or "")},
            transform=self._apply_account_result,
            **kwargs,
        )

    def sign_out(self, **kwargs: Any) -> ResponseHandle:
        return self.lsp.mutate("signOut", {}, transform=self._apply_account_result, **kwargs)

    def set_editor_info(
        self,
        editor_info: Mapping[str, str],
        editor_plugin_info: Mapping[str, str],
        **kwargs: Any,
    ) -> ResponseHandle:
        return self.lsp.mutate(
            "setEditorInfo",
            {"editorInfo": dict(editor_info), "editorPluginInfo": dict(editor_plugin_info)},
            **kwargs,
        )

    def get_completions(
        self,
        options: CompletionOptions,
        *,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> ResponseHandle:
        return self.lsp.query(
            "getCompletions",
            self.completion_params(options),
            on_result=on_result,
            on_error=on_error,
            transform=CompletionResult.from_payload,
        )

    def get_completions_cycling(
        self,
        options: CompletionOptions,
        *,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> ResponseHandle:
        return self.lsp.query(
            "getCompletionsCycling",
            self.completion_params(options),
            on_result=on_result,
            on_error=on_error,
            transform=CompletionResult.from_payload,
        )

    def completion_params(self, options: CompletionOptions) -> dict[str, Any]:
        path = str(options.path or "")
        uri = options.uri if options.uri is not None else (self.path_to_uri(path) if path else "")
        return {
            "doc": {
                "tabSize": int(options.tab_size),
                "indentSize": int(options.indent_size if options.indent_size is not None else options.tab_size),
                "insertSpaces": bool(options.insert_spaces),
                "path": path,
                "uri": uri,
                "relativePath": options.relative_path if options.relative_path is not None else path,
                "languageId": str(options.language_id or ""),
                "position": options.position.to_dict(),
                "version": int(options.version if options.version is not None else self.version),
            }
        }

    # ----- notifications -----

    def notify_shown(self, uuid: str) -> None:
        self.lsp.notify("notifyShown", {"uuid": str(uuid)})

    def notify_accepted(self, uuid: str) -> None:
        self.lsp.notify("notifyAccepted", {"uuid": str(uuid)})

    def notify_rejected(self, uuids: list[str] | tuple[str, ...]) -> None:
        self.lsp.notify("notifyRejected", {"uuids": [str(item) for item in uuids]})

    def send_initialized(self) -> None:
        self.lsp.send_initialized()

    def set_trace(self, value: str) -> None:
        self.lsp.set_trace(value)

    def exit(self) -> None:
        self.lsp.exit()

    def did_open(self, *, uri: str, language_id: str, text: str) -> int:
        self.version = 0
        self.lsp.did_open(uri=uri, language_id=language_id, version=self.version, text=text)
        return self.version

    def did_change(self, *, uri: str, text: str, content_changes: list[dict[str, Any]] | None = None) -> int:
        """Send the next document version; a full-text change unless `content_changes` is given."""
        self.version += 1
        changes = list(content_changes) if content_changes is not None else [{"text": str(text or "")}]
        self.lsp.did_change(uri=uri, version=self.version, content_changes=changes)
        return self.version

    def did_close(self, *, uri: str) -> None:
        self.lsp.did_close(uri=uri)

    def did_change_workspace_folders(
        self,
        *,
        added: list[dict[str, str]] | None = None,
        removed: list[dict[str, str]] | None = None,
    ) -> None:
        self.lsp.did_change_workspace_folders(added=added, removed=removed)

    # ----- startup -----

    def start_handshake(
        self,
        *,
        workspace_folder: str = "",
        editor_info: Mapping[str, str] | None = None,
        editor_plugin_info: Mapping[str, str] | None = None,
        trace: str = "off",
        process_id: int | None = None,
        on_ready: Callable[[Any], None] | None = None,
        on_error: ErrorCallback | None = None,
    ) -> ResponseHandle:
        """initialize, initialized, setEditorInfo, getVersion, then `on_ready(version_info)`."""
        params: dict[str, Any] = {
            "processId": int(process_id if process_id is not None else os.getpid()),
            "capabilities": {"workspace": {"workspaceFolders": True}},
            "trace": str(trace or "off"),
        }
        folder = str(workspace_folder or "").strip()
        if folder:
            root_uri = self.path_to_uri(folder)
            params["rootUri"] = root_uri
            params["workspaceFolders"] = [{"uri": root_uri, "name": os.path.basename(folder.rstrip("/\\")) or folder}]

        def _after_set_editor_info(_result: Any) -> None:
            self.get_version(on_result=on_ready, on_error=on_error)

        def _after_initialize(_result: Any) -> None:
            self.send_initialized()
            self.set_editor_info(
                editor_info or {"name": "copilot-bridge", "version": "0.1.0"},
                editor_plugin_info or {"name": "copilot-bridge", "version": "0.1.0"},
                on_result=_after_set_editor_info,
                on_error=on_error,
            )

        return self.initialize(params, on_result=_after_initialize, on_error=on_error)
