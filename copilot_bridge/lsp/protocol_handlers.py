"""Built-in handlers for protocol-reserved LSP methods."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Literal

from .messages import MessageType

if TYPE_CHECKING:
    from .lsp_client import HandlerContext


RequestKind = Literal["query", "mutation"]
REQUEST_KINDS: tuple[str, ...] = ("query", "mutation")

RESERVED_PREFIX = "$/"

NotificationCallback = Callable[[Any, "HandlerContext"], None]


class _UseProtocolHandler:
    """Marker mapping a method to its built-in handler even when a user map is supplied."""

    def __repr__(self) -> str:
        return "USE_PROTOCOL_HANDLER"


USE_PROTOCOL_HANDLER = _UseProtocolHandler()


@dataclass(frozen=True)
class RequestHandler:
    kind: str
    handler: Callable[[Any, "HandlerContext"], None]

    def with_kind(self, kind: str) -> "RequestHandler":
        return RequestHandler(kind=kind, handler=self.handler)


_LOG_LEVELS: dict[int, int] = {
    MessageType.Error: logging.ERROR,
    MessageType.Warning: logging.WARNING,
    MessageType.Info: logging.INFO,
    MessageType.Log: logging.DEBUG,
    MessageType.Debug: logging.DEBUG,
}


def log_level_for_message_type(value: Any) -> int:
    try:
        return _LOG_LEVELS.get(MessageType(int(value)), logging.INFO)
    except (TypeError, ValueError):
        return logging.INFO


class ProtocolHandlerSet:
    """Default behaviour for capability registration, cancellation, progress and trace methods."""

    def __init__(self) -> None:
        self.registrations: dict[str, dict[str, Any]] = {}
        self._request_handlers: dict[str, RequestHandler] = {
            "client/registerCapability": RequestHandler("mutation", self._on_register_capability),
            "client/unregisterCapability": RequestHandler("mutation", self._on_unregister_capability),
        }
        self._notification_handlers: dict[str, NotificationCallback] = {
            "$/cancelRequest": self._on_cancel_request,
            "$/progress": self._on_progress,
            "$/logTrace": self._on_log_trace,
            "window/logMessage": self._on_log_message,
        }

    @property
    def request_handlers(self) -> dict[str, RequestHandler]:
        return dict(self._request_handlers)

    @property
    def notification_handlers(self) -> dict[str, NotificationCallback]:
        return dict(self._notification_handlers)

    def reserved_kind(self, method: str) -> str | None:
        entry = self._request_handlers.get(str(method or ""))
        return entry.kind if entry is not None else None

    def _on_register_capability(self, params: Any, context: "HandlerContext") -> None:
        payload = params if isinstance(params, dict) else {}
        for item in payload.get("registrations") or []:
            if not isinstance(item, dict):
                continue
            reg_id = str(item.get("id") or "").strip()
            if reg_id:
                self.registrations[reg_id] = dict(item)
        context.success(None)

    def _on_unregister_capability(self, params: Any, context: "HandlerContext") -> None:
        payload = params if isinstance(params, dict) else {}
        # LSP names this key "unregisterations"; accept both spellings.
        items = payload.get("unregisterations") or payload.get("unregistrations") or []
        for item in items:
            if isinstance(item, dict):
                self.registrations.pop(str(item.get("id") or ""), None)
        context.success(None)

    def _on_cancel_request(self, params: Any, context: "HandlerContext") -> None:
        payload = params if isinstance(params, dict) else {}
        request_id = payload.get("id")
        if request_id is None:
            return
        context.client.mark_inbound_cancelled(request_id)

    def _on_progress(self, params: Any, context: "HandlerContext") -> None:
        payload = params if isinstance(params, dict) else {}
        context.client.progressReceived.emit(payload.get("token"), payload.get("value"))

    def _on_log_trace(self, params: Any, context: "HandlerContext") -> None:
        payload = params if isinstance(params, dict) else {}
        message = str(payload.get("message") or "")
        verbose = str(payload.get("verbose") or "")
        if verbose:
            context.logger.debug("%s\n%s", message, verbose)
        else:
            context.logger.debug("%s", message)

    def _on_log_message(self, params: Any, context: "HandlerContext") -> None:
        payload = params if isinstance(params, dict) else {}
        context.suppress_logging()
        context.logger.log(log_level_for_message_type(payload.get("type")), "%s", str(payload.get("message") or ""))
