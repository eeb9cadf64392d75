"""Transport-agnostic JSON-RPC client with request correlation and handler dispatch."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from PySide6.QtCore import QObject, Signal

from .json_rpc import LspMessageParser, MalformedPayload, encode_lsp_message
from .messages import (
    ErrorCodes,
    InvalidMessage,
    MessageId,
    NotificationMessage,
    RequestMessage,
    RequestNotPendingError,
    ResponseError,
    ResponseMessage,
    classify_message,
)
from .protocol_handlers import (
    REQUEST_KINDS,
    RESERVED_PREFIX,
    USE_PROTOCOL_HANDLER,
    NotificationCallback,
    ProtocolHandlerSet,
    RequestHandler,
)
from .transport import LspTransport

logger = logging.getLogger(__name__)


ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]
ResultTransform = Callable[[Any], Any]

LOGGING_LEVELS: tuple[str, ...] = ("off", "error", "debug")


class ResponseStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


def _invoke_callback(callback: Callable[[Any], None], value: Any, log: logging.Logger | logging.LoggerAdapter) -> None:
    try:
        callback(value)
    except Exception:
        log.exception("Response callback raised")


class ResponseHandle:
    """Outcome of one outgoing request.

    The handle settles at most once. `cancel()` does not settle it: the request is
    abandoned locally, the peer is told through `$/cancelRequest`, and any answer
    that still arrives is dropped by the client.
    """

    def __init__(
        self,
        request_id: int,
        method: str,
        kind: str,
        cancel_channel: Callable[["ResponseHandle"], None],
        log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> None:
        self.id = int(request_id)
        self.method = str(method or "")
        self.kind = str(kind or "query")
        self._cancel_channel = cancel_channel
        self._log = log
        self._status = ResponseStatus.PENDING
        self._cancelled = False
        self._result: Any = None
        self._error: Exception | None = None
        self._result_callbacks: list[ResultCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    @property
    def status(self) -> ResponseStatus:
        return self._status

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_pending(self) -> bool:
        return self._status is ResponseStatus.PENDING and not self._cancelled

    @property
    def result(self) -> Any:
        return self._result

    @property
    def error(self) -> Exception | None:
        return self._error

    def then(
        self,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> "ResponseHandle":
        if self._status is ResponseStatus.FULFILLED:
            if callable(on_result):
                _invoke_callback(on_result, self._result, self._log)
            return self
        if self._status is ResponseStatus.REJECTED:
            if callable(on_error):
                _invoke_callback(on_error, self._error, self._log)
            return self
        if callable(on_result):
            self._result_callbacks.append(on_result)
        if callable(on_error):
            self._error_callbacks.append(on_error)
        return self

    def cancel(self) -> None:
        if not self.is_pending:
            raise RequestNotPendingError(f"Request {self.id} ({self.method}) is not pending")
        self._cancelled = True
        self._result_callbacks.clear()
        self._error_callbacks.clear()
        self._cancel_channel(self)

    def _fulfill(self, value: Any) -> None:
        if self._status is not ResponseStatus.PENDING:
            return
        self._status = ResponseStatus.FULFILLED
        self._result = value
        callbacks = list(self._result_callbacks)
        self._result_callbacks.clear()
        self._error_callbacks.clear()
        for callback in callbacks:
            _invoke_callback(callback, value, self._log)

    def _reject(self, error: Exception) -> None:
        if self._status is not ResponseStatus.PENDING:
            return
        self._status = ResponseStatus.REJECTED
        self._error = error
        callbacks = list(self._error_callbacks)
        self._result_callbacks.clear()
        self._error_callbacks.clear()
        for callback in callbacks:
            _invoke_callback(callback, error, self._log)

    def __repr__(self) -> str:
        flag = ", cancelled" if self._cancelled else ""
        return f"ResponseHandle(id={self.id}, method={self.method!r}, status={self._status.value}{flag})"


@dataclass(slots=True)
class _PendingRequest:
    method: str
    kind: str
    handle: ResponseHandle
    transform: ResultTransform | None


class _ServerLogAdapter(logging.LoggerAdapter):
    """Prefixes records with the server name and applies the client's verbosity switch."""

    def __init__(self, base: logging.Logger, client: "LspClient") -> None:
        super().__init__(base, {})
        self._client = client

    def isEnabledFor(self, level: int) -> bool:
        return self._client.logging_allows(level) and self.logger.isEnabledFor(level)

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"{self._client.log_prefix} {msg}", kwargs


class HandlerContext:
    """Per-message view handed to request and notification handlers."""

    def __init__(self, client: "LspClient", method: str, request_id: MessageId | None = None, *, is_request: bool) -> None:
        self.client = client
        self.method = str(method or "")
        self.request_id = request_id
        self.is_request = bool(is_request)
        self._answered = False
        self._suppressed = False

    @property
    def logger(self) -> logging.LoggerAdapter:
        return self.client.logger

    @property
    def answered(self) -> bool:
        return self._answered

    @property
    def logging_suppressed(self) -> bool:
        return self._suppressed

    @property
    def is_cancelled(self) -> bool:
        return self.is_request and self.client.is_inbound_cancelled(self.request_id)

    def suppress_logging(self) -> None:
        self._suppressed = True

    def send(self, message: Any) -> bool:
        return self.client.send_message(message)

    def success(self, value: Any = None) -> None:
        if not self._claim_answer():
            return
        if self.client.consume_inbound_cancelled(self.request_id):
            self.client.send_message(
                ResponseMessage(
                    id=self.request_id,
                    error=ResponseError(ErrorCodes.RequestCancelled, f"Request {self.method} was cancelled"),
                )
            )
            return
        self.client.send_message(ResponseMessage(id=self.request_id, result=value))

    def error(self, code: int, message: str, data: Any = None) -> None:
        if not self._claim_answer():
            return
        self.client.consume_inbound_cancelled(self.request_id)
        error = ResponseError(code, message) if data is None else ResponseError(code, message, data)
        self.client.send_message(ResponseMessage(id=self.request_id, error=error))

    def _claim_answer(self) -> bool:
        if not self.is_request:
            self.logger.warning("Notification %s cannot be answered", self.method)
            return False
        if self._answered:
            self.logger.warning("Request %s (%s) was already answered", self.method, self.request_id)
            return False
        self._answered = True
        return True


class LspClient(QObject):
    """JSON-RPC LSP client over any `LspTransport`, with request correlation and typed dispatch."""

    initialized = Signal(object)  # initialize result
    notificationReceived = Signal(str, object)
    statusMessage = Signal(str)
    trafficLogged = Signal(str, str)  # direction, payload
    progressReceived = Signal(object, object)  # token, value

    def __init__(
        self,
        transport: LspTransport,
        *,
        logging_level: str = "error",
        server_name: str = "",
        request_handlers: Mapping[str, Any] | None = None,
        notification_handlers: Mapping[str, Any] | None = None,
        protocol_handlers: ProtocolHandlerSet | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._transport = transport
        self._parser = LspMessageParser()
        self._next_request_id = 1
        self._pending: dict[int, _PendingRequest] = {}
        self._inbound_in_flight: set[MessageId] = set()
        self._cancelled_inbound: set[MessageId] = set()
        self._initialized = False
        self._log_traffic = False
        self.server_capabilities: dict[str, Any] = {}

        self._logging_level = "error"
        self.set_logging_level(logging_level)
        self.server_name = str(server_name or "").strip()
        self.logger = _ServerLogAdapter(logger, self)

        self.protocol_handlers = protocol_handlers or ProtocolHandlerSet()
        self._request_handlers: dict[str, Any] = {}
        self._notification_handlers: dict[str, Any] = {}
        for method, handler in dict(request_handlers or {}).items():
            self.set_request_handler(method, handler)
        for method, handler in dict(notification_handlers or {}).items():
            self.set_notification_handler(method, handler)

        transport.dataReceived.connect(self._on_data_received)
        transport.statusMessage.connect(self.statusMessage.emit)
        transport.stopped.connect(self.close)

    @property
    def transport(self) -> LspTransport:
        return self._transport

    @property
    def log_prefix(self) -> str:
        return f"{self.server_name} LSP:" if self.server_name else "LSP:"

    @property
    def logging_level(self) -> str:
        return self._logging_level

    @property
    def pending_ids(self) -> list[int]:
        return list(self._pending)

    def is_initialized(self) -> bool:
        return self._initialized

    def set_logging_level(self, level: str) -> None:
        value = str(level or "").strip().lower()
        self._logging_level = value if value in LOGGING_LEVELS else "error"

    def logging_allows(self, level: int) -> bool:
        if self._logging_level == "off":
            return False
        if self._logging_level == "error":
            return level >= logging.ERROR
        return True

    def set_log_traffic(self, enabled: bool) -> None:
        self._log_traffic = bool(enabled)

    # ----- handler registry -----

    def set_request_handler(self, method: str, handler: Any) -> None:
        name = str(method or "")
        if handler is USE_PROTOCOL_HANDLER:
            self._request_handlers[name] = USE_PROTOCOL_HANDLER
            return
        entry = handler if isinstance(handler, RequestHandler) else RequestHandler("query", handler)
        reserved_kind = self.protocol_handlers.reserved_kind(name)
        if reserved_kind is not None:
            if isinstance(handler, RequestHandler) and entry.kind != reserved_kind:
                self.logger.warning(
                    "Handler for reserved method %s declared kind %r; using %r",
                    name,
                    entry.kind,
                    reserved_kind,
                )
            entry = entry.with_kind(reserved_kind)
        elif entry.kind not in REQUEST_KINDS:
            self.logger.warning("Unknown request kind %r for %s; using 'query'", entry.kind, name)
            entry = entry.with_kind("query")
        self._request_handlers[name] = entry

    def set_notification_handler(self, method: str, handler: Any) -> None:
        self._notification_handlers[str(method or "")] = handler

    def remove_handler(self, method: str) -> None:
        self._request_handlers.pop(str(method or ""), None)
        self._notification_handlers.pop(str(method or ""), None)

    def resolve_request_handler(self, method: str) -> RequestHandler | None:
        user = self._request_handlers.get(method)
        if user is not None and user is not USE_PROTOCOL_HANDLER:
            return user
        return self.protocol_handlers.request_handlers.get(method)

    def resolve_notification_handler(self, method: str) -> NotificationCallback | None:
        user = self._notification_handlers.get(method)
        if user is not None and user is not USE_PROTOCOL_HANDLER:
            return user
        return self.protocol_handlers.notification_handlers.get(method)

    # ----- outgoing -----

    def request(
        self,
        kind: str,
        method: str,
        params: Any = None,
        *,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
        transform: ResultTransform | None = None,
    ) -> ResponseHandle:
        request_id = self._next_request_id
        self._next_request_id += 1
        clean_kind = kind if kind in REQUEST_KINDS else "query"
        handle = ResponseHandle(request_id, method, clean_kind, self._cancel_channel, self.logger)
        handle.then(on_result, on_error)
        self._pending[request_id] = _PendingRequest(
            method=str(method or ""),
            kind=clean_kind,
            handle=handle,
            transform=transform,
        )
        if not self.send_message(RequestMessage(id=request_id, method=str(method or ""), params=params)):
            self._pending.pop(request_id, None)
            handle._reject(ResponseError(ErrorCodes.InternalError, f"Transport refused write for {method}"))
        return handle

    def query(self, method: str, params: Any = None, **kwargs: Any) -> ResponseHandle:
        return self.request("query", method, params, **kwargs)

    def mutate(self, method: str, params: Any = None, **kwargs: Any) -> ResponseHandle:
        return self.request("mutation", method, params, **kwargs)

    def notify(self, method: str, params: Any = None) -> None:
        self.send_message(NotificationMessage(method=str(method or ""), params=params))

    def cancel_request(self, request_id: int) -> None:
        pending = self._pending.get(int(request_id))
        if pending is None:
            raise RequestNotPendingError(f"Request {request_id} is not pending")
        pending.handle.cancel()

    def send_message(self, message: Any) -> bool:
        raw = encode_lsp_message(message)
        if not self._transport.write(raw):
            self.logger.error("Transport refused outgoing message")
            return False
        self._log_traffic_line("out", message.to_payload() if hasattr(message, "to_payload") else message)
        return True

    def _cancel_channel(self, handle: ResponseHandle) -> None:
        self._pending.pop(handle.id, None)
        self.notify("$/cancelRequest", {"id": handle.id})

    # ----- lifecycle helpers -----

    def initialize(
        self,
        params: dict[str, Any],
        *,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> ResponseHandle:
        handle = self.mutate("initialize", params)
        handle.then(self._on_initialize_result, self._on_initialize_error)
        return handle.then(on_result, on_error)

    def shutdown(self, **kwargs: Any) -> ResponseHandle:
        return self.mutate("shutdown", None, **kwargs)

    def send_initialized(self) -> None:
        self.notify("initialized", {})

    def set_trace(self, value: str) -> None:
        self.notify("$/setTrace", {"value": str(value or "off")})

    def exit(self) -> None:
        self.notify("exit")

    def did_open(self, *, uri: str, language_id: str, version: int, text: str) -> None:
        self.notify(
            "textDocument/didOpen",
            {
                "textDocument": {
                    "uri": str(uri or ""),
                    "languageId": str(language_id or "plaintext"),
                    "version": int(version),
                    "text": str(text or ""),
                }
            },
        )

    def did_change(self, *, uri: str, version: int, content_changes: list[dict[str, Any]]) -> None:
        self.notify(
            "textDocument/didChange",
            {
                "textDocument": {"uri": str(uri or ""), "version": int(version)},
                "contentChanges": list(content_changes),
            },
        )

    def did_close(self, *, uri: str) -> None:
        self.notify("textDocument/didClose", {"textDocument": {"uri": str(uri or "")}})

    def did_change_workspace_folders(
        self,
        *,
        added: list[dict[str, str]] | None = None,
        removed: list[dict[str, str]] | None = None,
    ) -> None:
        self.notify(
            "workspace/didChangeWorkspaceFolders",
            {"event": {"added": list(added or []), "removed": list(removed or [])}},
        )

    def close(self) -> None:
        """Forget every pending call; their handles stay unsettled."""
        if self._pending:
            self.logger.debug("Dropping %s pending request(s)", len(self._pending))
        self._pending.clear()
        self._inbound_in_flight.clear()
        self._cancelled_inbound.clear()
        self._parser.reset()
        self._initialized = False

    def _on_initialize_result(self, result_obj: Any) -> None:
        result = result_obj if isinstance(result_obj, dict) else {}
        caps = result.get("capabilities")
        self.server_capabilities = caps if isinstance(caps, dict) else {}
        self._initialized = True
        self.initialized.emit(result)

    def _on_initialize_error(self, error: Exception) -> None:
        self._initialized = False
        self.statusMessage.emit(f"LSP initialize failed: {error}")

    # ----- inbound cancellation bookkeeping -----

    def mark_inbound_cancelled(self, request_id: MessageId) -> None:
        if request_id in self._inbound_in_flight:
            self._cancelled_inbound.add(request_id)

    def is_inbound_cancelled(self, request_id: MessageId | None) -> bool:
        return request_id is not None and request_id in self._cancelled_inbound

    def consume_inbound_cancelled(self, request_id: MessageId | None) -> bool:
        self._inbound_in_flight.discard(request_id)
        if request_id is None or request_id not in self._cancelled_inbound:
            return False
        self._cancelled_inbound.discard(request_id)
        return True

    # ----- inbound -----

    def feed(self, data: bytes | bytearray | str) -> None:
        """Decode and dispatch every complete frame in `data`."""
        for value in self._parser.feed(data):
            if isinstance(value, MalformedPayload):
                self.logger.error("Parse error: %s; payload dropped: %.200s", value.error, value.raw)
                continue
            try:
                self._handle_value(value)
            except Exception:
                self.logger.exception("Dispatch of inbound message failed")

    def _on_data_received(self, data: object) -> None:
        if isinstance(data, (bytes, bytearray, str)):
            self.feed(data)

    def _handle_value(self, value: Any) -> None:
        message = classify_message(value)
        if isinstance(message, ResponseMessage):
            self._handle_response(message)
            self._log_traffic_line("in", value)
        elif isinstance(message, RequestMessage):
            context = HandlerContext(self, message.method, message.id, is_request=True)
            self._handle_request(message, context)
            if not context.logging_suppressed:
                self._log_traffic_line("in", value)
        elif isinstance(message, NotificationMessage):
            context = HandlerContext(self, message.method, is_request=False)
            self._handle_notification(message, context)
            if not context.logging_suppressed:
                self._log_traffic_line("in", value)
        elif isinstance(message, InvalidMessage):
            self.logger.error("Protocol violation (%s); message dropped: %.200r", message.reason, value)

    def _handle_response(self, message: ResponseMessage) -> None:
        if message.id is None:
            detail = message.error.message if message.error is not None else "no error"
            self.logger.error("Received a response without id: %s", detail)
            return
        pending = self._pending.pop(message.id, None) if isinstance(message.id, int) else None
        if pending is None:
            self.logger.error("Received a response for an unknown request id %r", message.id)
            return

        if message.error is not None:
            pending.handle._reject(message.error)
            return
        value = message.result
        if pending.transform is not None:
            try:
                value = pending.transform(value)
            except Exception as exc:
                self.logger.error("Could not interpret the result of %s: %s", pending.method, exc)
                pending.handle._reject(exc)
                return
        pending.handle._fulfill(value)

    def _handle_request(self, message: RequestMessage, context: HandlerContext) -> None:
        entry = self.resolve_request_handler(message.method)
        if entry is None:
            if message.method.startswith(RESERVED_PREFIX):
                context.error(ErrorCodes.MethodNotFound, f"Unhandled method {message.method}")
            else:
                self.logger.debug("No handler for request %s; not answering", message.method)
            return
        self._inbound_in_flight.add(message.id)
        try:
            entry.handler(message.params, context)
        except Exception as exc:
            self.logger.exception("Handler for %s raised", message.method)
            if not context.answered:
                context.error(ErrorCodes.InternalError, str(exc) or exc.__class__.__name__)

    def _handle_notification(self, message: NotificationMessage, context: HandlerContext) -> None:
        handler = self.resolve_notification_handler(message.method)
        if handler is not None:
            try:
                handler(message.params, context)
            except Exception:
                self.logger.exception("Handler for %s raised", message.method)
        self.notificationReceived.emit(message.method, message.params)

    def _log_traffic_line(self, direction: str, payload: Any) -> None:
        if not self.logger.isEnabledFor(logging.DEBUG) and not self._log_traffic:
            return
        try:
            text = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError):
            text = repr(payload)
        self.logger.debug("%s %s", "-->" if direction == "out" else "<--", text)
        if self._log_traffic:
            self.trafficLogged.emit(str(direction), text)
