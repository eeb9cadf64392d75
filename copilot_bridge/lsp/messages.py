"""JSON-RPC message model, error codes and payload classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union


JSONRPC_VERSION = "2.0"

MessageId = Union[int, str]

_MISSING = object()


class ErrorCodes(IntEnum):
    """JSON-RPC and LSP error codes."""

    # Defined by JSON-RPC
    ParseError = -32700
    InvalidRequest = -32600
    MethodNotFound = -32601
    InvalidParams = -32602
    InternalError = -32603

    # Kept inside the JSON-RPC reserved range for backwards compatibility
    ServerNotInitialized = -32002
    UnknownErrorCode = -32001

    # LSP reserved range
    RequestFailed = -32803
    ServerCancelled = -32802
    ContentModified = -32801
    RequestCancelled = -32800


class MessageType(IntEnum):
    Error = 1
    Warning = 2
    Info = 3
    Log = 4
    Debug = 5


def error_code_name(code: int) -> str | None:
    try:
        return ErrorCodes(int(code)).name
    except ValueError:
        return None


class ResponseError(Exception):
    """Error object of a JSON-RPC response, raised/delivered as an exception."""

    def __init__(self, code: int, message: str, data: Any = _MISSING) -> None:
        super().__init__(message)
        self.code = int(code)
        self.message = str(message)
        self.data = data

    @property
    def has_data(self) -> bool:
        return self.data is not _MISSING

    @property
    def name(self) -> str:
        name = error_code_name(self.code) or "UnknownError"
        if not name.endswith("Error"):
            name += "Error"
        return name

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.has_data:
            error["data"] = self.data
        return error

    @classmethod
    def from_dict(cls, value: dict[str, Any]) -> "ResponseError":
        return cls(value["code"], value["message"], value.get("data", _MISSING))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResponseError):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def __repr__(self) -> str:
        return f"ResponseError(code={self.code}, message={self.message!r})"


class RequestNotPendingError(RuntimeError):
    """Raised when cancelling a request that is no longer pending."""


@dataclass(frozen=True)
class RequestMessage:
    id: MessageId | None
    method: str
    params: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass(frozen=True)
class ResponseMessage:
    id: MessageId | None
    result: Any = None
    error: ResponseError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        else:
            payload["result"] = self.result
        return payload


@dataclass(frozen=True)
class NotificationMessage:
    method: str
    params: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass(frozen=True)
class InvalidMessage:
    value: Any = field(default=None)
    reason: str = ""


Message = Union[RequestMessage, ResponseMessage, NotificationMessage]


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_lsp_any(value: Any) -> bool:
    if value is None or isinstance(value, (str, bool, int, float)):
        return True
    if isinstance(value, list):
        return all(_is_lsp_any(item) for item in value)
    if isinstance(value, dict):
        return all(isinstance(key, str) and _is_lsp_any(item) for key, item in value.items())
    return False


def _is_structured(value: Any) -> bool:
    return isinstance(value, (list, dict)) and _is_lsp_any(value)


def _is_message_id(value: Any) -> bool:
    return value is None or _is_integer(value) or isinstance(value, str)


def is_response_error(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    if not _is_integer(value.get("code")):
        return False
    if not isinstance(value.get("message"), str):
        return False
    return "data" not in value or _is_lsp_any(value["data"])


def classify_message(value: Any) -> RequestMessage | ResponseMessage | NotificationMessage | InvalidMessage:
    """Classify a decoded JSON value as request, response, notification or invalid."""
    if not isinstance(value, dict):
        return InvalidMessage(value, "payload is not an object")
    if not isinstance(value.get("jsonrpc"), str):
        return InvalidMessage(value, "missing jsonrpc version tag")

    has_id = "id" in value
    if has_id and not _is_message_id(value["id"]):
        return InvalidMessage(value, "id must be an integer, a string or null")

    method = value.get("method", _MISSING)
    params = value.get("params", _MISSING)
    if params is not _MISSING and not _is_structured(params):
        return InvalidMessage(value, "params must be an array or an object")

    has_result = "result" in value
    has_error = "error" in value
    if has_id and method is _MISSING and (has_result or has_error):
        if has_result and has_error:
            return InvalidMessage(value, "response carries both result and error")
        if has_error:
            if not is_response_error(value["error"]):
                return InvalidMessage(value, "malformed response error")
            return ResponseMessage(id=value["id"], error=ResponseError.from_dict(value["error"]))
        if not _is_lsp_any(value["result"]):
            return InvalidMessage(value, "malformed response result")
        return ResponseMessage(id=value["id"], result=value["result"])

    if not isinstance(method, str):
        return InvalidMessage(value, "missing method")
    if has_result or has_error:
        return InvalidMessage(value, "message mixes method with result/error")

    params_value = None if params is _MISSING else params
    if has_id:
        # Requests are matched before notifications, so `id: null` with a method stays a request.
        return RequestMessage(id=value["id"], method=method, params=params_value)
    return NotificationMessage(method=method, params=params_value)
