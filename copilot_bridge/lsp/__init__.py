from .json_rpc import LspMessageParser, MalformedPayload, decode_lsp_messages, encode_lsp_message
from .lsp_client import HandlerContext, LspClient, ResponseHandle, ResponseStatus
from .messages import ErrorCodes, RequestNotPendingError, ResponseError, classify_message
from .protocol_handlers import USE_PROTOCOL_HANDLER, ProtocolHandlerSet, RequestHandler
from .transport import LspTransport, ProcessTransport, RelayTransport

__all__ = [
    "ErrorCodes",
    "HandlerContext",
    "LspClient",
    "LspMessageParser",
    "LspTransport",
    "MalformedPayload",
    "ProcessTransport",
    "ProtocolHandlerSet",
    "RelayTransport",
    "RequestHandler",
    "RequestNotPendingError",
    "ResponseError",
    "ResponseHandle",
    "ResponseStatus",
    "USE_PROTOCOL_HANDLER",
    "classify_message",
    "decode_lsp_messages",
    "encode_lsp_message",
]
