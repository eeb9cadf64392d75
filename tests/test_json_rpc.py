from __future__ import annotations

import json

from copilot_bridge.lsp.json_rpc import LspMessageParser, MalformedPayload, decode_lsp_messages, encode_lsp_message
from copilot_bridge.lsp.messages import (
    ErrorCodes,
    InvalidMessage,
    NotificationMessage,
    RequestMessage,
    ResponseError,
    ResponseMessage,
    classify_message,
)


def _frame(body: bytes) -> bytes:
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


def test_content_length_counts_utf8_bytes() -> None:
    raw = encode_lsp_message({"jsonrpc": "2.0", "method": "x", "params": {"text": "héllo 😀"}})
    header, body = raw.split(b"\r\n\r\n", 1)
    assert header == f"Content-Length: {len(body)}".encode("ascii")
    assert json.loads(body.decode("utf-8"))["params"]["text"] == "héllo 😀"


def test_parser_reassembles_frames_split_across_chunks() -> None:
    raw = encode_lsp_message({"jsonrpc": "2.0", "method": "a"}) + encode_lsp_message(
        {"jsonrpc": "2.0", "method": "b"}
    )
    parser = LspMessageParser()
    seen = []
    for index in range(0, len(raw), 7):
        seen.extend(parser.feed(raw[index : index + 7]))
    assert [item["method"] for item in seen] == ["a", "b"]
    assert parser.buffered_bytes == 0


def test_parser_keeps_partial_frame_buffered() -> None:
    raw = encode_lsp_message({"jsonrpc": "2.0", "method": "a"})
    parser = LspMessageParser()
    assert parser.feed(raw[:-3]) == []
    assert parser.feed(raw[-3:]) == [{"jsonrpc": "2.0", "method": "a"}]


def test_malformed_body_is_reported_and_following_frame_survives() -> None:
    data = _frame(b"{not json") + encode_lsp_message({"jsonrpc": "2.0", "method": "after"})
    values = decode_lsp_messages(data)
    assert isinstance(values[0], MalformedPayload)
    assert values[0].raw == "{not json"
    assert values[1] == {"jsonrpc": "2.0", "method": "after"}


def test_header_without_length_is_skipped() -> None:
    data = b"Content-Type: text/plain\r\n\r\n" + encode_lsp_message({"jsonrpc": "2.0", "method": "ok"})
    assert decode_lsp_messages(data) == [{"jsonrpc": "2.0", "method": "ok"}]


def test_header_name_is_case_insensitive() -> None:
    body = b'{"jsonrpc":"2.0","method":"m"}'
    data = f"content-length: {len(body)}\r\nContent-Type: application/vscode-jsonrpc\r\n\r\n".encode() + body
    assert decode_lsp_messages(data) == [{"jsonrpc": "2.0", "method": "m"}]


def test_classifies_requests_responses_and_notifications() -> None:
    request = classify_message({"jsonrpc": "2.0", "id": 3, "method": "getVersion", "params": {}})
    assert request == RequestMessage(id=3, method="getVersion", params={})

    response = classify_message({"jsonrpc": "2.0", "id": 3, "result": {"version": "1"}})
    assert response == ResponseMessage(id=3, result={"version": "1"})

    failed = classify_message({"jsonrpc": "2.0", "id": "abc", "error": {"code": -32601, "message": "nope"}})
    assert isinstance(failed, ResponseMessage)
    assert failed.is_error
    assert failed.error == ResponseError(ErrorCodes.MethodNotFound, "nope")

    note = classify_message({"jsonrpc": "2.0", "method": "statusNotification", "params": {"status": "Normal"}})
    assert note == NotificationMessage(method="statusNotification", params={"status": "Normal"})


def test_null_id_with_method_is_a_request() -> None:
    message = classify_message({"jsonrpc": "2.0", "id": None, "method": "workspace/configuration"})
    assert isinstance(message, RequestMessage)
    assert message.id is None


def test_null_result_is_a_valid_response() -> None:
    assert classify_message({"jsonrpc": "2.0", "id": 1, "result": None}) == ResponseMessage(id=1, result=None)


def test_invalid_shapes_are_rejected() -> None:
    bad = [
        [1, 2, 3],
        {"id": 1, "method": "x"},
        {"jsonrpc": "2.0", "id": True, "method": "x"},
        {"jsonrpc": "2.0", "id": 1.5, "result": 1},
        {"jsonrpc": "2.0", "id": 1, "result": 1, "error": {"code": 1, "message": "m"}},
        {"jsonrpc": "2.0", "id": 1, "error": {"code": "x", "message": "m"}},
        {"jsonrpc": "2.0", "method": "x", "params": "scalar"},
        {"jsonrpc": "2.0", "method": 5},
        {"jsonrpc": "2.0"},
    ]
    for value in bad:
        assert isinstance(classify_message(value), InvalidMessage), value


def test_response_error_data_is_optional() -> None:
    plain = ResponseError(ErrorCodes.RequestCancelled, "cancelled")
    assert plain.to_dict() == {"code": -32800, "message": "cancelled"}
    assert plain.name == "RequestCancelledError"
    detailed = ResponseError(ErrorCodes.InternalError, "boom", {"trace": []})
    assert detailed.to_dict()["data"] == {"trace": []}
    assert ResponseError(-1, "custom").name == "UnknownError"


def test_encoded_messages_classify_back_to_themselves() -> None:
    messages = [
        RequestMessage(id=7, method="getCompletions", params={"doc": {"version": 2}}),
        NotificationMessage(method="exit"),
        ResponseMessage(id=7, error=ResponseError(ErrorCodes.RequestCancelled, "gone")),
    ]
    raw = b"".join(encode_lsp_message(message) for message in messages)
    assert [classify_message(value) for value in decode_lsp_messages(raw)] == messages
