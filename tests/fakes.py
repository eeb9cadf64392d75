from __future__ import annotations

from typing import Any

from copilot_bridge.lsp.json_rpc import decode_lsp_messages, encode_lsp_message
from copilot_bridge.lsp.transport import LspTransport


class FakeTransport(LspTransport):
    """In-memory transport: records outgoing frames and lets tests push server payloads."""

    def __init__(self) -> None:
        super().__init__()
        self.written: list[bytes] = []
        self.accept_writes = True
        self.stop_calls = 0

    @property
    def pid(self) -> int:
        return 4242

    def is_running(self) -> bool:
        return True

    def write(self, data: bytes) -> bool:
        if not self.accept_writes:
            return False
        self.written.append(bytes(data))
        return True

    def stop(self, grace_ms: int = 0) -> None:
        self.stop_calls += 1
        self.stopped.emit()

    def sent(self) -> list[dict[str, Any]]:
        return decode_lsp_messages(b"".join(self.written))

    def sent_methods(self) -> list[str]:
        return [str(item.get("method")) for item in self.sent() if "method" in item]

    def sent_with(self, method: str) -> list[dict[str, Any]]:
        return [item for item in self.sent() if item.get("method") == method]

    def last_request(self, method: str) -> dict[str, Any]:
        matches = [item for item in self.sent_with(method) if "id" in item]
        assert matches, f"no {method} request was sent"
        return matches[-1]

    def clear(self) -> None:
        self.written.clear()

    def push(self, payload: dict[str, Any]) -> None:
        self.dataReceived.emit(encode_lsp_message(payload))

    def push_raw(self, data: bytes) -> None:
        self.dataReceived.emit(bytes(data))

    def respond(self, request_id: int, result: Any = None) -> None:
        self.push({"jsonrpc": "2.0", "id": request_id, "result": result})

    def respond_error(self, request_id: int, code: int, message: str) -> None:
        self.push({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})


def completion_payload(
    uuid: str,
    text: str,
    *,
    start: tuple[int, int],
    end: tuple[int, int],
    position: tuple[int, int] | None = None,
    display_text: str | None = None,
    doc_version: int = 0,
) -> dict[str, Any]:
    pos = position if position is not None else end
    return {
        "uuid": uuid,
        "text": text,
        "displayText": display_text if display_text is not None else text,
        "range": {
            "start": {"line": start[0], "character": start[1]},
            "end": {"line": end[0], "character": end[1]},
        },
        "position": {"line": pos[0], "character": pos[1]},
        "docVersion": doc_version,
    }
