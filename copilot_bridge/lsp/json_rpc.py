"""JSON-RPC framing helpers for LSP transport over a byte stream."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

HEADER_SEPARATOR = b"\r\n\r\n"


@dataclass(frozen=True)
class MalformedPayload:
    """A frame whose body is not valid JSON (reported as a parse error)."""

    raw: str
    error: str


def encode_lsp_message(message: Any) -> bytes:
    payload = message.to_payload() if hasattr(message, "to_payload") else message
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


class LspMessageParser:
    """Incremental parser for `Content-Length` framed LSP messages."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._expected_length: int | None = None

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._expected_length = None

    def feed(self, data: bytes | bytearray | str) -> list[Any]:
        """Return the decoded bodies completed by `data`, oldest first.

        A body that is not valid JSON is returned as a `MalformedPayload` and
        does not stop the frames after it from being decoded.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        if data:
            self._buffer.extend(data)

        messages: list[Any] = []
        while True:
            if self._expected_length is None:
                header_end = self._buffer.find(HEADER_SEPARATOR)
                if header_end < 0:
                    break

                header_blob = bytes(self._buffer[:header_end])
                del self._buffer[: header_end + len(HEADER_SEPARATOR)]
                self._expected_length = self._parse_content_length(header_blob)
                if self._expected_length is None:
                    # Malformed header: skip and continue scanning for a valid frame.
                    logger.debug("Skipping frame with malformed header: %r", header_blob[:80])
                    continue

            if len(self._buffer) < self._expected_length:
                break

            body = bytes(self._buffer[: self._expected_length])
            del self._buffer[: self._expected_length]
            self._expected_length = None

            text = body.decode("utf-8", errors="replace")
            try:
                messages.append(json.loads(text))
            except ValueError as exc:
                messages.append(MalformedPayload(raw=text, error=str(exc)))
        return messages

    @staticmethod
    def _parse_content_length(header_blob: bytes) -> int | None:
        header_text = header_blob.decode("ascii", errors="ignore")

        content_length: int | None = None
        for raw_line in header_text.split("\r\n"):
            if ":" not in raw_line:
                continue
            key, value = raw_line.split(":", 1)
            if key.strip().lower() != "content-length":
                continue
            try:
                content_length = int(value.strip())
            except ValueError:
                return None
            break

        if content_length is None or content_length < 0:
            return None
        return content_length


def decode_lsp_messages(data: bytes | bytearray | str) -> list[Any]:
    """Decode every complete frame of `data`; a trailing partial frame is ignored."""
    return LspMessageParser().feed(data)
