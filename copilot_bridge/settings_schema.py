from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict


LOGGING_LEVELS = ("off", "error", "debug")
TRACE_VALUES = ("off", "messages", "verbose")
TRANSPORT_MODES = ("pipe", "relay")


class CopilotSettings(TypedDict, total=False):
    disable_completions: bool
    use_inline_completion_text_in_source: bool
    debounce_ms: int
    accept_key: str
    logging: str
    trace: str
    transport: str
    node_path: str
    server_path: str
    server_args: list[str]
    relay_host: str
    relay_port: int
    tab_size: int
    insert_spaces: bool
    use_crlf: bool
    editor_name: str
    editor_version: str
    plugin_name: str
    plugin_version: str


def default_copilot_settings() -> CopilotSettings:
    return {
        "disable_completions": False,
        "use_inline_completion_text_in_source": True,
        "debounce_ms": 500,
        "accept_key": "Tab",
        "logging": "error",
        "trace": "off",
        "transport": "pipe",
        "node_path": "node",
        "server_path": "",
        "server_args": ["--stdio"],
        "relay_host": "127.0.0.1",
        "relay_port": 0,
        "tab_size": 4,
        "insert_spaces": True,
        "use_crlf": False,
        "editor_name": "copilot-bridge",
        "editor_version": "0.1.0",
        "plugin_name": "copilot-bridge",
        "plugin_version": "0.1.0",
    }


def normalize_copilot_settings(raw: Any) -> CopilotSettings:
    defaults = default_copilot_settings()
    data = dict(defaults)
    if isinstance(raw, dict):
        for key, value in raw.items():
            data[str(key)] = value

    def _choice(key: str, allowed: tuple[str, ...]) -> str:
        value = str(data.get(key, defaults[key]) or defaults[key]).strip().lower()
        return value if value in allowed else str(defaults[key])

    def _clamp_int(value: Any, low: int, high: int, fallback: int) -> int:
        try:
            return max(low, min(high, int(value)))
        except (TypeError, ValueError):
            return fallback

    def _text(key: str) -> str:
        return str(data.get(key, defaults[key]) or "").strip() or str(defaults[key])

    raw_args = data.get("server_args", defaults["server_args"])
    if isinstance(raw_args, str):
        server_args = [part for part in raw_args.split() if part]
    elif isinstance(raw_args, (list, tuple)):
        server_args = [str(item) for item in raw_args if str(item or "").strip()]
    else:
        server_args = list(defaults["server_args"])

    return {
        "disable_completions": bool(data.get("disable_completions", defaults["disable_completions"])),
        "use_inline_completion_text_in_source": bool(
            data.get("use_inline_completion_text_in_source", defaults["use_inline_completion_text_in_source"])
        ),
        "debounce_ms": _clamp_int(data.get("debounce_ms"), 0, 10000, int(defaults["debounce_ms"])),
        "accept_key": _text("accept_key"),
        "logging": _choice("logging", LOGGING_LEVELS),
        "trace": _choice("trace", TRACE_VALUES),
        "transport": _choice("transport", TRANSPORT_MODES),
        "node_path": _text("node_path"),
        "server_path": str(data.get("server_path", "") or "").strip(),
        "server_args": server_args,
        "relay_host": _text("relay_host"),
        "relay_port": _clamp_int(data.get("relay_port"), 0, 65535, int(defaults["relay_port"])),
        "tab_size": _clamp_int(data.get("tab_size"), 1, 16, int(defaults["tab_size"])),
        "insert_spaces": bool(data.get("insert_spaces", defaults["insert_spaces"])),
        "use_crlf": bool(data.get("use_crlf", defaults["use_crlf"])),
        "editor_name": _text("editor_name"),
        "editor_version": _text("editor_version"),
        "plugin_name": _text("plugin_name"),
        "plugin_version": _text("plugin_version"),
    }


@dataclass(slots=True)
class NormalizedCopilotConfig:
    disable_completions: bool
    use_inline_completion_text_in_source: bool
    debounce_ms: int
    accept_key: str
    logging: str
    trace: str
    transport: str
    node_path: str
    server_path: str
    server_args: list[str]
    relay_host: str
    relay_port: int
    tab_size: int
    insert_spaces: bool
    use_crlf: bool
    editor_name: str
    editor_version: str
    plugin_name: str
    plugin_version: str

    @property
    def eol(self) -> str:
        return "\r\n" if self.use_crlf else "\n"

    @classmethod
    def from_mapping(cls, data: Any) -> "NormalizedCopilotConfig":
        n = normalize_copilot_settings(data)
        return cls(
            disable_completions=bool(n["disable_completions"]),
            use_inline_completion_text_in_source=bool(n["use_inline_completion_text_in_source"]),
            debounce_ms=int(n["debounce_ms"]),
            accept_key=str(n["accept_key"]),
            logging=str(n["logging"]),
            trace=str(n["trace"]),
            transport=str(n["transport"]),
            node_path=str(n["node_path"]),
            server_path=str(n["server_path"]),
            server_args=list(n["server_args"]),
            relay_host=str(n["relay_host"]),
            relay_port=int(n["relay_port"]),
            tab_size=int(n["tab_size"]),
            insert_spaces=bool(n["insert_spaces"]),
            use_crlf=bool(n["use_crlf"]),
            editor_name=str(n["editor_name"]),
            editor_version=str(n["editor_version"]),
            plugin_name=str(n["plugin_name"]),
            plugin_version=str(n["plugin_version"]),
        )
