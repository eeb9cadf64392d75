from __future__ import annotations

import json
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Mapping

from copilot_bridge.settings_schema import NormalizedCopilotConfig, default_copilot_settings

ChangeListener = Callable[[str, Any], None]

_MISSING = object()


class SettingsStoreError(RuntimeError):
    """Raised when a settings file cannot be saved."""


def deep_merge_defaults(data: Mapping[str, Any], defaults: Mapping[str, Any]) -> dict[str, Any]:
    """Merge defaults into data without overwriting explicitly provided values."""
    merged = deepcopy(dict(data))
    for key, default_value in defaults.items():
        if key not in merged:
            merged[key] = deepcopy(default_value)
        elif isinstance(merged[key], dict) and isinstance(default_value, dict):
            merged[key] = deep_merge_defaults(merged[key], default_value)
    return merged


def dot_get(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if not key:
        return data
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def dot_set(data: dict[str, Any], key: str, value: Any) -> None:
    if not key:
        raise ValueError("Key cannot be empty.")
    current: dict[str, Any] = data
    parts = key.split(".")
    for part in parts[:-1]:
        next_value = current.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            current[part] = next_value
        current = next_value
    current[parts[-1]] = value


class JsonSettingsStore:
    """JSON-backed settings with defaults, dot keys and per-key change listeners."""

    def __init__(
        self,
        path: Path | str,
        defaults: Mapping[str, Any] | None = None,
        *,
        persistent: bool = True,
    ) -> None:
        self.path = Path(path)
        self.defaults: dict[str, Any] = deepcopy(dict(defaults if defaults is not None else default_copilot_settings()))
        self.data: dict[str, Any] = deep_merge_defaults({}, self.defaults)
        self.dirty = False
        self.last_error: str | None = None
        self.persistent = bool(persistent)
        self._listeners: dict[str, list[ChangeListener]] = {}

    def load(self) -> dict[str, Any]:
        previous = deepcopy(self.data)
        loaded: dict[str, Any] = {}
        missing = not self.persistent or not self.path.exists()
        self.last_error = None

        if not missing:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                # Keep the previous values; the broken file is left untouched.
                self.last_error = str(exc)
                return self.data
            if not isinstance(raw, dict):
                self.last_error = f"Settings root in '{self.path}' must be a JSON object, found {type(raw).__name__}."
                return self.data
            loaded = raw

        self.data = deep_merge_defaults(loaded, self.defaults)
        self.dirty = missing and self.persistent
        self._notify_diff(previous)
        return self.data

    def save(self) -> None:
        if not self.persistent:
            self.dirty = False
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.data, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise SettingsStoreError(f"Could not write settings file '{self.path}': {exc}") from exc
        self.dirty = False
        self.last_error = None

    def get(self, key: str, default: Any = None) -> Any:
        return dot_get(self.data, key, default)

    def set(self, key: str, value: Any) -> bool:
        if self.get(key, _MISSING) == value:
            return False
        dot_set(self.data, key, value)
        self.dirty = True
        self._emit(key, value)
        return True

    def config(self) -> NormalizedCopilotConfig:
        return NormalizedCopilotConfig.from_mapping(self.data)

    def on_change(self, key: str, callback: ChangeListener) -> Callable[[], None]:
        """Call `callback(key, value)` whenever `key` changes; returns an unsubscribe function."""
        bucket = self._listeners.setdefault(str(key), [])
        bucket.append(callback)

        def _unsubscribe() -> None:
            if callback in bucket:
                bucket.remove(callback)

        return _unsubscribe

    def _notify_diff(self, previous: Mapping[str, Any]) -> None:
        for key in list(self._listeners):
            before = dot_get(previous, key, _MISSING)
            after = self.get(key, _MISSING)
            if before != after:
                self._emit(key, None if after is _MISSING else after)

    def _emit(self, key: str, value: Any) -> None:
        for callback in list(self._listeners.get(key, [])):
            callback(key, value)
