"""Headless driver: start the server, run the handshake, report account status."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from copilot_bridge.ai.copilot_client import CopilotClient, StatusChangeEvent
from copilot_bridge.lsp.transport import ProcessTransport, RelayTransport
from copilot_bridge.settings_schema import NormalizedCopilotConfig
from copilot_bridge.settings_store import JsonSettingsStore, SettingsStoreError

logger = logging.getLogger("copilot_bridge")

SIGN_IN_ARG = "--sign-in"
SETTINGS_ENV = "COPILOT_BRIDGE_SETTINGS"
STARTUP_TIMEOUT_MS = 30000

_LOG_LEVELS = {"off": logging.CRITICAL, "error": logging.ERROR, "debug": logging.DEBUG}


def _split_startup_args(argv: list[str]) -> tuple[list[str], bool]:
    filtered: list[str] = []
    sign_in = False
    for arg in argv:
        if arg == SIGN_IN_ARG:
            sign_in = True
            continue
        filtered.append(arg)
    return filtered, sign_in


def _canonical_existing_dir(path_value: str | Path | None) -> str | None:
    text = str(path_value or "").strip()
    if not text:
        return None
    candidate = Path(text).expanduser()
    if not candidate.is_dir():
        return None
    return str(candidate.resolve())


def _default_settings_path() -> Path:
    explicit = str(os.environ.get(SETTINGS_ENV) or "").strip()
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".config" / "copilot-bridge" / "settings.json"


def _load_settings(path: Path) -> JsonSettingsStore:
    store = JsonSettingsStore(path)
    store.load()
    if store.last_error:
        logger.warning("Ignoring unreadable settings file: %s", store.last_error)
    elif store.dirty:
        try:
            store.save()
        except SettingsStoreError as exc:
            logger.warning("%s", exc)
    return store


def _start_transport(cfg: NormalizedCopilotConfig):
    if cfg.transport == "relay":
        transport = RelayTransport()
        transport.connect_to(cfg.relay_host, cfg.relay_port)
        return transport
    if not cfg.server_path:
        raise SystemExit("server_path is not configured; set it in the settings file.")
    transport = ProcessTransport()
    transport.start(cfg.node_path, [cfg.server_path, *cfg.server_args], cwd=str(Path(cfg.server_path).parent))
    return transport


def run(argv: list[str]) -> int:
    cli_args, sign_in = _split_startup_args(argv)
    cfg = _load_settings(_default_settings_path()).config()
    logging.basicConfig(
        level=_LOG_LEVELS.get(cfg.logging, logging.ERROR),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    workspace_folder = _canonical_existing_dir(cli_args[0]) if cli_args else None
    transport = _start_transport(cfg)
    client = CopilotClient(transport, logging_level=cfg.logging)
    exit_code = {"value": 1}
    startup_timer = QTimer()
    startup_timer.setSingleShot(True)

    def _finish(code: int) -> None:
        exit_code["value"] = code
        client.exit()
        transport.stop()
        app.quit()

    def _on_status(event: StatusChangeEvent) -> None:
        print(f"Copilot status: {event.old_status.value} -> {event.new_status.value}")

    def _on_sign_in(result: object) -> None:
        data = result if isinstance(result, dict) else {}
        if data.get("status") == "AlreadySignedIn":
            print(f"Already signed in as {data.get('user', '')}")
            _finish(0)
            return
        print(f"Open {data.get('verificationUri', '')} and enter the code {data.get('userCode', '')}")
        client.sign_in_confirm(str(data.get("userCode") or ""), on_result=_on_signed_in, on_error=_on_error)

    def _on_signed_in(result: object) -> None:
        print(f"Signed in: {result}")
        _finish(0)

    def _on_account(result: object) -> None:
        data = result if isinstance(result, dict) else {}
        print(f"Account status: {data.get('status', 'unknown')} {data.get('user', '')}".rstrip())
        if sign_in and data.get("status") != "OK":
            client.sign_in_initiate(on_result=_on_sign_in, on_error=_on_error)
            return
        _finish(0)

    def _on_ready(version: object) -> None:
        startup_timer.stop()
        print(f"Copilot server version: {version}")
        client.check_status(on_result=_on_account, on_error=_on_error)

    def _on_error(error: Exception) -> None:
        logger.error("Copilot request failed: %s", error)
        _finish(1)

    def _on_timeout() -> None:
        logger.error("Timed out waiting for Copilot")
        _finish(1)

    client.on("changeStatus", _on_status)
    client.lsp.statusMessage.connect(lambda text: logger.info("%s", text))
    client.start_handshake(
        workspace_folder=workspace_folder or "",
        editor_info={"name": cfg.editor_name, "version": cfg.editor_version},
        editor_plugin_info={"name": cfg.plugin_name, "version": cfg.plugin_version},
        trace=cfg.trace,
        on_ready=_on_ready,
        on_error=_on_error,
    )
    startup_timer.timeout.connect(_on_timeout)
    startup_timer.start(STARTUP_TIMEOUT_MS)
    app.exec()
    return int(exit_code["value"])


def main(argv: list[str] | None = None) -> int:
    return run(list(sys.argv[1:] if argv is None else argv))


if __name__ == "__main__":
    raise SystemExit(main())
