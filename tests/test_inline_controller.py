from __future__ import annotations

import time

from PySide6.QtCore import QCoreApplication

from copilot_bridge.ai.completion_session import SessionState
from copilot_bridge.ai.completion_tasks import CompletionTaskManager
from copilot_bridge.ai.copilot_client import CopilotClient
from copilot_bridge.ai.host_editor import TextBufferEditor
from copilot_bridge.ai.inline_controller import InlineCompletionController
from copilot_bridge.lsp.types import Position
from copilot_bridge.settings_schema import default_copilot_settings
from copilot_bridge.settings_store import JsonSettingsStore
from tests.fakes import FakeTransport, completion_payload


def _controller(transport: FakeTransport, tmp_path, text: str = "", **settings):
    client = CopilotClient(transport)
    path = str(tmp_path / "mod.py")
    editor = TextBufferEditor(text, file_path=path, language_id="python")
    tasks = CompletionTaskManager(client, workspace_folder=str(tmp_path))
    config = default_copilot_settings()
    config.update(settings)
    controller = InlineCompletionController(client=client, editor=editor, task_manager=tasks, settings=config)
    controller.open_document()
    return client, editor, controller


def _answer(transport: FakeTransport, *completions: dict) -> None:
    request = transport.last_request("getCompletions")
    transport.respond(request["id"], {"completions": list(completions)})


def test_edits_are_debounced_into_one_change(transport: FakeTransport, tmp_path) -> None:
    client, editor, controller = _controller(transport, tmp_path)
    editor.type_text("a")
    editor.type_text("b")
    assert controller.has_pending_change()
    assert transport.sent_with("textDocument/didChange") == []

    controller.flush()

    changes = transport.sent_with("textDocument/didChange")
    assert len(changes) == 1
    assert changes[0]["params"]["textDocument"]["version"] == 1
    assert changes[0]["params"]["contentChanges"] == [{"text": "ab"}]
    request = transport.last_request("getCompletions")
    assert request["params"]["doc"]["position"] == {"line": 0, "character": 2}
    assert request["params"]["doc"]["version"] == 1
    assert transport.sent_methods().index("textDocument/didChange") < transport.sent_methods().index("getCompletions")


def test_debounce_timer_fires_from_the_event_loop(transport: FakeTransport, tmp_path) -> None:
    _client, editor, _controller_obj = _controller(transport, tmp_path, debounce_ms=0)
    editor.type_text("x")
    deadline = time.monotonic() + 2.0
    while not transport.sent_with("getCompletions") and time.monotonic() < deadline:
        QCoreApplication.processEvents()
    assert transport.sent_with("textDocument/didChange")
    assert transport.sent_with("getCompletions")


def test_completion_is_presented_and_accepted(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path, text="print(")
    started = []
    controller.sessionStarted.connect(started.append)
    controller.request_completion()
    _answer(transport, completion_payload("c1", "print('hi')", start=(0, 0), end=(0, 6), display_text="'hi')"))

    session = controller.session
    assert session is not None
    assert len(started) == 1
    assert editor.text() == "print('hi')"

    editor.press_key("Tab")
    assert session.state is SessionState.ACCEPTED
    assert controller.session is None
    assert editor.text() == "print('hi')"


def test_newer_completion_replaces_the_live_one(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path, text="x = ")
    controller.request_completion()
    _answer(transport, completion_payload("first", "x = 1", start=(0, 0), end=(0, 4), display_text="1"))
    first = controller.session

    controller.request_completion()
    _answer(transport, completion_payload("second", "x = 2", start=(0, 0), end=(0, 4), display_text="2"))

    assert first.state is SessionState.REJECTED
    assert controller.session is not None and controller.session.uuid == "second"
    assert editor.text() == "x = 2"
    notes = [
        (item["method"], item["params"])
        for item in transport.sent()
        if item.get("method") in ("notifyShown", "notifyRejected", "notifyAccepted")
    ]
    assert notes == [
        ("notifyShown", {"uuid": "first"}),
        ("notifyRejected", {"uuids": ["first"]}),
        ("notifyShown", {"uuid": "second"}),
    ]


def test_stale_answer_is_rejected_while_typing_continues(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path)
    editor.type_text("a")
    controller.flush()
    stale = transport.last_request("getCompletions")
    editor.type_text("b")

    transport.respond(stale["id"], {"completions": [completion_payload("late", "abc", start=(0, 0), end=(0, 1))]})

    assert controller.session is None
    assert transport.sent_with("notifyRejected")[-1]["params"] == {"uuids": ["late"]}
    assert editor.text() == "ab"


def test_typing_rejects_live_session(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path, text="fo")
    controller.request_completion()
    _answer(transport, completion_payload("c", "foo", start=(0, 0), end=(0, 2), display_text="o"))
    session = controller.session

    editor.type_text("x")

    assert session.reject_reason == "edit"
    assert controller.session is None
    assert editor.text() == "fox"
    assert controller.has_pending_change()


def test_incremental_sync_when_server_supports_it(transport: FakeTransport, tmp_path) -> None:
    client, editor, controller = _controller(transport, tmp_path, text="hello")
    client.lsp.server_capabilities = {"textDocumentSync": {"openClose": True, "change": 2}}
    editor.type_text("!")
    controller.flush()

    change = transport.sent_with("textDocument/didChange")[-1]["params"]["contentChanges"]
    assert change == [{"range": {"start": {"line": 0, "character": 5}, "end": {"line": 0, "character": 5}}, "text": "!"}]


def test_switching_files_closes_and_reopens(transport: FakeTransport, tmp_path) -> None:
    client, editor, controller = _controller(transport, tmp_path, text="one")
    editor.type_text("!")
    controller.flush()
    assert client.version == 1

    new_path = str(tmp_path / "other.py")
    editor.set_file_path(new_path)
    controller.set_active_file(new_path, str(tmp_path / "mod.py"))

    assert transport.sent_with("textDocument/didClose")[-1]["params"]["textDocument"]["uri"] == client.path_to_uri(
        str(tmp_path / "mod.py")
    )
    reopened = transport.sent_with("textDocument/didOpen")[-1]["params"]["textDocument"]
    assert reopened["uri"] == client.path_to_uri(new_path)
    assert reopened["version"] == 0
    assert client.version == 0


def test_workspace_folder_change(transport: FakeTransport, tmp_path) -> None:
    client, _editor, controller = _controller(transport, tmp_path)
    new_folder = tmp_path / "next"
    new_folder.mkdir()
    controller.set_workspace_folder(str(new_folder), str(tmp_path))
    event = transport.sent_with("workspace/didChangeWorkspaceFolders")[-1]["params"]["event"]
    assert event["added"] == [{"uri": client.path_to_uri(str(new_folder)), "name": "next"}]
    assert event["removed"][0]["name"] == tmp_path.name


def test_disabling_completions_stops_everything(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path, text="a")
    controller.request_completion()
    _answer(transport, completion_payload("c", "ab", start=(0, 0), end=(0, 1), display_text="b"))
    session = controller.session

    settings = default_copilot_settings()
    settings["disable_completions"] = True
    controller.update_settings(settings)

    assert session.state is SessionState.REJECTED
    assert controller.session is None
    editor.type_text("z")
    assert not controller.has_pending_change()


def test_shutdown_disconnects_from_editor(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path)
    controller.shutdown()
    editor.type_text("q")
    assert not controller.has_pending_change()
    assert editor.caret_position() == Position(0, 1)


def test_opening_a_file_from_none_drops_the_old_suggestion(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path, text="a")
    controller.request_completion()
    _answer(transport, completion_payload("c", "ab", start=(0, 0), end=(0, 1), display_text="b"))
    session = controller.session

    new_path = str(tmp_path / "other.py")
    editor.set_file_path(new_path)
    controller.set_active_file(new_path)

    assert session.state is SessionState.REJECTED
    assert controller.session is None
    assert transport.sent_with("textDocument/didClose") == []


def test_bound_settings_store_changes_apply_live(transport: FakeTransport, tmp_path) -> None:
    _client, editor, controller = _controller(transport, tmp_path, text="a")
    store = JsonSettingsStore(tmp_path / "settings.json", persistent=False)
    store.load()
    store.set("debounce_ms", 120)
    unbind = controller.bind_settings(store)
    assert controller.config.debounce_ms == 120

    store.set("tab_size", 2)
    assert controller.config.tab_size == 2

    controller.request_completion()
    _answer(transport, completion_payload("c", "ab", start=(0, 0), end=(0, 1), display_text="b"))
    session = controller.session
    store.set("disable_completions", True)
    assert session.state is SessionState.REJECTED
    editor.type_text("z")
    assert not controller.has_pending_change()

    unbind()
    store.set("debounce_ms", 7)
    assert controller.config.debounce_ms == 120
