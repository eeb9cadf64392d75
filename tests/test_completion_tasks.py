from __future__ import annotations

import os

from copilot_bridge.ai.completion_tasks import CompletionTaskManager
from copilot_bridge.ai.copilot_client import Completion, CopilotClient, CopilotStatus
from copilot_bridge.lsp.types import Position
from tests.fakes import FakeTransport, completion_payload


def _setup(transport: FakeTransport, tmp_path) -> tuple[CopilotClient, CompletionTaskManager]:
    client = CopilotClient(transport)
    manager = CompletionTaskManager(
        client,
        workspace_folder=str(tmp_path),
        active_file_path=str(tmp_path / "pkg" / "mod.py"),
    )
    manager.language_id = "python"
    return client, manager


def _rejected(transport: FakeTransport) -> list[list[str]]:
    return [item["params"]["uuids"] for item in transport.sent_with("notifyRejected")]


def test_first_candidate_is_delivered_and_the_rest_rejected(transport: FakeTransport, tmp_path) -> None:
    client, manager = _setup(transport, tmp_path)
    delivered: list[Completion] = []

    manager.start_one(Position(0, 3), on_completion=delivered.append)
    assert client.status is CopilotStatus.IN_PROGRESS
    request = transport.last_request("getCompletions")
    assert request["params"]["doc"]["relativePath"] == os.path.join("pkg", "mod.py")
    assert request["params"]["doc"]["languageId"] == "python"

    transport.respond(
        request["id"],
        {
            "completions": [
                completion_payload("u1", "one", start=(0, 0), end=(0, 3)),
                completion_payload("u2", "two", start=(0, 0), end=(0, 3)),
                completion_payload("u3", "three", start=(0, 0), end=(0, 3)),
            ]
        },
    )

    assert [item.uuid for item in delivered] == ["u1"]
    assert _rejected(transport) == [["u2", "u3"]]
    assert client.status is CopilotStatus.NORMAL
    assert manager.task_ids == []


def test_cancelled_task_rejects_every_candidate(transport: FakeTransport, tmp_path) -> None:
    client, manager = _setup(transport, tmp_path)
    delivered: list[Completion] = []

    manager.start_one(Position(0, 1), on_completion=delivered.append)
    stale = transport.last_request("getCompletions")
    manager.cancel_all()
    assert client.status is CopilotStatus.NORMAL
    manager.start_one(Position(0, 2), on_completion=delivered.append)
    fresh = transport.last_request("getCompletions")

    transport.respond(
        stale["id"],
        {"completions": [completion_payload("old1", "a", start=(0, 0), end=(0, 1)), completion_payload("old2", "b", start=(0, 0), end=(0, 1))]},
    )
    assert delivered == []
    assert _rejected(transport) == [["old1", "old2"]]
    assert client.status is CopilotStatus.IN_PROGRESS

    transport.respond(fresh["id"], {"completions": [completion_payload("new", "c", start=(0, 0), end=(0, 2))]})
    assert [item.uuid for item in delivered] == ["new"]
    assert client.status is CopilotStatus.NORMAL


def test_cancellation_reason_and_empty_results_deliver_nothing(transport: FakeTransport, tmp_path) -> None:
    _client, manager = _setup(transport, tmp_path)
    delivered: list[Completion] = []

    manager.start_one(Position(0, 0), on_completion=delivered.append)
    transport.respond(
        transport.last_request("getCompletions")["id"],
        {"completions": [completion_payload("x", "x", start=(0, 0), end=(0, 0))], "cancellationReason": "DocumentVersionMismatch"},
    )
    manager.start_one(Position(0, 0), on_completion=delivered.append)
    transport.respond(transport.last_request("getCompletions")["id"], {"completions": []})

    assert delivered == []
    assert _rejected(transport) == []


def test_cancel_one_clears_activity_once_everything_is_cancelled(transport: FakeTransport, tmp_path) -> None:
    client, manager = _setup(transport, tmp_path)
    first = manager.start_one(Position(0, 0))
    second = manager.start_one(Position(0, 0))

    manager.cancel_one(first)
    assert client.status is CopilotStatus.IN_PROGRESS
    manager.cancel_one(second)
    assert client.status is CopilotStatus.NORMAL
    assert manager.is_all_cancelled
    manager.cancel_one(12345)


def test_failed_request_clears_activity(transport: FakeTransport, tmp_path) -> None:
    client, manager = _setup(transport, tmp_path)
    manager.start_one(Position(0, 0))
    transport.respond_error(transport.last_request("getCompletions")["id"], -32603, "server exploded")
    assert client.status is CopilotStatus.NORMAL
    assert manager.task_ids == []


def test_relative_path_without_workspace_is_the_path(transport: FakeTransport) -> None:
    manager = CompletionTaskManager(CopilotClient(transport), active_file_path="/tmp/x.py")
    assert manager.relative_path() == "/tmp/x.py"
