"""Tests for checkpoint capture and restore."""

import json
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock

from corvid.core.approval import ApprovalPolicy, ConfirmationOutcome
from corvid.core.cancel import CancelToken
from corvid.core.checkpoint import Checkpoint, Checkpointer, CheckpointStore, checkpoint_tag
from corvid.core.history import ConversationHistory
from corvid.core.llm.types import ToolCallRequest
from corvid.core.tool_scheduler import ScheduledToolCall, ToolCallStatus, ToolScheduler
from corvid.errors import CheckpointNotFoundError
from corvid.tools import build_default_tools


class FakeSnapshotter:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []
        self.restored = []

    async def create_snapshot(self, label):
        if self.fail:
            raise RuntimeError("git not available")
        self.created.append(label)
        return f"sha{len(self.created)}"

    async def restore(self, snapshot_id):
        self.restored.append(snapshot_id)


@pytest.fixture
async def store(tmp_path):
    s = CheckpointStore(tmp_path / "checkpoints.db")
    await s.start()
    yield s
    await s.stop()


@pytest.fixture
def history():
    h = ConversationHistory("sys")
    h.add_user_message("please edit main.py")
    return h


def _scheduled(name="write_file", **params):
    request = ToolCallRequest(id="c1", name=name, arguments=json.dumps(params))
    return ScheduledToolCall(request, params=params)


class TestCheckpointStore:
    async def test_save_load(self, store):
        await store.save("t1", {"a": 1})
        assert await store.load("t1") == {"a": 1}
        assert await store.load("missing") is None

    async def test_save_overwrites(self, store):
        await store.save("t1", {"a": 1})
        await store.save("t1", {"a": 2})
        assert await store.load("t1") == {"a": 2}
        assert await store.list_tags() == ["t1"]

    async def test_list_and_delete(self, store):
        await store.save("t1", {})
        await store.save("t2", {})
        assert set(await store.list_tags()) == {"t1", "t2"}
        assert await store.delete("t1")
        assert not await store.delete("t1")
        assert await store.list_tags() == ["t2"]


class TestCheckpointTag:
    def test_timestamp_file_and_tool(self):
        now = datetime(2025, 3, 4, 5, 6, 7, 890000, tzinfo=timezone.utc)
        tag = checkpoint_tag("/work/src/main.py", "write_file", now)
        assert tag == "2025-03-04T05-06-07-890000-main.py-write_file"


class TestCheckpointer:
    async def test_capture_and_restore(self, store, history):
        snapshots = FakeSnapshotter()
        checkpointer = Checkpointer(store, history, snapshots)
        call = _scheduled(file_path="main.py", content="print('new')\n")

        tag = await checkpointer.capture(call)
        assert tag.endswith("-main.py-write_file")
        assert snapshots.created == ["Snapshot for write_file"]

        payload = await store.load(tag)
        assert payload["tool_call"] == {
            "name": "write_file",
            "args": {"file_path": "main.py", "content": "print('new')\n"},
        }
        assert payload["snapshot_id"] == "sha1"
        assert payload["history"][0]["content"] == "please edit main.py"

        # The conversation moves on, then is rolled back.
        history.add_assistant_message("done")
        checkpoint = await checkpointer.restore(tag)
        assert [m.role for m in history.messages] == ["user"]
        assert snapshots.restored == ["sha1"]
        assert checkpoint.tool_name == "write_file"
        assert checkpoint.to_request().parse_arguments() == checkpoint.tool_args

    async def test_without_file_path_skipped(self, store, history):
        checkpointer = Checkpointer(store, history)
        assert await checkpointer.capture(_scheduled(name="run_shell_command", command="ls")) is None
        assert await store.list_tags() == []

    async def test_snapshot_failure_does_not_raise(self, store, history):
        checkpointer = Checkpointer(store, history, FakeSnapshotter(fail=True))
        assert await checkpointer.capture(_scheduled(file_path="a.py", content="")) is None
        assert await store.list_tags() == []

    async def test_without_snapshotter(self, store, history):
        checkpointer = Checkpointer(store, history)
        tag = await checkpointer.capture(_scheduled(file_path="a.py", content=""))
        checkpoint = Checkpoint.from_payload(tag, await store.load(tag))
        assert checkpoint.snapshot_id is None
        assert checkpoint.file_path == "a.py"

    async def test_restore_unknown_tag(self, store, history):
        checkpointer = Checkpointer(store, history)
        with pytest.raises(CheckpointNotFoundError, match="nope"):
            await checkpointer.restore("nope")


class TestWriteFileCheckpoint:
    async def test_write_checkpointed_before_execution(self, store, history, tmp_path):
        target = tmp_path / "main.py"
        target.write_text("print('old')\n")
        checkpointer = Checkpointer(store, history)

        async def approve(call, confirmation):
            # The checkpoint exists before the user is asked and before the file changes.
            assert await store.list_tags()
            assert target.read_text() == "print('old')\n"
            assert "+print('new')" in confirmation.details
            return ConfirmationOutcome.PROCEED_ONCE

        handler = AsyncMock(side_effect=approve)
        scheduler = ToolScheduler(
            build_default_tools(tmp_path), ApprovalPolicy(), approval_handler=handler, checkpointer=checkpointer
        )
        request = ToolCallRequest(
            id="c1",
            name="write_file",
            arguments=json.dumps({"file_path": "main.py", "content": "print('new')\n"}),
        )
        batch = await scheduler.run([request], CancelToken())

        assert batch.calls[0].status is ToolCallStatus.SUCCESS
        assert target.read_text() == "print('new')\n"
        [tag] = await store.list_tags()
        assert tag.endswith("-main.py-write_file")
