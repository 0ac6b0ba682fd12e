"""Checkpoints taken before filesystem-mutating tool calls, persisted in SQLite."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol
from uuid import uuid4

import aiosqlite

from corvid.core.history import ConversationHistory
from corvid.core.llm.types import ToolCallRequest
from corvid.errors import CheckpointNotFoundError
from corvid.utils.logging import get_logger

if TYPE_CHECKING:
    from corvid.core.tool_scheduler import ScheduledToolCall

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    tag TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""


class Snapshotter(Protocol):
    """Content-addressable snapshots of the working tree (e.g. a shadow git repo)."""

    async def create_snapshot(self, label: str) -> str | None: ...

    async def restore(self, snapshot_id: str) -> None: ...


@dataclass
class Checkpoint:
    tag: str
    tool_name: str
    tool_args: dict[str, Any]
    file_path: str
    history: list[dict[str, Any]] = field(default_factory=list)
    snapshot_id: str | None = None
    created_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "history": self.history,
            "snapshot_id": self.snapshot_id,
            "tool_call": {"name": self.tool_name, "args": self.tool_args},
            "file_path": self.file_path,
            "created_at": self.created_at,
        }

    @classmethod
    def from_payload(cls, tag: str, payload: dict[str, Any]) -> Checkpoint:
        tool_call = payload.get("tool_call") or {}
        return cls(
            tag=tag,
            tool_name=tool_call.get("name", ""),
            tool_args=tool_call.get("args") or {},
            file_path=payload.get("file_path", ""),
            history=payload.get("history") or [],
            snapshot_id=payload.get("snapshot_id"),
            created_at=payload.get("created_at", ""),
        )

    def to_request(self) -> ToolCallRequest:
        """The checkpointed call, ready to be re-issued."""
        return ToolCallRequest(
            id=f"restore_{uuid4().hex[:12]}",
            name=self.tool_name,
            arguments=json.dumps(self.tool_args),
        )


class CheckpointStore:
    """JSON payloads keyed by tag."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def save(self, tag: str, payload: dict[str, Any]) -> None:
        """Upsert a checkpoint payload."""
        assert self._db is not None
        now = datetime.now(timezone.utc).isoformat()
        await self._db.execute(
            "INSERT INTO checkpoints (tag, payload, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(tag) DO UPDATE SET payload = excluded.payload",
            (tag, json.dumps(payload), now),
        )
        await self._db.commit()

    async def load(self, tag: str) -> dict[str, Any] | None:
        assert self._db is not None
        cursor = await self._db.execute("SELECT payload FROM checkpoints WHERE tag = ?", (tag,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def list_tags(self) -> list[str]:
        """Tags, newest first."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT tag FROM checkpoints ORDER BY created_at DESC, tag DESC"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def delete(self, tag: str) -> bool:
        """Delete a checkpoint. Returns True if one was deleted."""
        assert self._db is not None
        cursor = await self._db.execute("DELETE FROM checkpoints WHERE tag = ?", (tag,))
        await self._db.commit()
        return cursor.rowcount > 0


def checkpoint_tag(file_path: str, tool_name: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{stamp}-{Path(file_path).name}-{tool_name}"


class Checkpointer:
    """Captures history plus a working-tree snapshot before a mutating call runs."""

    def __init__(
        self,
        store: CheckpointStore,
        history: ConversationHistory,
        snapshotter: Snapshotter | None = None,
    ) -> None:
        self._store = store
        self._history = history
        self._snapshotter = snapshotter

    async def capture(self, call: ScheduledToolCall) -> str | None:
        """Save a checkpoint for ``call``. Returns the tag, or None when skipped.

        Never raises: a failed checkpoint must not block the tool call.
        """
        file_path = call.params.get("file_path") or call.params.get("path")
        if not isinstance(file_path, str) or not file_path:
            log.debug("checkpoint_skipped", tool=call.name, reason="no file path")
            return None

        tag = checkpoint_tag(file_path, call.name)
        try:
            snapshot_id = None
            if self._snapshotter is not None:
                snapshot_id = await self._snapshotter.create_snapshot(f"Snapshot for {call.name}")
            checkpoint = Checkpoint(
                tag=tag,
                tool_name=call.name,
                tool_args=dict(call.params),
                file_path=file_path,
                history=self._history.to_dicts(),
                snapshot_id=snapshot_id,
                created_at=datetime.now(timezone.utc).isoformat(),
            )
            await self._store.save(tag, checkpoint.to_payload())
        except Exception:
            log.exception("checkpoint_failed", tool=call.name, file_path=file_path)
            return None

        log.info("checkpoint_saved", tag=tag, snapshot_id=snapshot_id)
        return tag

    async def restore(self, tag: str) -> Checkpoint:
        """Reload history and the working tree; the caller may re-issue the call."""
        payload = await self._store.load(tag)
        if payload is None:
            raise CheckpointNotFoundError(tag)
        checkpoint = Checkpoint.from_payload(tag, payload)
        self._history.load(checkpoint.history)
        if checkpoint.snapshot_id and self._snapshotter is not None:
            await self._snapshotter.restore(checkpoint.snapshot_id)
        log.info("checkpoint_restored", tag=tag, snapshot_id=checkpoint.snapshot_id)
        return checkpoint
