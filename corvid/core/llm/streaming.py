"""Stream framing (SSE / NDJSON) and per-stream accumulation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from corvid.core.llm.types import (
    ChunkType,
    StreamCallback,
    StreamChunk,
    ToolCallRequest,
    ToolCallResult,
    Usage,
    new_call_id,
)
from corvid.utils.logging import get_logger

log = get_logger(__name__)


class StreamEnd:
    """Sentinel frame: the backend signalled end of stream."""

    def __repr__(self) -> str:
        return "STREAM_END"


STREAM_END = StreamEnd()

Frame = dict[str, Any] | StreamEnd


class LineBuffer:
    """Splits arbitrary text reads into complete lines.

    A read may stop mid-line; the trailing partial line is carried over to the
    next ``feed``.
    """

    def __init__(self) -> None:
        self._carry = ""

    def feed(self, text: str) -> list[str]:
        data = self._carry + text
        lines = data.split("\n")
        self._carry = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> str | None:
        rest, self._carry = self._carry, ""
        rest = rest.rstrip("\r")
        return rest if rest.strip() else None


def parse_sse_line(line: str) -> Frame | None:
    """One SSE line -> JSON frame, STREAM_END, or None (ignored / malformed)."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    if not payload or payload == "[DONE]":
        return STREAM_END
    try:
        frame = json.loads(payload)
    except json.JSONDecodeError:
        log.debug("sse_frame_skipped", payload=payload[:200])
        return None
    return frame if isinstance(frame, dict) else None


def parse_ndjson_line(line: str) -> Frame | None:
    line = line.strip()
    if not line:
        return None
    try:
        frame = json.loads(line)
    except json.JSONDecodeError:
        log.debug("ndjson_frame_skipped", payload=line[:200])
        return None
    return frame if isinstance(frame, dict) else None


async def iter_frames(chunks: AsyncIterator[str], framing: str = "sse") -> AsyncIterator[Frame]:
    """Yield frames from a text stream in arrival order."""
    parse = parse_sse_line if framing == "sse" else parse_ndjson_line
    buffer = LineBuffer()
    async for text in chunks:
        for line in buffer.feed(text):
            frame = parse(line)
            if frame is not None:
                yield frame
    tail = buffer.flush()
    if tail is not None:
        frame = parse(tail)
        if frame is not None:
            yield frame


@dataclass
class _PartialCall:
    id: str = ""
    name: str = ""
    arguments: str = ""

    def snapshot(self) -> ToolCallRequest:
        return ToolCallRequest(id=self.id, name=self.name, arguments=self.arguments)


class ToolCallAccumulator:
    """Reassembles streamed tool-call fragments keyed by the per-response index.

    Owned by the single task reading one stream; finalized into immutable
    ToolCallRequest values only when the stream ends.
    """

    def __init__(self) -> None:
        self._calls: dict[int, _PartialCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, index: int) -> bool:
        return index in self._calls

    def next_index(self) -> int:
        return max(self._calls, default=-1) + 1

    def update(
        self,
        index: int,
        *,
        id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
        replace_name: bool = False,
    ) -> ToolCallRequest:
        call = self._calls.setdefault(index, _PartialCall())
        if id:
            call.id = id
        if name:
            call.name = name if replace_name else call.name + name
        if arguments:
            call.arguments += arguments
        return call.snapshot()

    def finalize(self) -> list[ToolCallRequest]:
        result = []
        for index in sorted(self._calls):
            call = self._calls[index]
            result.append(
                ToolCallRequest(
                    id=call.id or new_call_id(),
                    name=call.name,
                    arguments=call.arguments or "{}",
                )
            )
        return result


@dataclass
class StreamState:
    """Everything one streaming call has produced so far."""

    on_chunk: StreamCallback
    content_parts: list[str] = field(default_factory=list)
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    usage: Usage | None = None
    done_emitted: bool = False

    def emit_content(self, text: str) -> None:
        if not text:
            return
        self.content_parts.append(text)
        self.on_chunk(StreamChunk(type=ChunkType.CONTENT, content=text))

    def emit_tool_delta(self, index: int, **fragment: Any) -> None:
        snapshot = self.tool_calls.update(index, **fragment)
        self.on_chunk(
            StreamChunk(type=ChunkType.TOOL_CALL_DELTA, tool_call=snapshot, index=index)
        )

    def emit_done(self) -> None:
        if self.done_emitted:
            return
        self.done_emitted = True
        self.on_chunk(StreamChunk(type=ChunkType.DONE))

    def to_result(self) -> ToolCallResult:
        content = "".join(self.content_parts)
        return ToolCallResult(
            content=content or None,
            tool_calls=self.tool_calls.finalize(),
            usage=self.usage,
        )
