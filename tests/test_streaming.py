"""Tests for stream framing and tool-call reassembly."""

from corvid.core.llm.streaming import (
    STREAM_END,
    LineBuffer,
    StreamState,
    ToolCallAccumulator,
    iter_frames,
    parse_ndjson_line,
    parse_sse_line,
)
from corvid.core.llm.types import ChunkType


async def _chunks(*parts):
    for part in parts:
        yield part


async def _collect(chunks, framing="sse"):
    return [frame async for frame in iter_frames(chunks, framing)]


class TestLineBuffer:
    def test_carries_partial_line(self):
        buf = LineBuffer()
        assert buf.feed('data: {"a"') == []
        assert buf.feed(': 1}\ndata: {"b": 2}\n') == ['data: {"a": 1}', 'data: {"b": 2}']
        assert buf.flush() is None

    def test_strips_carriage_returns(self):
        buf = LineBuffer()
        assert buf.feed("one\r\ntwo\r\n") == ["one", "two"]

    def test_flush_returns_unterminated_tail(self):
        buf = LineBuffer()
        buf.feed('{"done": true}')
        assert buf.flush() == '{"done": true}'


class TestLineParsers:
    def test_sse_terminators(self):
        assert parse_sse_line("data: [DONE]") is STREAM_END
        assert parse_sse_line("data:") is STREAM_END

    def test_sse_ignores_non_data_lines(self):
        assert parse_sse_line("event: message_start") is None
        assert parse_sse_line(": keep-alive") is None
        assert parse_sse_line("") is None

    def test_sse_skips_malformed(self):
        assert parse_sse_line("data: {oops") is None
        assert parse_sse_line('data: {"ok": true}') == {"ok": True}

    def test_ndjson(self):
        assert parse_ndjson_line('{"response": "hi", "done": false}') == {
            "response": "hi",
            "done": False,
        }
        assert parse_ndjson_line("not json") is None
        assert parse_ndjson_line("   ") is None


class TestIterFrames:
    async def test_split_mid_line(self):
        frames = await _collect(
            _chunks('data: {"n": ', '1}\n\nda', 'ta: {"n": 2}\n', "data: [DONE]\n")
        )
        assert frames == [{"n": 1}, {"n": 2}, STREAM_END]

    async def test_malformed_frame_does_not_abort(self):
        frames = await _collect(_chunks('data: {"n": 1}\ndata: {bad\ndata: {"n": 3}\n'))
        assert frames == [{"n": 1}, {"n": 3}]

    async def test_ndjson_without_trailing_newline(self):
        frames = await _collect(
            _chunks('{"response": "a", "done": false}\n{"response": "b", "done": true}'),
            framing="ndjson",
        )
        assert [f["response"] for f in frames] == ["a", "b"]


class TestToolCallAccumulator:
    def test_concatenates_argument_fragments_by_index(self):
        acc = ToolCallAccumulator()
        acc.update(0, id="call_a", name="read_file", arguments='{"file_')
        acc.update(1, id="call_b", name="list_directory", arguments='{"path"')
        acc.update(0, arguments='path": "a.py"}')
        acc.update(1, arguments=': "."}')

        calls = acc.finalize()
        assert [c.id for c in calls] == ["call_a", "call_b"]
        assert calls[0].parse_arguments() == {"file_path": "a.py"}
        assert calls[1].parse_arguments() == {"path": "."}

    def test_missing_id_and_arguments_defaulted(self):
        acc = ToolCallAccumulator()
        acc.update(3, name="list_directory")
        [call] = acc.finalize()
        assert call.id.startswith("call_")
        assert call.arguments == "{}"

    def test_fallback_ids_differ_between_turns(self):
        ids = []
        for _ in range(2):
            acc = ToolCallAccumulator()
            acc.update(0, name="list_directory")
            ids.append(acc.finalize()[0].id)
        assert ids[0] != ids[1]

    def test_next_index(self):
        acc = ToolCallAccumulator()
        assert acc.next_index() == 0
        acc.update(0, name="a")
        assert acc.next_index() == 1


class TestStreamState:
    def test_chunks_in_arrival_order_and_single_done(self):
        seen = []
        state = StreamState(on_chunk=seen.append)
        state.emit_content("Hel")
        state.emit_tool_delta(0, id="c1", name="read_file")
        state.emit_content("lo")
        state.emit_content("")
        state.emit_done()
        state.emit_done()

        assert [c.type for c in seen] == [
            ChunkType.CONTENT,
            ChunkType.TOOL_CALL_DELTA,
            ChunkType.CONTENT,
            ChunkType.DONE,
        ]
        result = state.to_result()
        assert result.content == "Hello"
        assert result.tool_calls[0].name == "read_file"
