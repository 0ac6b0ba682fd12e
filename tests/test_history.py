"""Tests for the conversation history."""

import pytest

from corvid.core.history import ConversationHistory
from corvid.core.llm.types import Message, ToolCallRequest


@pytest.fixture
def history():
    h = ConversationHistory("You are a test assistant.")
    for i in range(5):
        h.add_user_message(f"question {i} " + "x" * 40)
        h.add_assistant_message(f"answer {i} " + "y" * 40)
    return h


class TestConversationHistory:
    def test_system_message_first(self, history):
        messages = history.get_messages(100_000)
        assert messages[0] == Message(role="system", content="You are a test assistant.")
        assert len(messages) == 11

    def test_system_first_with_tiny_budget(self, history):
        messages = history.get_messages(0)
        assert messages == [Message(role="system", content="You are a test assistant.")]

    def test_longer_budget_keeps_more(self, history):
        previous = 0
        for budget in range(2048, 2048 + 200, 5):
            count = len(history.get_messages(budget))
            assert count >= previous
            previous = count

    def test_keeps_most_recent(self, history):
        messages = history.get_messages(2048 + 40)
        assert messages[-1].content.startswith("answer 4")
        assert all(m.role != "system" for m in messages[1:])

    def test_clear_leaves_only_system(self, history):
        history.clear()
        assert len(history) == 0
        assert len(history.get_messages(10)) == 1

    def test_set_system_prompt(self, history):
        history.set_system_prompt("New prompt")
        assert history.get_messages()[0].content == "New prompt"
        assert len(history) == 10

    def test_system_role_rejected(self, history):
        with pytest.raises(ValueError):
            history.append(Message(role="system", content="sneaky"))

    def test_tool_result_needs_known_call(self, history):
        with pytest.raises(ValueError, match="unknown tool call id"):
            history.add_tool_results([("missing", "output")])

    def test_tool_results_in_order(self):
        h = ConversationHistory("sys")
        h.add_user_message("go")
        h.add_assistant_message(
            None,
            [ToolCallRequest(id="a", name="read_file"), ToolCallRequest(id="b", name="read_file")],
        )
        added = h.add_tool_results([("a", "first"), ("b", "second")])
        assert [m.tool_call_id for m in added] == ["a", "b"]
        assert [m.role for m in h.messages] == ["user", "assistant", "tool", "tool"]

    def test_dict_round_trip_for_restore(self):
        h = ConversationHistory("sys")
        h.add_user_message("go")
        h.add_assistant_message("ok", [ToolCallRequest(id="a", name="list_directory", arguments='{"path": "."}')])
        h.add_tool_results([("a", "listing")])

        restored = ConversationHistory("sys")
        restored.load(h.to_dicts())
        assert restored.messages == h.messages


class TestMessage:
    def test_tool_calls_only_on_assistant(self):
        with pytest.raises(ValueError):
            Message(role="user", content="hi", tool_calls=(ToolCallRequest(id="a", name="x"),))

    def test_tool_message_requires_id(self):
        with pytest.raises(ValueError):
            Message(role="tool", content="result")

    def test_malformed_arguments(self):
        with pytest.raises(ValueError):
            ToolCallRequest(id="a", name="x", arguments="{not json").parse_arguments()
        with pytest.raises(ValueError):
            ToolCallRequest(id="a", name="x", arguments="[1, 2]").parse_arguments()
        assert ToolCallRequest(id="a", name="x", arguments="").parse_arguments() == {}
