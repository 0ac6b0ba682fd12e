"""Tests for the token budget governor."""

from corvid.core.budget import (
    DEFAULT_TOKEN_LIMIT,
    estimate_tokens,
    fit_to_budget,
    token_limit,
)
from corvid.core.llm.types import Message, ToolCallRequest


def _msg(role, chars, **kw):
    return Message(role=role, content="x" * chars, **kw)


class TestEstimate:
    def test_quarter_length_rounded_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_absent_content_costs_nothing(self):
        assert estimate_tokens(None) == 0
        assert estimate_tokens("") == 0

    def test_token_limit(self):
        assert token_limit(None) == DEFAULT_TOKEN_LIMIT
        assert token_limit("unknown-model") == DEFAULT_TOKEN_LIMIT
        assert token_limit("claude-sonnet-4-20250514") == 200_000


class TestFitToBudget:
    def test_everything_fits(self):
        messages = [_msg("system", 40), _msg("user", 40), _msg("assistant", 40)]
        assert fit_to_budget(messages, 100, reserve=0) == messages

    def test_oldest_evicted_first(self):
        messages = [_msg("system", 4), _msg("user", 40), _msg("assistant", 40), _msg("user", 40)]
        # 1 + 10 + 10 + 10 tokens; 25 available
        result = fit_to_budget(messages, 25, reserve=0)
        assert result == [messages[0], messages[2], messages[3]]

    def test_reserve_subtracted_up_front(self):
        messages = [_msg("system", 4), _msg("user", 40)]
        assert len(fit_to_budget(messages, 2059, reserve=2048)) == 2
        assert len(fit_to_budget(messages, 2058, reserve=2048)) == 1

    def test_system_never_evicted(self):
        messages = [_msg("system", 4000), _msg("user", 40)]
        result = fit_to_budget(messages, 1, reserve=0)
        assert result == [messages[0]]

    def test_result_is_contiguous_suffix(self):
        messages = [_msg("system", 4)] + [_msg("user", 4 * (i + 1)) for i in range(8)]
        for budget in range(0, 60):
            result = fit_to_budget(messages, budget, reserve=0)
            kept = result[1:]
            assert kept == messages[len(messages) - len(kept):]

    def test_monotonic_in_budget(self):
        messages = [_msg("system", 8)] + [_msg("user", 4 * (i % 3 + 1)) for i in range(10)]
        lengths = [len(fit_to_budget(messages, b, reserve=0)) for b in range(0, 80)]
        assert lengths == sorted(lengths)

    def test_orphaned_tool_results_dropped(self):
        call = ToolCallRequest(id="c1", name="read_file")
        messages = [
            _msg("system", 4),
            Message(role="assistant", content="x" * 400, tool_calls=(call,)),
            Message(role="tool", content="ok", tool_call_id="c1"),
            _msg("assistant", 8),
        ]
        result = fit_to_budget(messages, 10, reserve=0)
        assert [m.role for m in result] == ["system", "assistant"]
        assert result[1] is messages[3]
