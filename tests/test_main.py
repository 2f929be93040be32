"""Tests for the admin chat loop."""

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from feed_autogen.__main__ import chat_loop


def _scripted_input(monkeypatch, lines):
    remaining = iter(lines)

    def fake_input(prompt):
        try:
            return next(remaining)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)


def _thread_id(call) -> str:
    return call.args[1]["configurable"]["thread_id"]


class TestChatLoop:
    @pytest.mark.asyncio
    async def test_prints_reply_and_skips_blank_lines(self, monkeypatch, capsys):
        _scripted_input(monkeypatch, ["", "list sources"])
        agent = MagicMock()
        agent.invoke.return_value = {"messages": [AIMessage(content="2 sources configured")]}

        await chat_loop(agent)

        assert agent.invoke.call_count == 1
        assert "2 sources configured" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_broken_tool_history_starts_new_thread(self, monkeypatch, capsys):
        _scripted_input(monkeypatch, ["poll Tech", "poll Tech"])
        agent = MagicMock()
        agent.invoke.side_effect = [
            ValueError("tool_use ids were found without tool_result blocks"),
            {"messages": [AIMessage(content="1 new item")]},
        ]

        await chat_loop(agent)

        first, second = agent.invoke.call_args_list
        assert _thread_id(first) != _thread_id(second)
        out = capsys.readouterr().out
        assert "history was reset" in out
        assert "1 new item" in out

    @pytest.mark.asyncio
    async def test_other_errors_keep_the_thread(self, monkeypatch, capsys):
        _scripted_input(monkeypatch, ["a", "b"])
        agent = MagicMock()
        agent.invoke.side_effect = [
            RuntimeError("overloaded"),
            {"messages": [AIMessage(content="ok")]},
        ]

        await chat_loop(agent)

        first, second = agent.invoke.call_args_list
        assert _thread_id(first) == _thread_id(second)
        assert "Request failed: overloaded" in capsys.readouterr().out
