"""
Unit Tests for the provider tool loop

Drives BaseLLMProvider.stream_with_tools with a scripted provider and
plain coroutine tools.
"""

import asyncio

import pytest
from conftest import text_turn, tool_turn

from querypilot.llm.models import (
    ErrorPart,
    FinishPart,
    LLMMessage,
    StepResult,
    StepStartPart,
    TextDeltaPart,
    ToolCallPart,
    ToolInvocation,
    ToolResultPart,
    ToolSpec,
    has_tool_call,
    step_count_is,
)
from querypilot.models.errors import LLMError, RunAbortedError


def _spec(name: str, calls: list) -> ToolSpec:
    async def execute(args):
        calls.append((name, args))
        return {"ok": True, "echo": args}

    return ToolSpec(name=name, description=name, input_schema={"type": "object"}, execute=execute)


async def _collect(provider, tools, **kwargs):
    parts = []
    async for part in provider.stream_with_tools(
        system="system prompt",
        messages=[LLMMessage(role="user", content="goal")],
        tools=tools,
        **kwargs,
    ):
        parts.append(part)
    return parts


class TestStopConditions:
    def test_has_tool_call_checks_latest_step(self):
        condition = has_tool_call("finish")
        steps = [
            StepResult(step=1, tool_calls=[ToolInvocation(id="1", name="finish")]),
            StepResult(step=2, tool_calls=[ToolInvocation(id="2", name="other")]),
        ]
        assert condition(steps) is False
        assert condition(steps[:1]) is True
        assert condition([]) is False

    def test_step_count_is(self):
        condition = step_count_is(2)
        assert condition([StepResult(step=1)]) is False
        assert condition([StepResult(step=1), StepResult(step=2)]) is True


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_runs_tools_until_plain_answer(self, scripted_provider):
        calls = []
        provider = scripted_provider(
            turns=[tool_turn("lookup", text="Looking it up", q="x"), text_turn("All done")]
        )

        parts = await _collect(provider, [_spec("lookup", calls)])

        assert [type(part) for part in parts] == [
            StepStartPart,
            TextDeltaPart,
            TextDeltaPart,
            TextDeltaPart,
            ToolCallPart,
            ToolResultPart,
            StepStartPart,
            TextDeltaPart,
            TextDeltaPart,
            FinishPart,
        ]
        assert calls == [("lookup", {"q": "x"})]
        assert parts[5].output == {"ok": True, "echo": {"q": "x"}}
        assert parts[-1] == FinishPart(reason="stop", steps=2)
        assert "".join(part.text for part in parts if isinstance(part, TextDeltaPart)) == (
            "Looking it upAll done"
        )

    @pytest.mark.asyncio
    async def test_tool_results_feed_the_next_turn(self, scripted_provider):
        provider = scripted_provider(turns=[tool_turn("lookup"), text_turn("ok")])

        await _collect(provider, [_spec("lookup", [])])

        second_turn = provider.conversations[1]
        assert second_turn[-1]["role"] == "tool"
        assert second_turn[-1]["content"] == {"ok": True, "echo": {}}

    @pytest.mark.asyncio
    async def test_stop_condition_ends_the_loop(self, scripted_provider):
        provider = scripted_provider(default_turn=tool_turn("lookup"))

        parts = await _collect(
            provider, [_spec("lookup", [])], stop_when=[has_tool_call("finish"), step_count_is(3)]
        )

        assert sum(isinstance(part, StepStartPart) for part in parts) == 3
        assert parts[-1] == FinishPart(reason="stop-condition", steps=3)

    @pytest.mark.asyncio
    async def test_unknown_tool_gets_error_output(self, scripted_provider):
        provider = scripted_provider(turns=[tool_turn("missing"), text_turn("sorry")])

        parts = await _collect(provider, [])

        result = next(part for part in parts if isinstance(part, ToolResultPart))
        assert result.output == {"error": "Unknown tool: missing"}

    @pytest.mark.asyncio
    async def test_provider_failure_ends_with_error_then_finish(self, scripted_provider):
        failure = LLMError("mock", "rate_limit: slow down")
        provider = scripted_provider(turns=[{"text": "partial", "error": failure}])

        parts = await _collect(provider, [])

        assert isinstance(parts[-2], ErrorPart)
        assert parts[-2].exception is failure
        assert parts[-1] == FinishPart(reason="error", steps=1)

    @pytest.mark.asyncio
    async def test_cancellation_raises_at_next_boundary(self, scripted_provider):
        cancel_event = asyncio.Event()
        calls = []

        async def cancelling(args):
            calls.append(args)
            cancel_event.set()
            return {"ok": True}

        tool = ToolSpec(name="lookup", description="", input_schema={}, execute=cancelling)
        provider = scripted_provider(default_turn=tool_turn("lookup"))

        seen = []
        with pytest.raises(RunAbortedError):
            async for part in provider.stream_with_tools(
                system="s",
                messages=[LLMMessage(role="user", content="goal")],
                tools=[tool],
                cancel_event=cancel_event,
            ):
                seen.append(part)

        assert len(calls) == 1
        assert not any(isinstance(part, ToolResultPart) for part in seen)
