"""Tests for the Planner: bounded model/tool rounds."""

from __future__ import annotations

import asyncio
import json

from pydantic import BaseModel

from coach_engine.engine.cancel import CancelScope
from coach_engine.engine.llm import LLMClient, MockLLMClient
from coach_engine.engine.models import LLMResult, Message, Preferences, ToolCallRequest
from coach_engine.engine.planner import Planner
from coach_engine.tools.registry import ToolDef

PREFS = Preferences(unit="kg", sound_enabled=False)


def _call(name: str, arguments: dict | str = "{}", call_id: str = "tc-1") -> ToolCallRequest:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return ToolCallRequest(id=call_id, name=name, arguments=arguments)


class HangingLLMClient(LLMClient):
    """Never answers; records whether its call was cancelled."""

    def __init__(self) -> None:
        self.cancelled = asyncio.Event()

    @property
    def model(self) -> str:
        return "hanging-model"

    async def generate(self, messages, tools=None) -> LLMResult:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        return LLMResult()


async def _run(planner: Planner, text: str, tool_context, emit=None, scope_timeout: float = 5):
    async with CancelScope(timeout=scope_timeout) as scope:
        return await planner.run(
            history=[Message(role="user", content=text)],
            preferences=PREFS,
            context=tool_context,
            scope=scope,
            emit=emit,
        )


class TestPlannerRounds:
    async def test_plain_answer(self, tool_registry, tool_context):
        llm = MockLLMClient([LLMResult(content="  Keep going!  ")])
        result = await _run(Planner(llm, tool_registry), "hi", tool_context)

        assert result.kind == "ok"
        assert result.assistant_text == "Keep going!"
        assert result.tools_used == []

    async def test_preamble_and_catalogue(self, tool_registry, tool_context):
        llm = MockLLMClient([LLMResult(content="ok")])
        await _run(Planner(llm, tool_registry), "hi", tool_context)

        system, user = llm.calls[0]
        assert system["role"] == "system"
        assert "default weight unit: kg" in system["content"]
        assert "tactile sounds: disabled" in system["content"]
        assert user == {"role": "user", "content": "hi"}

    async def test_tool_call_then_final(self, tool_registry, tool_context):
        llm = MockLLMClient([
            LLMResult(tool_calls=[_call("log_set", {"exercise_name": "Squats", "reps": 20})]),
            LLMResult(content="Logged your squats."),
        ])
        events = []
        result = await _run(Planner(llm, tool_registry), "20 squats", tool_context, events.append)

        assert result.kind == "ok"
        assert result.tools_used == ["log_set"]
        assert [b.type for b in result.blocks] == ["status", "metrics", "trend", "suggestions"]
        assert [e.type for e in events] == ["tool_start", "tool_result", "tool_result"]

        second_round = llm.calls[1]
        assistant, tool_msg = second_round[-2], second_round[-1]
        assert assistant["tool_calls"][0]["function"]["name"] == "log_set"
        assert tool_msg["role"] == "tool"
        assert tool_msg["tool_call_id"] == "tc-1"
        assert json.loads(tool_msg["content"])["exercise_name"] == "Squats"

    async def test_sequential_calls_in_requested_order(self, tool_registry, tool_context, store):
        llm = MockLLMClient([
            LLMResult(tool_calls=[
                _call("log_set", {"exercise_name": "Plank", "duration_seconds": 60}, "a"),
                _call("get_exercise_report", {"exercise_name": "Plank"}, "b"),
            ]),
            LLMResult(content="done"),
        ])
        result = await _run(Planner(llm, tool_registry), "plank 60s then report", tool_context)

        assert result.tools_used == ["log_set", "get_exercise_report"]
        # the report sees the set logged just before it
        report_metrics = result.blocks[4]
        assert report_metrics.title == "Plank report"


class TestPlannerToolFailures:
    async def test_failing_tool_does_not_end_round(self, tool_registry, tool_context):
        class _Empty(BaseModel):
            pass

        async def broken(inp, ctx, on_progress):
            raise RuntimeError("boom")

        tool_registry.register(ToolDef(
            name="broken", description="", input_model=_Empty, handler=broken,
        ))
        llm = MockLLMClient([
            LLMResult(tool_calls=[_call("broken")]),
            LLMResult(content="Sorry, that failed."),
        ])
        result = await _run(Planner(llm, tool_registry), "x", tool_context)

        assert result.kind == "ok"
        assert llm.call_count == 2
        assert result.blocks[0].tone == "error"
        tool_msg = llm.calls[1][-1]
        assert json.loads(tool_msg["content"]) == {"status": "error", "tool": "broken", "error": "boom"}

    async def test_malformed_arguments(self, tool_registry, tool_context, store):
        llm = MockLLMClient([
            LLMResult(tool_calls=[_call("log_set", '{"exercise_name": ')]),
            LLMResult(content="Could you repeat that?"),
        ])
        events = []
        result = await _run(Planner(llm, tool_registry), "x", tool_context, events.append)

        assert result.kind == "ok"
        assert result.tools_used == ["log_set"]
        assert "not valid JSON" in result.blocks[0].description
        assert [e.type for e in events] == ["tool_start", "tool_result"]
        assert await store.list_sets("user-1") == []

    async def test_invalid_arguments_are_reported_to_model(self, tool_registry, tool_context):
        llm = MockLLMClient([
            LLMResult(tool_calls=[_call("log_set", {"exercise_name": "Plank"})]),
            LLMResult(content="How many?"),
        ])
        result = await _run(Planner(llm, tool_registry), "x", tool_context)

        assert result.kind == "ok"
        error = json.loads(llm.calls[1][-1]["content"])
        assert error["status"] == "error"
        assert "exactly one" in error["error"]


class TestPlannerFailures:
    async def test_round_limit(self, tool_registry, tool_context):
        llm = MockLLMClient([
            LLMResult(tool_calls=[_call("get_today_summary", call_id=f"tc-{i}")])
            for i in range(Planner.MAX_TOOL_ROUNDS + 2)
        ])
        result = await _run(Planner(llm, tool_registry), "loop", tool_context)

        assert result.kind == "error"
        assert result.hit_tool_limit is True
        assert llm.call_count == Planner.MAX_TOOL_ROUNDS
        assert len(result.tools_used) == Planner.MAX_TOOL_ROUNDS
        assert result.blocks[-1].title == "Step limit reached"
        assert "round limit (6)" in result.error_message

    async def test_model_error_before_tools(self, tool_registry, tool_context):
        llm = MockLLMClient([RuntimeError("upstream 502")])
        result = await _run(Planner(llm, tool_registry), "x", tool_context)

        assert result.kind == "error"
        assert result.tools_used == []
        assert result.error_message == "upstream 502"
        assert llm.call_count == 1

    async def test_model_error_after_tools_keeps_state(self, tool_registry, tool_context):
        llm = MockLLMClient([
            LLMResult(tool_calls=[_call("get_today_summary")]),
            RuntimeError("upstream 502"),
        ])
        result = await _run(Planner(llm, tool_registry), "x", tool_context)

        assert result.kind == "error"
        assert result.tools_used == ["get_today_summary"]
        assert result.blocks[0].title == "No sets logged today"

    async def test_cancelled_during_model_call(self, tool_registry, tool_context):
        llm = HangingLLMClient()
        planner = Planner(llm, tool_registry)

        async with CancelScope(timeout=5) as scope:
            asyncio.get_running_loop().call_later(0.05, scope.cancel, "client_aborted")
            result = await planner.run(
                history=[Message(role="user", content="x")],
                preferences=PREFS,
                context=tool_context,
                scope=scope,
            )

        assert result.kind == "error"
        assert result.error_message == "Turn cancelled: client_aborted"
        assert llm.cancelled.is_set()

    async def test_deadline(self, tool_registry, tool_context):
        result = await _run(Planner(HangingLLMClient(), tool_registry), "x", tool_context, scope_timeout=0.05)

        assert result.kind == "error"
        assert result.error_message == "Turn cancelled: Turn timed out"
