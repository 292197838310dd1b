"""The bounded model/tool-calling loop, written as a small state machine."""

from __future__ import annotations

import json
import logging
import time
from enum import Enum
from typing import Any, Callable

from coach_engine.engine.blocks import normalize_assistant_text, tool_error_blocks
from coach_engine.engine.cancel import CancelScope, TurnCancelled
from coach_engine.engine.llm import LLMClient
from coach_engine.engine.models import (
    CoachBlock,
    LLMResult,
    Message,
    PlannerError,
    PlannerOk,
    PlannerRunResult,
    Preferences,
    StatusBlock,
    StreamEvent,
    ToolCallRequest,
    ToolContext,
    ToolResultEvent,
    ToolStartEvent,
)
from coach_engine.engine.prompts import build_system_preamble
from coach_engine.tools.registry import ToolRegistry
from coach_engine.tracing.interface import NullTraceCollector, TraceCollector

logger = logging.getLogger(__name__)

EmitFn = Callable[[StreamEvent], None]


class PlannerState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


def history_to_messages(history: list[Message]) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for message in history:
        entry: dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_call_id is not None:
            entry["tool_call_id"] = message.tool_call_id
        messages.append(entry)
    return messages


class _Run:
    """Mutable state owned by a single planner invocation."""

    def __init__(self, messages: list[dict[str, Any]]) -> None:
        self.messages = messages
        self.state = PlannerState.AWAITING_MODEL
        self.rounds = 0
        self.pending: list[ToolCallRequest] = []
        self.blocks: list[CoachBlock] = []
        self.tools_used: list[str] = []
        self.assistant_text = ""
        self.hit_tool_limit = False
        self.error_message = ""

    def error(self, message: str) -> PlannerError:
        return PlannerError(
            assistant_text=self.assistant_text,
            blocks=self.blocks,
            tools_used=self.tools_used,
            hit_tool_limit=self.hit_tool_limit,
            error_message=message,
        )


class Planner:
    """Public API: ``result = await planner.run(history=..., preferences=..., ...)``

    Each round sends the system preamble, the history, and the tool catalogue
    to the model. Tool calls from one assistant turn run sequentially in the
    order requested; a failing tool becomes an error block and never aborts
    the round.
    """

    MAX_TOOL_ROUNDS: int = 6

    def __init__(
        self,
        llm_client: LLMClient,
        tool_registry: ToolRegistry,
        trace_collector: TraceCollector | None = None,
    ) -> None:
        self._llm = llm_client
        self._tools = tool_registry
        self._trace = trace_collector or NullTraceCollector()

    @property
    def model(self) -> str:
        return self._llm.model

    async def run(
        self,
        *,
        history: list[Message],
        preferences: Preferences,
        context: ToolContext,
        scope: CancelScope,
        emit: EmitFn | None = None,
    ) -> PlannerRunResult:
        run = _Run(history_to_messages(history))
        system = {"role": "system", "content": build_system_preamble(preferences)}
        catalogue = self._tools.openai_schemas()

        try:
            while run.state not in (PlannerState.DONE, PlannerState.FAILED):
                if run.state is PlannerState.AWAITING_MODEL:
                    await self._await_model(run, system, catalogue, context, scope)
                else:
                    for call in run.pending:
                        scope.raise_if_cancelled()
                        await self._execute_call(run, call, context, scope, emit)
                    run.pending = []
                    run.state = PlannerState.AWAITING_MODEL
        except TurnCancelled as exc:
            logger.info("planner cancelled turn=%s reason=%s", context.turn_id, exc.reason)
            return run.error(f"Turn cancelled: {exc.reason}")
        except Exception as exc:
            logger.warning("planner failed turn=%s round=%d: %s", context.turn_id, run.rounds, exc)
            return run.error(str(exc) or "Unknown planner error")

        if run.state is PlannerState.FAILED:
            return run.error(run.error_message)
        return PlannerOk(
            assistant_text=run.assistant_text,
            blocks=run.blocks,
            tools_used=run.tools_used,
            hit_tool_limit=run.hit_tool_limit,
        )

    # ------------------------------------------------------------------
    # awaiting_model
    # ------------------------------------------------------------------

    async def _await_model(
        self,
        run: _Run,
        system: dict[str, Any],
        catalogue: list[dict[str, Any]],
        context: ToolContext,
        scope: CancelScope,
    ) -> None:
        if run.rounds >= self.MAX_TOOL_ROUNDS:
            run.hit_tool_limit = True
            run.blocks.append(StatusBlock(
                tone="info",
                title="Step limit reached",
                description=(
                    "I stopped early to avoid an infinite tool loop. "
                    "Ask a follow-up and I will continue."
                ),
            ))
            run.error_message = (
                f"Reached the tool round limit ({self.MAX_TOOL_ROUNDS}) without a final answer."
            )
            run.state = PlannerState.FAILED
            return

        scope.raise_if_cancelled()
        t0 = time.time()
        result: LLMResult = await scope.guard(
            self._llm.generate([system, *run.messages], tools=catalogue or None)
        )
        await self._trace.emit(context.turn_id, "llm_call", {
            "round": run.rounds,
            "latency_ms": round((time.time() - t0) * 1000, 2),
            "has_tool_calls": bool(result.tool_calls),
        })
        run.rounds += 1

        if not result.tool_calls:
            run.assistant_text = normalize_assistant_text(result.content)
            run.state = PlannerState.DONE
            return

        run.messages.append({
            "role": "assistant",
            "content": result.content or "",
            "tool_calls": [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in result.tool_calls
            ],
        })
        run.pending = list(result.tool_calls)
        run.state = PlannerState.EXECUTING_TOOLS

    # ------------------------------------------------------------------
    # executing_tools
    # ------------------------------------------------------------------

    async def _execute_call(
        self,
        run: _Run,
        call: ToolCallRequest,
        context: ToolContext,
        scope: CancelScope,
        emit: EmitFn | None,
    ) -> None:
        run.tools_used.append(call.name)
        if emit is not None:
            emit(ToolStartEvent(tool_name=call.name))

        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            self._record_failure(
                run, call, emit,
                model_error="Tool arguments were not valid JSON.",
                user_message=f"Tool arguments were not valid JSON. (tool: {call.name})",
            )
            return

        streamed = False

        def on_progress(blocks: list[CoachBlock]) -> None:
            nonlocal streamed
            streamed = True
            emit(ToolResultEvent(tool_name=call.name, blocks=blocks))

        try:
            result = await scope.guard(self._tools.execute(
                call.name, args, context, on_progress if emit is not None else None,
            ))
        except TurnCancelled:
            raise
        except Exception as exc:
            message = str(exc) or f"Tool {call.name} failed"
            self._record_failure(run, call, emit, model_error=message, user_message=message)
            return

        run.blocks.extend(result.blocks)
        if emit is not None and not streamed:
            emit(ToolResultEvent(tool_name=call.name, blocks=result.blocks))
        run.messages.append({
            "role": "tool",
            "tool_call_id": call.id,
            "content": json.dumps(result.output_for_model, default=str),
        })

    @staticmethod
    def _record_failure(
        run: _Run,
        call: ToolCallRequest,
        emit: EmitFn | None,
        *,
        model_error: str,
        user_message: str,
    ) -> None:
        error_blocks = tool_error_blocks(user_message)
        run.blocks.extend(error_blocks)
        if emit is not None:
            emit(ToolResultEvent(tool_name=call.name, blocks=error_blocks))
        run.messages.append({
            "role": "tool",
            "tool_call_id": call.id,
            "content": json.dumps({"status": "error", "tool": call.name, "error": model_error}),
        })
