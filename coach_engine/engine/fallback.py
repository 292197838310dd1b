"""Deterministic fallback. One parsed intent, at most one tool call, no model."""

from __future__ import annotations

import logging
from typing import Any, Callable

from coach_engine.engine.blocks import default_suggestions, tool_error_blocks
from coach_engine.engine.cancel import CancelScope, TurnCancelled
from coach_engine.engine.intent import parse_coach_intent
from coach_engine.engine.models import (
    FALLBACK_MODEL_ID,
    CoachBlock,
    StatusBlock,
    StreamEvent,
    ToolContext,
    ToolResult,
    ToolResultEvent,
    ToolStartEvent,
    TurnResponse,
    TurnTrace,
)
from coach_engine.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

EmitFn = Callable[[StreamEvent], None]

HELP_TEXT = "I can help with logging, summaries, reports, and focus suggestions."
FAILED_TEXT = "Fallback execution failed."


def intent_to_tool_call(text: str) -> tuple[str, dict[str, Any]] | None:
    """Map an utterance to ``(tool_name, args)``, or ``None`` when unrecognised."""
    intent = parse_coach_intent(text)
    if intent.type == "log_set":
        args = {
            "exercise_name": intent.exercise_name,
            "reps": intent.reps,
            "duration_seconds": intent.duration_seconds,
            "weight": intent.weight,
            "unit": intent.unit,
        }
        return "log_set", {k: v for k, v in args.items() if v is not None}
    if intent.type == "today_summary":
        return "get_today_summary", {}
    if intent.type == "exercise_report":
        return "get_exercise_report", {"exercise_name": intent.exercise_name}
    if intent.type == "set_weight_unit":
        return "set_weight_unit", {"unit": intent.unit}
    if intent.type == "set_sound":
        return "set_sound", {"enabled": intent.enabled}
    if intent.type == "focus_suggestions":
        return "get_focus_suggestions", {}
    return None


async def _execute_with_events(
    tools: ToolRegistry,
    tool_name: str,
    args: dict[str, Any],
    context: ToolContext,
    scope: CancelScope | None,
    emit: EmitFn | None,
) -> ToolResult:
    if emit is not None:
        emit(ToolStartEvent(tool_name=tool_name))

    streamed = False

    def on_progress(blocks: list[CoachBlock]) -> None:
        nonlocal streamed
        streamed = True
        emit(ToolResultEvent(tool_name=tool_name, blocks=blocks))

    call = tools.execute(tool_name, args, context, on_progress if emit is not None else None)
    result = await (scope.guard(call) if scope is not None else call)
    if emit is not None and not streamed:
        emit(ToolResultEvent(tool_name=tool_name, blocks=result.blocks))
    return result


async def run_deterministic_fallback(
    user_input: str,
    tools: ToolRegistry,
    context: ToolContext,
    *,
    scope: CancelScope | None = None,
    emit: EmitFn | None = None,
) -> TurnResponse:
    """Answer without a model. Only :class:`TurnCancelled` escapes; every other
    failure becomes an error block."""
    tools_used: list[str] = []
    blocks: list[CoachBlock]
    assistant_text = HELP_TEXT

    try:
        call = intent_to_tool_call(user_input)
    except Exception as exc:
        message = str(exc) or "Unknown fallback error"
        logger.warning("fallback intent parse failed: %s", message)
        return TurnResponse(
            assistant_text=FAILED_TEXT,
            blocks=tool_error_blocks(message),
            trace=TurnTrace(tools_used=[], model=FALLBACK_MODEL_ID, fallback_used=True),
        )

    if call is None:
        blocks = [
            StatusBlock(
                tone="info",
                title="Try a workout command",
                description="This fallback mode only handles core flows.",
            ),
            default_suggestions(),
        ]
    else:
        tool_name, args = call
        if scope is not None:
            scope.raise_if_cancelled()
        tools_used.append(tool_name)
        try:
            result = await _execute_with_events(tools, tool_name, args, context, scope, emit)
        except TurnCancelled:
            raise
        except Exception as exc:
            message = str(exc) or "Unknown fallback error"
            logger.warning("fallback tool=%s failed: %s", tool_name, message)
            blocks = tool_error_blocks(message)
            assistant_text = FAILED_TEXT
            if emit is not None:
                emit(ToolResultEvent(tool_name=tool_name, blocks=blocks))
        else:
            blocks = list(result.blocks)
            assistant_text = result.summary or HELP_TEXT

    return TurnResponse(
        assistant_text=assistant_text,
        blocks=blocks or [default_suggestions()],
        trace=TurnTrace(tools_used=tools_used, model=FALLBACK_MODEL_ID, fallback_used=True),
    )
