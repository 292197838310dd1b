"""Turn controller: the single entry point for one coach turn."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator

from coach_engine.engine.blocks import build_turn_response, tool_error_blocks
from coach_engine.engine.cancel import CLIENT_ABORTED_REASON, CancelScope, TurnCancelled
from coach_engine.engine.fallback import run_deterministic_fallback
from coach_engine.engine.models import (
    FALLBACK_MODEL_ID,
    ErrorEvent,
    FinalEvent,
    PlannerError,
    StartEvent,
    StreamEvent,
    ToolContext,
    TurnRequest,
    TurnResponse,
)
from coach_engine.engine.planner import Planner
from coach_engine.tools.registry import ToolRegistry
from coach_engine.tracing.interface import NullTraceCollector, TraceCollector

logger = logging.getLogger(__name__)

COACH_TURN_TIMEOUT_SECONDS = 60.0
PARTIAL_FAILURE_TEXT = "I hit an error while finishing that. Here's what I have so far."


@dataclass
class Turn:
    """A validated request bound to the authenticated subject."""

    request: TurnRequest
    subject: str
    turn_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def user_text(self) -> str:
        latest = self.request.latest_user_message()
        return latest.content if latest is not None else ""

    def tool_context(self) -> ToolContext:
        prefs = self.request.preferences
        return ToolContext(
            subject=self.subject,
            default_unit=prefs.unit,
            # Missing offset means UTC, never the server's local zone.
            timezone_offset_minutes=prefs.timezone_offset_minutes or 0,
            turn_id=self.turn_id,
            user_input=self.user_text,
        )


class _TurnStream:
    """Single-writer event channel between the turn task and the stream reader."""

    _DONE = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    def emit(self, event: StreamEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._DONE)

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is self._DONE:
                return
            yield item  # type: ignore[misc]


class TurnController:
    """Public API::

        response = await controller.respond(turn)              # buffered
        async for event in controller.stream(turn): ...       # streamed

    With a planner (model runtime configured) the turn runs the bounded
    tool-calling loop and falls back to the deterministic parser when the
    planner fails before any tool ran. Without one it goes straight to the
    fallback.
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        planner: Planner | None = None,
        trace_collector: TraceCollector | None = None,
        timeout: float = COACH_TURN_TIMEOUT_SECONDS,
    ) -> None:
        self._tools = tool_registry
        self._planner = planner
        self._trace = trace_collector or NullTraceCollector()
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._planner.model if self._planner is not None else FALLBACK_MODEL_ID

    # ------------------------------------------------------------------
    # Buffered
    # ------------------------------------------------------------------

    async def respond(self, turn: Turn, disconnect: asyncio.Event | None = None) -> TurnResponse:
        t_start = time.time()
        async with CancelScope(self._timeout, disconnect) as scope:
            try:
                response = await self._resolve(turn, scope, emit=None)
            except TurnCancelled as exc:
                response = build_turn_response(
                    assistant_text=PARTIAL_FAILURE_TEXT,
                    blocks=tool_error_blocks(f"Turn cancelled: {exc.reason}"),
                    tools_used=[],
                    model=f"{FALLBACK_MODEL_ID} (cancelled)",
                    fallback_used=True,
                )
        await self._finish(turn, t_start, response.trace.model, cancelled=scope.cancelled)
        return response

    # ------------------------------------------------------------------
    # Streamed
    # ------------------------------------------------------------------

    async def stream(
        self, turn: Turn, disconnect: asyncio.Event | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield ``start``, any tool events, then exactly one ``final`` or ``error``.

        Closing the iterator early counts as a client disconnect.
        """
        yield StartEvent(model=self.model)

        t_start = time.time()
        channel = _TurnStream()
        outcome = {"model": self.model}
        scope = CancelScope(self._timeout, disconnect)
        scope.start()

        async def produce() -> None:
            try:
                response = await self._resolve(turn, scope, emit=channel.emit)
                if scope.cancelled:
                    channel.emit(ErrorEvent(message=f"Turn cancelled: {scope.reason}"))
                else:
                    outcome["model"] = response.trace.model
                    channel.emit(FinalEvent(response=response))
            except TurnCancelled as exc:
                channel.emit(ErrorEvent(message=f"Turn cancelled: {exc.reason}"))
            except Exception:
                logger.exception("coach turn %s failed", turn.turn_id)
                channel.emit(ErrorEvent(message="Coach turn failed. Please try again."))
            finally:
                channel.close()

        task = asyncio.create_task(produce())
        try:
            async for event in channel.events():
                yield event
        finally:
            if not task.done():
                scope.cancel(CLIENT_ABORTED_REASON)
                await asyncio.gather(task, return_exceptions=True)
            channel.close()
            scope.close()
            await self._finish(turn, t_start, outcome["model"], cancelled=scope.cancelled)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _resolve(self, turn: Turn, scope: CancelScope, emit) -> TurnResponse:
        context = turn.tool_context()

        if self._planner is None:
            await self._trace.emit(turn.turn_id, "route", {"mode": "fallback"})
            scope.raise_if_cancelled()
            return await run_deterministic_fallback(
                turn.user_text, self._tools, context, scope=scope, emit=emit
            )

        await self._trace.emit(turn.turn_id, "route", {"mode": "planner", "model": self.model})
        result = await self._planner.run(
            history=turn.request.messages,
            preferences=turn.request.preferences,
            context=context,
            scope=scope,
            emit=emit,
        )

        if isinstance(result, PlannerError):
            logger.warning(
                "planner error turn=%s tools=%d: %s",
                turn.turn_id, len(result.tools_used), result.error_message,
            )
            if not result.tools_used and not scope.cancelled:
                return await self._substitute_fallback(turn, context, scope, emit, result)
            return build_turn_response(
                assistant_text=PARTIAL_FAILURE_TEXT,
                blocks=[*tool_error_blocks(result.error_message), *result.blocks],
                tools_used=result.tools_used,
                model=f"{self.model} (planner_failed_partial)",
                fallback_used=False,
            )

        return build_turn_response(
            assistant_text=result.assistant_text,
            blocks=result.blocks,
            tools_used=result.tools_used,
            model=self.model,
            fallback_used=False,
        )

    async def _substitute_fallback(
        self,
        turn: Turn,
        context: ToolContext,
        scope: CancelScope,
        emit,
        failure: PlannerError,
    ) -> TurnResponse:
        await self._trace.emit(turn.turn_id, "route", {
            "mode": "fallback",
            "reason": "planner_failed",
            "error": failure.error_message,
        })
        fallback = await run_deterministic_fallback(
            turn.user_text, self._tools, context, scope=scope, emit=emit
        )
        return fallback.model_copy(update={
            "blocks": [*tool_error_blocks(failure.error_message), *fallback.blocks],
            "trace": fallback.trace.model_copy(
                update={"model": f"{fallback.trace.model} (planner_failed)"}
            ),
        })

    async def _finish(self, turn: Turn, t_start: float, model: str, *, cancelled: bool) -> None:
        await self._trace.emit(turn.turn_id, "turn_done", {
            "model": model,
            "cancelled": cancelled,
            "total_latency_ms": round((time.time() - t_start) * 1000, 2),
        })
        await self._trace.flush(turn.turn_id)
