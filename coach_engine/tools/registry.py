"""Tool registry — the tool execution adapter: Pydantic v2 schemas, timeout, and audit."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from coach_engine.engine.models import (
    CoachBlock,
    StatusBlock,
    SuggestionsBlock,
    ToolContext,
    ToolResult,
)
from coach_engine.tracing.interface import TraceCollector

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[list[CoachBlock]], None]
ToolHandler = Callable[[Any, ToolContext, "ProgressCallback | None"], Awaitable[ToolResult]]


class ToolExecutionError(Exception):
    """A tool call failed; ``str(exc)`` is safe to show to the user."""


@dataclass
class ToolDef:
    """Registration record for a single tool."""

    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler
    timeout: float = 30.0


def _describe_validation_error(name: str, exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "arguments"
    return f"Invalid arguments for {name}: {location}: {first.get('msg', 'invalid value')}"


def unsupported_tool_result(name: str) -> ToolResult:
    return ToolResult(
        summary=f"Unsupported tool: {name}",
        blocks=[
            StatusBlock(tone="error", title="Unsupported action", description=f"{name} is not available."),
            SuggestionsBlock(prompts=["show today's summary", "what should I work on today?"]),
        ],
        output_for_model={"status": "error", "error": "unsupported_tool", "tool": name},
    )


class ToolRegistry:
    """Central tool store with argument validation, timeouts, and tracing hooks.

    The registry never retries: a failed call surfaces immediately as a
    :class:`ToolExecutionError` so the caller can decide what to show.
    """

    def __init__(self, trace_collector: TraceCollector | None = None) -> None:
        self._tools: dict[str, ToolDef] = {}
        self._trace = trace_collector

    # -- registration -------------------------------------------------------

    def register(self, tool_def: ToolDef) -> None:
        self._tools[tool_def.name] = tool_def
        logger.info("Registered tool %s (timeout=%.1fs)", tool_def.name, tool_def.timeout)

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    # -- OpenAI function-calling schemas ------------------------------------

    def openai_schemas(self) -> list[dict[str, Any]]:
        """Return the OpenAI-compatible tool catalogue."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_model.model_json_schema(),
                },
            }
            for tool in self._tools.values()
        ]

    # -- execution ----------------------------------------------------------

    async def execute(
        self,
        name: str,
        args: Any,
        context: ToolContext,
        on_progress: ProgressCallback | None = None,
    ) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool=%s unsupported", name)
            return unsupported_tool_result(name)

        try:
            validated_input = tool.input_model.model_validate(args if args is not None else {})
        except ValidationError as exc:
            raise ToolExecutionError(_describe_validation_error(name, exc)) from exc

        t0 = time.time()
        try:
            result = await asyncio.wait_for(
                tool.handler(validated_input, context, on_progress),
                timeout=tool.timeout,
            )
        except asyncio.TimeoutError as exc:
            await self._audit(context, name, t0, "timeout")
            logger.warning("tool=%s timed out after %.1fs", name, tool.timeout)
            raise ToolExecutionError(f"{name} timed out after {tool.timeout:g}s") from exc
        except ToolExecutionError as exc:
            await self._audit(context, name, t0, "error", str(exc))
            logger.warning("tool=%s error=%s", name, exc)
            raise
        except Exception as exc:
            await self._audit(context, name, t0, "error", str(exc))
            logger.warning("tool=%s error=%s", name, exc)
            raise ToolExecutionError(str(exc) or f"Tool {name} failed") from exc

        latency = time.time() - t0
        logger.info("tool=%s latency=%.3fs OK", name, latency)
        await self._audit(context, name, t0, "ok")
        return result

    async def _audit(
        self,
        context: ToolContext,
        name: str,
        t0: float,
        status: str,
        error: str | None = None,
    ) -> None:
        if self._trace is None:
            return
        data: dict[str, Any] = {
            "tool": name,
            "latency_ms": round((time.time() - t0) * 1000, 2),
            "status": status,
        }
        if error is not None:
            data["error"] = error
        await self._trace.emit(context.turn_id, "tool_exec", data)
