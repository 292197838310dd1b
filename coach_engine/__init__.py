"""coach_engine — coach turn orchestration: planner, deterministic fallback, tools, SSE.

Usage::

    from coach_engine import create_controller
    from coach_engine.engine.controller import Turn

    controller = create_controller()
    async for event in controller.stream(Turn(request=request, subject="user-1")):
        print(event)
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from coach_engine.engine.controller import COACH_TURN_TIMEOUT_SECONDS, Turn, TurnController
from coach_engine.engine.llm import LLMClient, OpenAILLMClient, make_openrouter_client
from coach_engine.engine.models import StreamEvent, TurnRequest, TurnResponse
from coach_engine.engine.planner import Planner
from coach_engine.tools.builtins import make_builtin_tools
from coach_engine.tools.registry import ToolRegistry
from coach_engine.tools.store import InMemoryWorkoutStore, WorkoutStore
from coach_engine.tracing.interface import NullTraceCollector, TraceCollector
from coach_engine.tracing.jsonl_tracer import JSONLTraceCollector

__all__ = [
    "StreamEvent",
    "Turn",
    "TurnController",
    "TurnRequest",
    "TurnResponse",
    "create_controller",
    "create_llm_client",
]

OPENROUTER_DEFAULT_MODEL = "minimax/minimax-m2.5"
OPENAI_DEFAULT_MODEL = "gpt-4o-mini"


def create_llm_client(
    *,
    openrouter_api_key: str | None = None,
    openai_api_key: str | None = None,
    model: str | None = None,
) -> LLMClient | None:
    """Pick the chat-completion runtime. ``None`` means deterministic fallback only.

    OpenRouter wins when both keys are present.
    """
    openrouter_key = openrouter_api_key or os.environ.get("OPENROUTER_API_KEY")
    openai_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
    model = model or os.environ.get("COACH_AGENT_MODEL")

    if openrouter_key:
        return make_openrouter_client(openrouter_key, model or OPENROUTER_DEFAULT_MODEL)
    if openai_key:
        return OpenAILLMClient(api_key=openai_key, model=model or OPENAI_DEFAULT_MODEL)
    return None


def create_controller(
    *,
    llm_client: LLMClient | None = None,
    store: WorkoutStore | None = None,
    trace_dir: str | None = None,
    timeout: float | None = None,
    use_llm: bool = True,
) -> TurnController:
    """Wire all components and return a ready-to-use TurnController.

    Environment variables (all optional):
      OPENROUTER_API_KEY          — model runtime via OpenRouter
      OPENAI_API_KEY              — model runtime via OpenAI
      COACH_AGENT_MODEL           — overrides the provider's default model
      COACH_TURN_TIMEOUT_SECONDS  — default ``60``
      COACH_TRACE_DIR             — write JSONL traces here; unset disables tracing
    """
    trace_dir = trace_dir or os.environ.get("COACH_TRACE_DIR")
    if timeout is None:
        timeout = float(os.environ.get("COACH_TURN_TIMEOUT_SECONDS", COACH_TURN_TIMEOUT_SECONDS))

    # -- components --
    trace_collector: TraceCollector = (
        JSONLTraceCollector(trace_dir) if trace_dir else NullTraceCollector()
    )
    store = store or InMemoryWorkoutStore()

    tool_registry = ToolRegistry(trace_collector=trace_collector)
    for tool in make_builtin_tools(store):
        tool_registry.register(tool)

    if llm_client is None and use_llm:
        llm_client = create_llm_client()
    planner = Planner(llm_client, tool_registry, trace_collector) if llm_client is not None else None

    return TurnController(
        tool_registry=tool_registry,
        planner=planner,
        trace_collector=trace_collector,
        timeout=timeout,
    )
