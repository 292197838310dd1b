from coach_engine.engine.models import (
    CoachBlock,
    LLMResult,
    Message,
    Preferences,
    StreamEvent,
    ToolCallRequest,
    ToolContext,
    ToolResult,
    TurnRequest,
    TurnResponse,
)
from coach_engine.engine.cancel import CancelScope, TurnCancelled
from coach_engine.engine.llm import LLMClient, MockLLMClient, OpenAILLMClient, make_openrouter_client
from coach_engine.engine.planner import Planner
from coach_engine.engine.fallback import run_deterministic_fallback
from coach_engine.engine.controller import Turn, TurnController

__all__ = [
    "CancelScope",
    "CoachBlock",
    "LLMClient",
    "LLMResult",
    "Message",
    "MockLLMClient",
    "OpenAILLMClient",
    "Planner",
    "Preferences",
    "StreamEvent",
    "ToolCallRequest",
    "ToolContext",
    "ToolResult",
    "Turn",
    "TurnCancelled",
    "TurnController",
    "TurnRequest",
    "TurnResponse",
    "make_openrouter_client",
    "run_deterministic_fallback",
]
