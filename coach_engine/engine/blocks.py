"""Block helpers shared by the planner, the fallback and the controller."""

from __future__ import annotations

from coach_engine.engine.models import (
    DEFAULT_COACH_SUGGESTIONS,
    CoachBlock,
    StatusBlock,
    SuggestionsBlock,
    TurnResponse,
    TurnTrace,
)

DEFAULT_ASSISTANT_TEXT = "Done. I used your workout data and generated updates below."


def normalize_assistant_text(content: str | None) -> str:
    if isinstance(content, str):
        return content.strip()
    return ""


def default_suggestions() -> SuggestionsBlock:
    return SuggestionsBlock(prompts=list(DEFAULT_COACH_SUGGESTIONS))


def tool_error_blocks(message: str) -> list[CoachBlock]:
    """Error status followed by the default suggestions."""
    return [
        StatusBlock(tone="error", title="Tool execution failed", description=message[:2000]),
        default_suggestions(),
    ]


def build_turn_response(
    *,
    assistant_text: str,
    blocks: list[CoachBlock],
    tools_used: list[str],
    model: str,
    fallback_used: bool,
) -> TurnResponse:
    """Assemble a response that is never empty in either text or blocks."""
    text = assistant_text.strip() or DEFAULT_ASSISTANT_TEXT
    return TurnResponse(
        assistant_text=text[:4000],
        blocks=list(blocks) or [default_suggestions()],
        trace=TurnTrace(tools_used=list(tools_used), model=model, fallback_used=fallback_used),
    )
