"""Core data models — no internal dependencies, only Pydantic + stdlib."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MAX_COACH_MESSAGES = 30
MAX_MESSAGE_CHARS = 4000
MAX_TOTAL_MESSAGE_CHARS = 50_000

DEFAULT_COACH_SUGGESTIONS: list[str] = [
    "10 pushups",
    "show today's summary",
    "what should I work on today?",
    "show trend for squats",
]

FALLBACK_MODEL_ID = "fallback-deterministic"

WeightUnit = Literal["lbs", "kg"]


class WireModel(BaseModel):
    """Base for everything that crosses the HTTP boundary (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Inbound request (adapter → controller)
# ---------------------------------------------------------------------------

class Message(WireModel):
    role: Literal["user", "assistant", "tool"]
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)
    tool_call_id: str | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class Preferences(WireModel):
    unit: WeightUnit
    sound_enabled: bool
    timezone_offset_minutes: int | None = Field(default=None, ge=-840, le=840)


class TurnRequest(WireModel):
    messages: list[Message] = Field(min_length=1, max_length=MAX_COACH_MESSAGES)
    preferences: Preferences

    @model_validator(mode="after")
    def _check_total_size(self) -> TurnRequest:
        total = sum(len(m.content) for m in self.messages)
        if total > MAX_TOTAL_MESSAGE_CHARS:
            raise ValueError(
                f"Conversation too large (max {MAX_TOTAL_MESSAGE_CHARS} characters)."
            )
        return self

    def latest_user_message(self) -> Message | None:
        return next((m for m in reversed(self.messages) if m.role == "user"), None)


# ---------------------------------------------------------------------------
# Coach blocks
# ---------------------------------------------------------------------------

class StatusBlock(WireModel):
    type: Literal["status"] = "status"
    tone: Literal["success", "error", "info"]
    title: str = Field(max_length=200)
    description: str = Field(default="", max_length=2000)


class Metric(WireModel):
    label: str = Field(max_length=100)
    value: str = Field(max_length=100)


class MetricsBlock(WireModel):
    type: Literal["metrics"] = "metrics"
    title: str = Field(max_length=200)
    metrics: list[Metric]


class TrendPoint(WireModel):
    date: str = Field(max_length=32)
    label: str = Field(max_length=32)
    value: float


class TrendBlock(WireModel):
    type: Literal["trend"] = "trend"
    title: str = Field(max_length=200)
    subtitle: str = Field(max_length=200)
    metric: Literal["reps", "duration"]
    points: list[TrendPoint] = Field(max_length=90)
    total: float
    best_day: float


class TableRow(WireModel):
    label: str = Field(max_length=120)
    value: str = Field(max_length=120)
    meta: str | None = Field(default=None, max_length=200)


class TableBlock(WireModel):
    type: Literal["table"] = "table"
    title: str = Field(max_length=200)
    rows: list[TableRow] = Field(max_length=50)


class SuggestionsBlock(WireModel):
    type: Literal["suggestions"] = "suggestions"
    prompts: list[Annotated[str, Field(max_length=200)]] = Field(max_length=8)


class ClientActionBlock(WireModel):
    type: Literal["client_action"] = "client_action"
    action: Literal["set_weight_unit", "set_sound"]
    payload: dict[str, Any]

    @model_validator(mode="after")
    def _check_payload(self) -> ClientActionBlock:
        if self.action == "set_weight_unit":
            if set(self.payload) != {"unit"} or self.payload["unit"] not in ("lbs", "kg"):
                raise ValueError("set_weight_unit payload must be { unit }.")
        elif set(self.payload) != {"enabled"} or not isinstance(self.payload["enabled"], bool):
            raise ValueError("set_sound payload must be { enabled }.")
        return self


CoachBlock = Annotated[
    Union[
        StatusBlock,
        MetricsBlock,
        TrendBlock,
        TableBlock,
        SuggestionsBlock,
        ClientActionBlock,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Turn response
# ---------------------------------------------------------------------------

class TurnTrace(WireModel):
    tools_used: list[str] = Field(default_factory=list)
    model: str
    fallback_used: bool


class TurnResponse(WireModel):
    assistant_text: str = Field(max_length=4000)
    blocks: list[CoachBlock]
    trace: TurnTrace


# ---------------------------------------------------------------------------
# Stream events (controller → adapter)
# ---------------------------------------------------------------------------

class StartEvent(WireModel):
    type: Literal["start"] = "start"
    model: str


class ToolStartEvent(WireModel):
    type: Literal["tool_start"] = "tool_start"
    tool_name: str


class ToolResultEvent(WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool_name: str
    blocks: list[CoachBlock]


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    message: str


class FinalEvent(WireModel):
    type: Literal["final"] = "final"
    response: TurnResponse


StreamEvent = Annotated[
    Union[StartEvent, ToolStartEvent, ToolResultEvent, ErrorEvent, FinalEvent],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------

class ToolResult(WireModel):
    """What every tool returns: a human summary, UI blocks, and model-facing output."""
    summary: str
    blocks: list[CoachBlock]
    output_for_model: dict[str, Any] = Field(default_factory=dict)


class ToolContext(BaseModel):
    """Per-turn context handed to every tool call."""
    subject: str
    default_unit: WeightUnit = "lbs"
    timezone_offset_minutes: int = 0
    turn_id: str
    user_input: str = ""


# ---------------------------------------------------------------------------
# LLM helpers
# ---------------------------------------------------------------------------

class ToolCallRequest(BaseModel):
    """A single tool/function call requested by the LLM.

    ``arguments`` is the raw JSON string exactly as the model produced it;
    the planner decodes it so malformed JSON becomes a per-call error.
    """
    id: str
    name: str
    arguments: str = "{}"


class LLMResult(BaseModel):
    """Complete (non-streaming) LLM response."""
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None


# ---------------------------------------------------------------------------
# Planner run result
# ---------------------------------------------------------------------------

class PlannerOk(BaseModel):
    kind: Literal["ok"] = "ok"
    assistant_text: str = ""
    blocks: list[CoachBlock] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    hit_tool_limit: bool = False


class PlannerError(BaseModel):
    kind: Literal["error"] = "error"
    assistant_text: str = ""
    blocks: list[CoachBlock] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    hit_tool_limit: bool = False
    error_message: str


PlannerRunResult = Annotated[Union[PlannerOk, PlannerError], Field(discriminator="kind")]
