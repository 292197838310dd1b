"""Built-in coach tools: set logging, summaries, reports, focus, and local preferences.

Data-backed tools are built by :func:`make_builtin_tools`, which binds a
:class:`WorkoutStore` into each handler. ``timezone_offset_minutes`` follows
the browser convention (minutes *behind* UTC, so UTC-5 is ``300``).
"""

from __future__ import annotations

import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal

from pydantic import BaseModel, Field, model_validator

from coach_engine.engine.models import (
    CoachBlock,
    ClientActionBlock,
    Metric,
    MetricsBlock,
    StatusBlock,
    SuggestionsBlock,
    TableBlock,
    TableRow,
    ToolContext,
    ToolResult,
    TrendBlock,
    TrendPoint,
)
from coach_engine.engine.intent import normalize_exercise_lookup
from coach_engine.tools.registry import ProgressCallback, ToolDef
from coach_engine.tools.store import Exercise, LoggedSet, WorkoutStore

TREND_DAYS = 14
MAX_PROMPTS = 4


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------

class LogSetInput(BaseModel):
    exercise_name: str = Field(min_length=1, max_length=80)
    reps: int | None = Field(default=None, ge=1, le=1000)
    duration_seconds: int | None = Field(default=None, ge=1, le=86_400)
    weight: float | None = Field(default=None, ge=0, le=5000)
    unit: Literal["lbs", "kg"] | None = None

    @model_validator(mode="after")
    def _exactly_one_measure(self) -> LogSetInput:
        if (self.reps is None) == (self.duration_seconds is None):
            raise ValueError("Provide exactly one of reps or duration_seconds.")
        return self


class NoInput(BaseModel):
    pass


class ExerciseReportInput(BaseModel):
    exercise_name: str = Field(min_length=1, max_length=80)


class SetWeightUnitInput(BaseModel):
    unit: Literal["lbs", "kg"]


class SetSoundInput(BaseModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_seconds_short(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds} sec"
    if seconds % 60 == 0:
        return f"{seconds // 60} min"
    minutes, rest = divmod(seconds, 60)
    return f"{minutes}m {rest}s"


def unique_prompts(prompts: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for prompt in prompts:
        key = prompt.lower().strip()
        if not key or key in seen:
            continue
        seen.add(key)
        output.append(prompt)
        if len(output) >= MAX_PROMPTS:
            break
    return output


def _local_tz(ctx: ToolContext) -> timezone:
    return timezone(-timedelta(minutes=ctx.timezone_offset_minutes))


def today_range(ctx: ToolContext, now: float) -> tuple[float, float]:
    """UTC timestamps bounding the user's local calendar day."""
    local_now = datetime.fromtimestamp(now, tz=_local_tz(ctx))
    start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start.timestamp(), (start + timedelta(days=1)).timestamp()


def find_exercise(exercises: list[Exercise], name: str) -> Exercise | None:
    key = normalize_exercise_lookup(name)
    for exercise in exercises:
        if normalize_exercise_lookup(exercise.name) == key:
            return exercise
    for exercise in exercises:
        candidate = normalize_exercise_lookup(exercise.name)
        if key and (key in candidate or candidate in key):
            return exercise
    return None


def _totals(sets: list[LoggedSet]) -> tuple[int, int]:
    return (
        sum(s.reps or 0 for s in sets),
        sum(s.duration_seconds or 0 for s in sets),
    )


def build_trend(sets: list[LoggedSet], ctx: ToolContext, now: float, title: str) -> TrendBlock:
    metric: Literal["reps", "duration"] = (
        "reps" if any(s.reps is not None for s in sets) or not sets else "duration"
    )
    tz = _local_tz(ctx)
    by_day: dict[str, int] = defaultdict(int)
    for s in sets:
        key = datetime.fromtimestamp(s.performed_at, tz=tz).strftime("%Y-%m-%d")
        by_day[key] += (s.reps or 0) if metric == "reps" else (s.duration_seconds or 0)

    start = datetime.fromtimestamp(now, tz=tz) - timedelta(days=TREND_DAYS - 1)
    points = []
    for offset in range(TREND_DAYS):
        day = start + timedelta(days=offset)
        key = day.strftime("%Y-%m-%d")
        points.append(TrendPoint(date=key, label=f"{day:%b} {day.day}", value=by_day.get(key, 0)))

    values = [p.value for p in points]
    return TrendBlock(
        title=title,
        subtitle="Generated from your deterministic set history.",
        metric=metric,
        points=points,
        total=sum(values),
        best_day=max(values) if values else 0,
    )


# ---------------------------------------------------------------------------
# Local preference tools (no store)
# ---------------------------------------------------------------------------

async def _set_weight_unit(
    inp: SetWeightUnitInput, ctx: ToolContext, on_progress: ProgressCallback | None
) -> ToolResult:
    return ToolResult(
        summary=f"Set weight unit to {inp.unit}.",
        blocks=[
            StatusBlock(
                tone="success",
                title=f"Weight unit set to {inp.unit.upper()}",
                description="Applied locally for future logging.",
            ),
            ClientActionBlock(action="set_weight_unit", payload={"unit": inp.unit}),
            SuggestionsBlock(prompts=["10 pushups", "show today's summary"]),
        ],
        output_for_model={"status": "ok", "unit": inp.unit},
    )


async def _set_sound(
    inp: SetSoundInput, ctx: ToolContext, on_progress: ProgressCallback | None
) -> ToolResult:
    state = "on" if inp.enabled else "off"
    return ToolResult(
        summary=f"Set tactile sounds {state}.",
        blocks=[
            StatusBlock(
                tone="success",
                title=f"Tactile sounds {'enabled' if inp.enabled else 'disabled'}",
                description="Applied locally.",
            ),
            ClientActionBlock(action="set_sound", payload={"enabled": inp.enabled}),
        ],
        output_for_model={"status": "ok", "enabled": inp.enabled},
    )


SET_WEIGHT_UNIT_TOOL = ToolDef(
    name="set_weight_unit",
    description="Set local default weight unit preference.",
    input_model=SetWeightUnitInput,
    handler=_set_weight_unit,
)

SET_SOUND_TOOL = ToolDef(
    name="set_sound",
    description="Enable or disable local tactile sound preference.",
    input_model=SetSoundInput,
    handler=_set_sound,
)


# ---------------------------------------------------------------------------
# Store-backed tools
# ---------------------------------------------------------------------------

def make_builtin_tools(
    store: WorkoutStore,
    now: Callable[[], float] = time.time,
) -> list[ToolDef]:
    """Bind a *WorkoutStore* (and clock) into every data-backed handler."""

    async def _log_set(
        inp: LogSetInput, ctx: ToolContext, on_progress: ProgressCallback | None
    ) -> ToolResult:
        exercise, created = await store.ensure_exercise(ctx.subject, inp.exercise_name)
        unit = inp.unit or ctx.default_unit
        await store.add_set(ctx.subject, LoggedSet(
            exercise_id=exercise.id,
            performed_at=now(),
            reps=inp.reps,
            duration_seconds=inp.duration_seconds,
            weight=inp.weight,
            unit=unit if inp.weight is not None else None,
        ))

        if inp.duration_seconds is not None:
            what = f"{format_seconds_short(inp.duration_seconds)} {exercise.name}"
        else:
            what = f"{inp.reps} {exercise.name.lower()}"
        status = StatusBlock(
            tone="success",
            title=f"Logged {what}",
            description=(
                f'Created exercise "{exercise.name}" and saved your set.'
                if created else "Set saved successfully."
            ),
        )
        if on_progress is not None:
            on_progress([status])

        start, end = today_range(ctx, now())
        today_sets = await store.list_sets(ctx.subject, since=start, until=end)
        exercise_sets = await store.list_sets(ctx.subject, exercise_id=exercise.id)
        today_reps, _ = _totals(today_sets)
        ex_reps, ex_duration = _totals(exercise_sets)
        trend = build_trend(exercise_sets, ctx, now(), f"{exercise.name} {TREND_DAYS}-day trend")

        metrics = MetricsBlock(
            title="Immediate impact",
            metrics=[
                Metric(label="Today's sets", value=str(len(today_sets))),
                Metric(label="Today's reps", value=str(today_reps)),
                Metric(label=f"{exercise.name} sets", value=str(len(exercise_sets))),
                Metric(
                    label=f"{exercise.name} {trend.metric}",
                    value=(
                        str(ex_reps) if trend.metric == "reps"
                        else format_seconds_short(ex_duration)
                    ),
                ),
            ],
        )
        suggestions = SuggestionsBlock(prompts=unique_prompts([
            "what should I work on today?",
            f"show trend for {exercise.name.lower()}",
            "show today's summary",
        ]))
        if on_progress is not None:
            on_progress([metrics, trend, suggestions])

        return ToolResult(
            summary=f"Logged set for {exercise.name}.",
            blocks=[status, metrics, trend, suggestions],
            output_for_model={
                "status": "ok",
                "exercise_name": exercise.name,
                "created_exercise": created,
                "today_sets": len(today_sets),
                "today_reps": today_reps,
                "trend_metric": trend.metric,
                "trend_total": trend.total,
            },
        )

    async def _today_summary(
        inp: NoInput, ctx: ToolContext, on_progress: ProgressCallback | None
    ) -> ToolResult:
        start, end = today_range(ctx, now())
        sets = await store.list_sets(ctx.subject, since=start, until=end)
        names = {e.id: e.name for e in await store.list_exercises(ctx.subject)}

        if not sets:
            return ToolResult(
                summary="Prepared today's summary.",
                blocks=[StatusBlock(
                    tone="info",
                    title="No sets logged today",
                    description="Log one now and I will generate your daily focus.",
                )],
                output_for_model={"status": "ok", "total_sets": 0, "total_reps": 0, "exercise_count": 0},
            )

        per_exercise: dict[str, list[LoggedSet]] = defaultdict(list)
        for s in sets:
            per_exercise[s.exercise_id].append(s)
        top = sorted(per_exercise.items(), key=lambda item: len(item[1]), reverse=True)

        total_reps, total_duration = _totals(sets)
        rows = []
        for exercise_id, ex_sets in top[:10]:
            reps, duration = _totals(ex_sets)
            meta = f"{reps} reps" if reps else (format_seconds_short(duration) if duration else None)
            rows.append(TableRow(
                label=names.get(exercise_id, "Unknown exercise"),
                value=f"{len(ex_sets)} sets",
                meta=meta,
            ))

        blocks: list[CoachBlock] = [
            MetricsBlock(title="Today's totals", metrics=[
                Metric(label="Sets", value=str(len(sets))),
                Metric(label="Reps", value=str(total_reps)),
                Metric(label="Duration", value=format_seconds_short(total_duration)),
                Metric(label="Exercises", value=str(len(per_exercise))),
            ]),
            TableBlock(title="Top exercises today", rows=rows),
        ]
        return ToolResult(
            summary="Prepared today's summary.",
            blocks=blocks,
            output_for_model={
                "status": "ok",
                "total_sets": len(sets),
                "total_reps": total_reps,
                "exercise_count": len(per_exercise),
            },
        )

    async def _exercise_report(
        inp: ExerciseReportInput, ctx: ToolContext, on_progress: ProgressCallback | None
    ) -> ToolResult:
        exercise = find_exercise(await store.list_exercises(ctx.subject), inp.exercise_name)
        if exercise is None:
            return ToolResult(
                summary=f"No data for {inp.exercise_name} yet.",
                blocks=[
                    StatusBlock(
                        tone="info",
                        title=f"No history for {inp.exercise_name}",
                        description="Log a set first and I will build the report.",
                    ),
                    SuggestionsBlock(prompts=[f"10 {inp.exercise_name.lower()}", "show today's summary"]),
                ],
                output_for_model={"status": "not_found", "exercise_name": inp.exercise_name},
            )

        sets = await store.list_sets(ctx.subject, exercise_id=exercise.id)
        reps, duration = _totals(sets)
        best_reps = max((s.reps or 0 for s in sets), default=0)
        best_duration = max((s.duration_seconds or 0 for s in sets), default=0)
        trend = build_trend(sets, ctx, now(), f"{exercise.name} {TREND_DAYS}-day trend")

        if trend.metric == "reps":
            metrics = [
                Metric(label="Total sets", value=str(len(sets))),
                Metric(label="Total reps", value=str(reps)),
                Metric(label="Best set", value=f"{best_reps} reps"),
            ]
        else:
            metrics = [
                Metric(label="Total sets", value=str(len(sets))),
                Metric(label="Total time", value=format_seconds_short(duration)),
                Metric(label="Best hold", value=format_seconds_short(best_duration)),
            ]

        return ToolResult(
            summary=f"Prepared report for {exercise.name}.",
            blocks=[
                MetricsBlock(title=f"{exercise.name} report", metrics=metrics),
                trend,
                SuggestionsBlock(prompts=unique_prompts([
                    f"10 {exercise.name.lower()}",
                    "what should I work on today?",
                    "show today's summary",
                ])),
            ],
            output_for_model={
                "status": "ok",
                "exercise_name": exercise.name,
                "total_sets": len(sets),
                "total_reps": reps,
                "total_duration_seconds": duration,
                "trend_metric": trend.metric,
                "trend_total": trend.total,
            },
        )

    async def _focus_suggestions(
        inp: NoInput, ctx: ToolContext, on_progress: ProgressCallback | None
    ) -> ToolResult:
        exercises = await store.list_exercises(ctx.subject)
        if not exercises:
            return ToolResult(
                summary="Start by logging a set so I can tailor suggestions.",
                blocks=[
                    StatusBlock(
                        tone="info",
                        title="No training history yet",
                        description="Log a few sets and I will suggest what to focus on.",
                    ),
                    SuggestionsBlock(prompts=["10 pushups", "20 squats", "plank for 60 seconds"]),
                ],
                output_for_model={"status": "ok", "suggestions": []},
            )

        current = now()
        last_seen: list[tuple[Exercise, float | None]] = []
        for exercise in exercises:
            sets = await store.list_sets(ctx.subject, exercise_id=exercise.id)
            last = max((s.performed_at for s in sets), default=None)
            last_seen.append((exercise, last))
        # never-trained first, then least recently trained
        last_seen.sort(key=lambda item: item[1] if item[1] is not None else float("-inf"))

        rows = []
        for exercise, last in last_seen[:3]:
            if last is None:
                reason = "No sets logged yet"
            else:
                days = int((current - last) // 86_400)
                reason = "Trained today" if days == 0 else f"Last trained {days}d ago"
            rows.append(TableRow(label=exercise.name, value="high" if len(rows) == 0 else "medium", meta=reason))

        return ToolResult(
            summary=f"Focus on {last_seen[0][0].name} today.",
            blocks=[
                TableBlock(title="Focus for today", rows=rows),
                SuggestionsBlock(prompts=unique_prompts(
                    [f"10 {row.label.lower()}" for row in rows] + ["show today's summary"]
                )),
            ],
            output_for_model={
                "status": "ok",
                "suggestions": [{"exercise": row.label, "reason": row.meta} for row in rows],
            },
        )

    return [
        ToolDef(
            name="log_set",
            description=(
                "Log a workout set. Exactly one of reps or duration_seconds is required. "
                "Use reps for rep-based movements and duration_seconds (integer seconds) for "
                "timed holds. Preserve exact user numbers; do not round."
            ),
            input_model=LogSetInput,
            handler=_log_set,
        ),
        ToolDef(
            name="get_today_summary",
            description="Get today's workout totals and top exercises.",
            input_model=NoInput,
            handler=_today_summary,
        ),
        ToolDef(
            name="get_exercise_report",
            description="Get a focused report and trend for a specific exercise.",
            input_model=ExerciseReportInput,
            handler=_exercise_report,
        ),
        ToolDef(
            name="get_focus_suggestions",
            description=(
                "Get prioritized suggestions for what the user should work on today "
                "based on recency."
            ),
            input_model=NoInput,
            handler=_focus_suggestions,
        ),
        SET_WEIGHT_UNIT_TOOL,
        SET_SOUND_TOOL,
    ]
