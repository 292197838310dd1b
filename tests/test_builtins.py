"""Tests for the built-in coach tools against the in-memory workout store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from coach_engine.engine.models import ToolContext
from coach_engine.tools.builtins import format_seconds_short, unique_prompts
from coach_engine.tools.registry import ToolExecutionError
from coach_engine.tools.store import LoggedSet


class TestLogSet:
    async def test_creates_exercise_then_reuses_it(self, tool_registry, tool_context, store):
        first = await tool_registry.execute(
            "log_set", {"exercise_name": "Push-ups", "reps": 10}, tool_context
        )
        second = await tool_registry.execute(
            "log_set", {"exercise_name": "push ups", "reps": 12}, tool_context
        )

        assert first.output_for_model["created_exercise"] is True
        assert second.output_for_model["created_exercise"] is False
        assert len(await store.list_exercises("user-1")) == 1
        assert second.output_for_model["today_reps"] == 22

    async def test_block_order_and_progress(self, tool_registry, tool_context):
        batches = []
        result = await tool_registry.execute(
            "log_set", {"exercise_name": "Squats", "reps": 20}, tool_context, batches.append
        )

        assert [b.type for b in result.blocks] == ["status", "metrics", "trend", "suggestions"]
        assert [[b.type for b in batch] for batch in batches] == [
            ["status"],
            ["metrics", "trend", "suggestions"],
        ]
        assert result.blocks[0].title == "Logged 20 squats"
        trend = result.blocks[2]
        assert len(trend.points) == 14
        assert trend.total == 20

    async def test_duration_set(self, tool_registry, tool_context):
        result = await tool_registry.execute(
            "log_set", {"exercise_name": "Plank", "duration_seconds": 90}, tool_context
        )
        assert result.blocks[0].title == "Logged 1m 30s Plank"
        assert result.blocks[2].metric == "duration"

    async def test_requires_exactly_one_measure(self, tool_registry, tool_context):
        with pytest.raises(ToolExecutionError, match="exactly one"):
            await tool_registry.execute(
                "log_set",
                {"exercise_name": "Plank", "reps": 3, "duration_seconds": 30},
                tool_context,
            )

    async def test_weight_uses_default_unit(self, tool_registry, store, fixed_now):
        ctx = ToolContext(subject="user-1", default_unit="kg", turn_id="t")
        await tool_registry.execute(
            "log_set", {"exercise_name": "Deadlift", "reps": 5, "weight": 100}, ctx
        )
        (logged,) = await store.list_sets("user-1")
        assert logged.unit == "kg"
        assert logged.performed_at == fixed_now


class TestTodaySummary:
    async def test_empty_day(self, tool_registry, tool_context):
        result = await tool_registry.execute("get_today_summary", {}, tool_context)
        assert result.blocks[0].title == "No sets logged today"
        assert result.output_for_model["total_sets"] == 0

    async def test_totals(self, tool_registry, tool_context):
        await tool_registry.execute("log_set", {"exercise_name": "Push-ups", "reps": 10}, tool_context)
        await tool_registry.execute("log_set", {"exercise_name": "Push-ups", "reps": 15}, tool_context)
        await tool_registry.execute("log_set", {"exercise_name": "Squats", "reps": 20}, tool_context)

        result = await tool_registry.execute("get_today_summary", {}, tool_context)
        metrics = {m.label: m.value for m in result.blocks[0].metrics}
        assert metrics["Sets"] == "3"
        assert metrics["Reps"] == "45"
        table = result.blocks[1]
        assert table.rows[0].label == "Push-ups"
        assert table.rows[0].value == "2 sets"

    async def test_respects_timezone_offset(self, tool_registry, store):
        exercise, _ = await store.ensure_exercise("user-1", "Squats")
        # 02:00 UTC on the same UTC day as the fixed clock; 21:00 the previous day at UTC-5
        early_utc = datetime(2025, 10, 9, 2, 0, tzinfo=timezone.utc).timestamp()
        await store.add_set("user-1", LoggedSet(
            exercise_id=exercise.id, performed_at=early_utc, reps=5,
        ))

        utc_ctx = ToolContext(subject="user-1", turn_id="t", timezone_offset_minutes=0)
        utc_minus_5 = ToolContext(subject="user-1", turn_id="t", timezone_offset_minutes=300)

        utc = await tool_registry.execute("get_today_summary", {}, utc_ctx)
        local = await tool_registry.execute("get_today_summary", {}, utc_minus_5)
        assert utc.output_for_model["total_sets"] == 1
        assert local.output_for_model["total_sets"] == 0


class TestExerciseReport:
    async def test_not_found(self, tool_registry, tool_context):
        result = await tool_registry.execute(
            "get_exercise_report", {"exercise_name": "Squats"}, tool_context
        )
        assert result.output_for_model["status"] == "not_found"
        assert result.blocks[0].title == "No history for Squats"

    async def test_report(self, tool_registry, tool_context):
        await tool_registry.execute("log_set", {"exercise_name": "Squats", "reps": 20}, tool_context)
        await tool_registry.execute("log_set", {"exercise_name": "Squats", "reps": 25}, tool_context)

        result = await tool_registry.execute(
            "get_exercise_report", {"exercise_name": "squat"}, tool_context
        )
        metrics = {m.label: m.value for m in result.blocks[0].metrics}
        assert metrics == {"Total sets": "2", "Total reps": "45", "Best set": "25 reps"}
        assert result.blocks[1].best_day == 45


class TestFocusSuggestions:
    async def test_no_history(self, tool_registry, tool_context):
        result = await tool_registry.execute("get_focus_suggestions", {}, tool_context)
        assert result.blocks[0].title == "No training history yet"

    async def test_least_recent_first(self, tool_registry, tool_context, store, fixed_now):
        squats, _ = await store.ensure_exercise("user-1", "Squats")
        pushups, _ = await store.ensure_exercise("user-1", "Push-ups")
        await store.add_set("user-1", LoggedSet(
            exercise_id=squats.id, performed_at=fixed_now - 3 * 86_400, reps=10,
        ))
        await store.add_set("user-1", LoggedSet(
            exercise_id=pushups.id, performed_at=fixed_now - 3600, reps=10,
        ))
        await store.ensure_exercise("user-1", "Plank")

        result = await tool_registry.execute("get_focus_suggestions", {}, tool_context)
        rows = result.blocks[0].rows
        assert [r.label for r in rows] == ["Plank", "Squats", "Push-ups"]
        assert [r.meta for r in rows] == ["No sets logged yet", "Last trained 3d ago", "Trained today"]
        assert rows[0].value == "high"


class TestPreferenceTools:
    async def test_set_weight_unit(self, tool_registry, tool_context):
        result = await tool_registry.execute("set_weight_unit", {"unit": "kg"}, tool_context)
        action = result.blocks[1]
        assert action.type == "client_action"
        assert action.action == "set_weight_unit"
        assert action.payload == {"unit": "kg"}

    async def test_set_sound(self, tool_registry, tool_context):
        result = await tool_registry.execute("set_sound", {"enabled": False}, tool_context)
        assert result.blocks[0].title == "Tactile sounds disabled"
        assert result.blocks[1].payload == {"enabled": False}


class TestHelpers:
    @pytest.mark.parametrize("seconds, expected", [
        (45, "45 sec"),
        (120, "2 min"),
        (90, "1m 30s"),
    ])
    def test_format_seconds_short(self, seconds, expected):
        assert format_seconds_short(seconds) == expected

    def test_unique_prompts(self):
        prompts = ["a", "A ", "b", "c", "d", "e"]
        assert unique_prompts(prompts) == ["a", "b", "c", "d"]
