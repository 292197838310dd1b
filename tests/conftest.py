"""Shared fixtures for coach_engine tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from coach_engine.engine.controller import Turn
from coach_engine.engine.models import Message, Preferences, ToolContext, TurnRequest
from coach_engine.tools.builtins import make_builtin_tools
from coach_engine.tools.registry import ToolRegistry
from coach_engine.tools.store import InMemoryWorkoutStore
from coach_engine.tracing.jsonl_tracer import JSONLTraceCollector

FIXED_NOW = datetime(2025, 10, 9, 14, 0, tzinfo=timezone.utc).timestamp()


def fixed_clock() -> float:
    return FIXED_NOW


def _make_request(*texts: str, unit: str = "lbs", offset: int | None = None) -> TurnRequest:
    return TurnRequest(
        messages=[Message(role="user", content=text) for text in texts],
        preferences=Preferences(unit=unit, sound_enabled=True, timezone_offset_minutes=offset),
    )


def _make_turn(text: str, **kwargs) -> Turn:
    return Turn(request=_make_request(text, **kwargs), subject="user-1", turn_id="turn-test")


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def make_request():
    return _make_request


@pytest.fixture
def make_turn():
    return _make_turn


@pytest.fixture
def store():
    return InMemoryWorkoutStore()


@pytest.fixture
def trace_collector(tmp_path):
    return JSONLTraceCollector(trace_dir=str(tmp_path / "traces"))


@pytest.fixture
def tool_registry(store, trace_collector):
    registry = ToolRegistry(trace_collector=trace_collector)
    for tool in make_builtin_tools(store, now=fixed_clock):
        registry.register(tool)
    return registry


@pytest.fixture
def tool_context():
    return ToolContext(subject="user-1", default_unit="lbs", turn_id="turn-test")
