"""TraceCollector ABC — no internal deps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class TraceCollector(ABC):
    """Collects structured per-turn trace events (routing, model rounds, tool calls)."""

    @abstractmethod
    async def emit(self, turn_id: str, event_type: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    async def flush(self, turn_id: str) -> None: ...


class NullTraceCollector(TraceCollector):
    """Discards everything. Default when no trace directory is configured."""

    async def emit(self, turn_id: str, event_type: str, data: dict[str, Any]) -> None:
        return None

    async def flush(self, turn_id: str) -> None:
        return None
