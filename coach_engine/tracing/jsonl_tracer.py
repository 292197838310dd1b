"""JSONL file-based trace collector."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from coach_engine.tracing.interface import TraceCollector


class JSONLTraceCollector(TraceCollector):
    """Writes turn events to ``<trace_dir>/<turn_id>.jsonl``.

    Events are buffered in memory and flushed once the controller has
    emitted the turn's terminal event, so an abandoned turn still leaves a
    complete file behind.
    """

    def __init__(self, trace_dir: str = "./traces") -> None:
        self._dir = Path(trace_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._buffers: dict[str, list[dict[str, Any]]] = {}

    async def emit(self, turn_id: str, event_type: str, data: dict[str, Any]) -> None:
        self._buffers.setdefault(turn_id, []).append({
            "ts": time.time(),
            "turn_id": turn_id,
            "event": event_type,
            **data,
        })

    async def flush(self, turn_id: str) -> None:
        entries = self._buffers.pop(turn_id, [])
        if not entries:
            return
        path = self._dir / f"{turn_id}.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry, default=str) + "\n")
