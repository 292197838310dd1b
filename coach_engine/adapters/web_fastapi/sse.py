"""Server-Sent Events framing for coach stream events."""

from __future__ import annotations

from pydantic import BaseModel
from fastapi import Request

SSE_PADDING_BYTES = 2048

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    # Nginx buffers event streams unless told otherwise.
    "X-Accel-Buffering": "no",
}


def wants_event_stream(request: Request) -> bool:
    return "text/event-stream" in request.headers.get("accept", "")


def encode_sse(event: BaseModel) -> str:
    payload = event.model_dump_json(by_alias=True, exclude_none=True)
    return f"event: {event.type}\ndata: {payload}\n\n"


def encode_sse_comment(comment: str) -> str:
    return f":{comment}\n\n"


def padding_frame(size: int = SSE_PADDING_BYTES) -> str:
    """Comment frame that pushes the first bytes past proxy/browser buffers."""
    return encode_sse_comment(" " * size)
