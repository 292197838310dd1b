"""FastAPI adapter for ``POST /coach``: access checks, body validation, SSE or JSON."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from coach_engine import create_controller
from coach_engine.access.in_memory import (
    InMemoryRateLimiter,
    StaticTokenAuthenticator,
    parse_token_map,
)
from coach_engine.access.interface import Authenticator, RateLimiter
from coach_engine.adapters.web_fastapi.sse import (
    SSE_HEADERS,
    encode_sse,
    padding_frame,
    wants_event_stream,
)
from coach_engine.engine.controller import Turn, TurnController
from coach_engine.engine.models import TurnRequest

logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


def _default_authenticator() -> Authenticator | None:
    raw = os.environ.get("COACH_API_TOKENS", "")
    return StaticTokenAuthenticator(parse_token_map(raw)) if raw.strip() else None


def _default_rate_limiter() -> RateLimiter:
    return InMemoryRateLimiter(limit=int(os.environ.get("COACH_RATE_LIMIT_PER_MIN", "10")))


async def _watch_disconnect(request: Request, disconnected: asyncio.Event) -> None:
    while not disconnected.is_set():
        if await request.is_disconnected():
            disconnected.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def create_app(
    controller: TurnController | None = None,
    authenticator: Authenticator | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    controller = controller or create_controller()
    authenticator = authenticator or _default_authenticator()
    rate_limiter = rate_limiter or _default_rate_limiter()
    app = FastAPI(title="Coach API", version="0.1.0")

    @app.post("/coach")
    async def coach(request: Request):
        if authenticator is None:
            logger.error("COACH_API_TOKENS is not configured")
            return _error(500, "Coach authentication is not configured")
        subject = await authenticator.authenticate(request.headers.get("authorization"))
        if subject is None:
            return _error(401, "Unauthorized")

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(400, "Invalid JSON body")
        try:
            turn_request = TurnRequest.model_validate(body)
        except ValidationError as exc:
            logger.info("invalid coach request: %s", exc.errors()[0].get("msg"))
            return _error(400, "Invalid request body")
        if turn_request.latest_user_message() is None:
            return _error(400, "Missing user message")

        try:
            decision = await rate_limiter.check(subject)
        except Exception:
            logger.exception("rate limit check failed subject=%s", subject)
            return _error(500, "Failed to check rate limit")
        if not decision.ok:
            retry_after = max(math.ceil(decision.retry_after_ms / 1000), 1)
            return JSONResponse(
                {
                    "error": "Rate limit exceeded. Try again soon.",
                    "retryAfterSeconds": retry_after,
                    "resetAt": decision.reset_at,
                },
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )

        turn = Turn(request=turn_request, subject=subject)
        logger.info(
            "coach turn=%s subject=%s stream=%s messages=%d",
            turn.turn_id, subject, wants_event_stream(request), len(turn_request.messages),
        )

        if wants_event_stream(request):
            async def event_source():
                events = controller.stream(turn)
                try:
                    async for event in events:
                        yield encode_sse(event)
                        if event.type == "start":
                            yield padding_frame()
                finally:
                    await events.aclose()

            return StreamingResponse(
                event_source(),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        disconnected = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, disconnected))
        try:
            response = await controller.respond(turn, disconnect=disconnected)
        finally:
            watcher.cancel()
        return JSONResponse(response.to_wire())

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


# Module-level instance for ``uvicorn coach_engine.adapters.web_fastapi.app:app``
app = create_app()


def serve() -> None:
    """Entry-point for ``coach-web`` console script."""
    import uvicorn

    uvicorn.run(
        "coach_engine.adapters.web_fastapi.app:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
