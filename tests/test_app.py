"""Tests for the FastAPI adapter: status codes, JSON body, and SSE framing."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from coach_engine import create_controller
from coach_engine.access.in_memory import InMemoryRateLimiter, StaticTokenAuthenticator
from coach_engine.access.interface import RateLimitDecision, RateLimiter
from coach_engine.adapters.web_fastapi.app import create_app
from coach_engine.adapters.web_fastapi.sse import SSE_PADDING_BYTES

AUTH = {"Authorization": "Bearer tok-a"}
BODY = {
    "messages": [{"role": "user", "content": "show today's summary"}],
    "preferences": {"unit": "lbs", "soundEnabled": True, "timezoneOffsetMinutes": 0},
}


class BrokenRateLimiter(RateLimiter):
    async def check(self, subject: str) -> RateLimitDecision:
        raise RuntimeError("redis down")


def _client(limit: int = 10, rate_limiter: RateLimiter | None = None) -> TestClient:
    app = create_app(
        controller=create_controller(use_llm=False),
        authenticator=StaticTokenAuthenticator({"tok-a": "alice"}),
        rate_limiter=rate_limiter or InMemoryRateLimiter(limit=limit),
    )
    return TestClient(app)


def _frames(text: str) -> list[str]:
    return [frame for frame in text.split("\n\n") if frame]


def _events(text: str) -> list[tuple[str, dict]]:
    events = []
    for frame in _frames(text):
        if frame.startswith(":"):
            continue
        event_line, data_line = frame.split("\n")
        events.append((event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))))
    return events


class TestHealth:
    def test_health(self):
        resp = _client().get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestAccess:
    def test_missing_token(self):
        resp = _client().post("/coach", json=BODY)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_unknown_token(self):
        resp = _client().post("/coach", json=BODY, headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_missing_auth_configuration(self, monkeypatch):
        monkeypatch.delenv("COACH_API_TOKENS", raising=False)
        app = create_app(controller=create_controller(use_llm=False))
        resp = TestClient(app).post("/coach", json=BODY, headers=AUTH)
        assert resp.status_code == 500

    def test_rate_limited(self):
        client = _client(limit=1)
        assert client.post("/coach", json=BODY, headers=AUTH).status_code == 200

        resp = client.post("/coach", json=BODY, headers=AUTH)
        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "Rate limit exceeded. Try again soon."
        assert body["retryAfterSeconds"] >= 1
        assert "resetAt" in body
        assert int(resp.headers["Retry-After"]) == body["retryAfterSeconds"]

    def test_rate_limit_failure(self):
        resp = _client(rate_limiter=BrokenRateLimiter()).post("/coach", json=BODY, headers=AUTH)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to check rate limit"}

    def test_auth_checked_before_body(self):
        resp = _client().post("/coach", content=b"{not json")
        assert resp.status_code == 401


class TestBodyValidation:
    def test_invalid_json(self):
        resp = _client().post(
            "/coach", content=b"{not json", headers={**AUTH, "Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid JSON body"}

    @pytest.mark.parametrize("body", [
        {},
        {"messages": [], "preferences": BODY["preferences"]},
        {"messages": BODY["messages"], "preferences": {"unit": "stone", "soundEnabled": True}},
        {"messages": [{"role": "user", "content": "   "}], "preferences": BODY["preferences"]},
        {"messages": [{"role": "user", "content": "x" * 4001}], "preferences": BODY["preferences"]},
    ])
    def test_invalid_body(self, body):
        resp = _client().post("/coach", json=body, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}

    def test_missing_user_message(self):
        body = {**BODY, "messages": [{"role": "assistant", "content": "Hi there"}]}
        resp = _client().post("/coach", json=body, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing user message"}

    def test_invalid_body_does_not_consume_quota(self):
        client = _client(limit=1)
        client.post("/coach", json={}, headers=AUTH)
        assert client.post("/coach", json=BODY, headers=AUTH).status_code == 200


class TestBufferedResponse:
    def test_json_body(self):
        resp = _client().post("/coach", json=BODY, headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["trace"] == {
            "toolsUsed": ["get_today_summary"],
            "model": "fallback-deterministic",
            "fallbackUsed": True,
        }
        assert data["assistantText"] == "Prepared today's summary."
        assert data["blocks"][0]["type"] == "status"

    def test_client_action_block(self):
        body = {**BODY, "messages": [{"role": "user", "content": "switch to kg"}]}
        data = _client().post("/coach", json=body, headers=AUTH).json()

        action = next(b for b in data["blocks"] if b["type"] == "client_action")
        assert action == {"type": "client_action", "action": "set_weight_unit", "payload": {"unit": "kg"}}


class TestStreamingResponse:
    def _stream(self, text: str):
        body = {**BODY, "messages": [{"role": "user", "content": text}]}
        return _client().post(
            "/coach", json=body, headers={**AUTH, "Accept": "text/event-stream"}
        )

    def test_headers(self):
        resp = self._stream("show today's summary")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache, no-transform"
        assert resp.headers["x-accel-buffering"] == "no"

    def test_padding_follows_start(self):
        frames = _frames(self._stream("show today's summary").text)

        assert frames[0].startswith("event: start\n")
        assert frames[1] == ":" + " " * SSE_PADDING_BYTES

    def test_event_sequence(self):
        events = _events(self._stream("10 pushups").text)
        types = [name for name, _ in events]

        assert types == ["start", "tool_start", "tool_result", "tool_result", "final"]
        assert events[0][1] == {"type": "start", "model": "fallback-deterministic"}
        assert events[1][1] == {"type": "tool_start", "toolName": "log_set"}
        final = events[-1][1]["response"]
        assert final["trace"]["toolsUsed"] == ["log_set"]
        assert final["blocks"][0]["title"] == "Logged 10 push-ups"
