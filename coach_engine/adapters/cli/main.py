"""CLI JSON-lines adapter — reads text from argv/stdin, prints stream events as JSON."""

from __future__ import annotations

import asyncio
import json
import sys

from coach_engine import create_controller
from coach_engine.engine.controller import Turn
from coach_engine.engine.models import Message, Preferences, TurnRequest

CLI_SUBJECT = "cli-local"


def build_request(raw: str) -> TurnRequest:
    """Accept a full request body, ``{"text": ...}``, or plain text."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict) and "messages" in data:
        return TurnRequest.model_validate(data)
    text = data.get("text", raw) if isinstance(data, dict) else raw
    return TurnRequest(
        messages=[Message(role="user", content=text)],
        preferences=Preferences(unit="lbs", sound_enabled=True),
    )


async def run_cli(request: TurnRequest, subject: str = CLI_SUBJECT) -> None:
    controller = create_controller()
    async for event in controller.stream(Turn(request=request, subject=subject)):
        print(event.model_dump_json(by_alias=True, exclude_none=True), flush=True)


def main() -> None:
    if len(sys.argv) > 1:
        raw = " ".join(sys.argv[1:])
    else:
        raw = sys.stdin.read().strip()
        if not raw:
            print("Usage: coach-cli <text>  OR  echo '{\"text\":\"...\"}' | coach-cli", file=sys.stderr)
            sys.exit(1)

    asyncio.run(run_cli(build_request(raw)))


if __name__ == "__main__":
    main()
