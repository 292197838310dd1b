"""LLM client — ABC, OpenAI-compatible implementation, and a scripted mock."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from coach_engine.engine.models import LLMResult, ToolCallRequest

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class LLMClient(ABC):
    """Abstract chat-completion interface. Returns one complete assistant turn."""

    @property
    @abstractmethod
    def model(self) -> str: ...

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResult: ...


# ---------------------------------------------------------------------------
# OpenAI implementation (also serves OpenRouter via base_url)
# ---------------------------------------------------------------------------

class OpenAILLMClient(LLMClient):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        # Late import so the rest of the package works without openai installed
        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=default_headers,
        )
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResult:
        kwargs: dict[str, Any] = {"model": self._model, "messages": messages}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        response = await self._client.chat.completions.create(**kwargs)
        if not response.choices or response.choices[0].message is None:
            raise ValueError("Model returned no message")
        message = response.choices[0].message

        tool_calls = [tc for tc in (message.tool_calls or []) if tc.type == "function"]
        if tool_calls:
            return LLMResult(
                content=message.content,
                tool_calls=[
                    ToolCallRequest(
                        id=tc.id,
                        name=tc.function.name,
                        arguments=tc.function.arguments or "{}",
                    )
                    for tc in tool_calls
                ],
            )

        return LLMResult(content=message.content or "")


def make_openrouter_client(api_key: str, model: str) -> OpenAILLMClient:
    return OpenAILLMClient(
        api_key=api_key,
        model=model,
        base_url=OPENROUTER_BASE_URL,
        default_headers={
            "HTTP-Referer": "https://volume.fitness",
            "X-Title": "Volume Coach",
        },
    )


# ---------------------------------------------------------------------------
# Test mock — deterministic, pre-loaded responses
# ---------------------------------------------------------------------------

class MockLLMClient(LLMClient):
    """Returns pre-configured responses in order. Used in unit tests.

    An ``Exception`` instance in the list is raised instead of returned.
    Every call records the messages it received.
    """

    def __init__(self, responses: list[LLMResult | Exception], model: str = "test-model") -> None:
        self._responses = list(responses)
        self._model = model
        self._call_index = 0
        self.calls: list[list[dict[str, Any]]] = []

    @property
    def model(self) -> str:
        return self._model

    async def generate(self, messages: list[dict], tools: list[dict] | None = None) -> LLMResult:
        self.calls.append([dict(m) for m in messages])
        if self._call_index >= len(self._responses):
            return LLMResult(content="[mock responses exhausted]")
        result = self._responses[self._call_index]
        self._call_index += 1
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def call_count(self) -> int:
        return self._call_index
