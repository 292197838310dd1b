"""Authenticator and RateLimiter ABCs guarding access to a turn."""

from __future__ import annotations

from abc import ABC, abstractmethod

from coach_engine.engine.models import WireModel


class RateLimitDecision(WireModel):
    ok: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_ms: int = 0


class Authenticator(ABC):
    @abstractmethod
    async def authenticate(self, authorization: str | None) -> str | None:
        """Return the subject for an ``Authorization`` header, or ``None``."""


class RateLimiter(ABC):
    @abstractmethod
    async def check(self, subject: str) -> RateLimitDecision:
        """Consume one request for *subject* and report whether it may proceed."""
