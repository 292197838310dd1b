"""In-memory access checks: static bearer tokens and a fixed-window limiter."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from coach_engine.access.interface import Authenticator, RateLimitDecision, RateLimiter

logger = logging.getLogger(__name__)


def parse_token_map(raw: str) -> dict[str, str]:
    """Parse ``"token:subject,token2:subject2"`` into ``{token: subject}``."""
    tokens: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        token, sep, subject = entry.partition(":")
        if not sep or not token.strip() or not subject.strip():
            raise ValueError(f"Malformed token entry: {entry!r} (expected token:subject)")
        tokens[token.strip()] = subject.strip()
    return tokens


class StaticTokenAuthenticator(Authenticator):
    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    async def authenticate(self, authorization: str | None) -> str | None:
        if not authorization:
            return None
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return self._tokens.get(token.strip())


class InMemoryRateLimiter(RateLimiter):
    """Fixed window per subject. ``reset_at`` is epoch milliseconds."""

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()

    @property
    def tracked_subjects(self) -> int:
        return len(self._windows)

    def _prune(self, now: float) -> None:
        expired = [s for s, (start, _) in self._windows.items() if now - start >= self._window]
        for subject in expired:
            del self._windows[subject]

    async def check(self, subject: str) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            self._prune(now)
            start, count = self._windows.get(subject, (now, 0))
            reset_at = start + self._window

            if count >= self._limit:
                retry_after_ms = max(math.ceil((reset_at - now) * 1000), 0)
                logger.info("rate limit denied subject=%s retry_after_ms=%d", subject, retry_after_ms)
                return RateLimitDecision(
                    ok=False,
                    limit=self._limit,
                    remaining=0,
                    reset_at=reset_at * 1000,
                    retry_after_ms=retry_after_ms,
                )

            count += 1
            self._windows[subject] = (start, count)
            return RateLimitDecision(
                ok=True,
                limit=self._limit,
                remaining=self._limit - count,
                reset_at=reset_at * 1000,
            )
