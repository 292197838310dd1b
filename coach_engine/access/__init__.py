from coach_engine.access.interface import Authenticator, RateLimitDecision, RateLimiter
from coach_engine.access.in_memory import (
    InMemoryRateLimiter,
    StaticTokenAuthenticator,
    parse_token_map,
)

__all__ = [
    "Authenticator",
    "InMemoryRateLimiter",
    "RateLimitDecision",
    "RateLimiter",
    "StaticTokenAuthenticator",
    "parse_token_map",
]
