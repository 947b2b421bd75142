"""Failure classification and retry policy for agent invocations.

Only failures that a second attempt could plausibly fix are transient:
network hiccups, spawn failures and garbled output. Rate limits, auth
failures, timeouts and everything else fail fast.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .errors import (
    AgentInvocationError,
    AgentTimeoutError,
    InvalidInputError,
    ProcessFailedError,
)


class FailureKind(Enum):
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    NETWORK = "network"
    SPAWN = "spawn"
    MALFORMED_OUTPUT = "malformed_output"
    TIMEOUT = "timeout"
    INVALID_INPUT = "invalid_input"
    OTHER = "other"


TRANSIENT_KINDS = frozenset({
    FailureKind.NETWORK,
    FailureKind.SPAWN,
    FailureKind.MALFORMED_OUTPUT,
})

# HTTP status codes only count next to a status-like word, so ids and
# line numbers that happen to contain the digits do not match.
def _status(code: str) -> str:
    return rf"\b(?:status|code|error|http(?:/\d(?:\.\d)?)?)\W{{0,3}}{code}\b"


# Checked in order; rate limit and auth win over network wording such
# as "connection refused: 429 too many requests".
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    r"rate[ _-]?limit",
    "too many requests",
    _status("429"),
    "quota",
    "usage limit",
    "resource_exhausted",
)
_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    _status("401"),
    _status("403"),
    "forbidden",
    "authentication",
    "not authenticated",
    "not logged in",
    "login required",
    "please log in",
    "invalid api key",
    "api key",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "network",
    "connection refused",
    "connection reset",
    "connection closed",
    "connection error",
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "socket hang up",
    r"\bdns\b",
    "temporarily unavailable",
    "service unavailable",
    _status("502"),
    _status("503"),
    "bad gateway",
    "stream closed",
)


def _compile(patterns: tuple[str, ...]) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{pat})" for pat in patterns))


_RATE_LIMIT_RE = _compile(_RATE_LIMIT_PATTERNS)
_AUTH_RE = _compile(_AUTH_PATTERNS)
_NETWORK_RE = _compile(_NETWORK_PATTERNS)


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception to the FailureKind that drives retry."""
    if isinstance(exc, AgentTimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(exc, InvalidInputError):
        return FailureKind.INVALID_INPUT
    if not isinstance(exc, AgentInvocationError):
        return FailureKind.OTHER

    if isinstance(exc, ProcessFailedError) and exc.malformed_output:
        # Unparseable stdout is arbitrary agent text; only the reason
        # and stderr are diagnostics.
        text = f"{exc.reason}\n{exc.stderr}".lower()
    else:
        text = exc.diagnostic_text.lower()
    if _RATE_LIMIT_RE.search(text):
        return FailureKind.RATE_LIMIT
    if _AUTH_RE.search(text):
        return FailureKind.AUTH
    if isinstance(exc, ProcessFailedError):
        if exc.spawn_failed:
            return FailureKind.SPAWN
        if exc.malformed_output:
            return FailureKind.MALFORMED_OUTPUT
    if _NETWORK_RE.search(text):
        return FailureKind.NETWORK
    return FailureKind.OTHER


def is_transient(exc: BaseException) -> bool:
    return classify_failure(exc) in TRANSIENT_KINDS


@dataclass
class RetryPolicy:
    """Exponential backoff around agent invocations.

    ``max_attempts`` counts total invocations, so 3 means one try plus
    up to two retries.
    """
    enabled: bool = True
    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    multiplier: float = 2.0
    max_delay_seconds: float = 5.0

    @property
    def attempts(self) -> int:
        return max(1, self.max_attempts) if self.enabled else 1

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after failed ``attempt`` (1-based)."""
        delay = self.initial_delay_seconds * (self.multiplier ** (attempt - 1))
        return max(0.0, min(self.max_delay_seconds, delay))

    @classmethod
    def disabled(cls) -> RetryPolicy:
        return cls(enabled=False)
