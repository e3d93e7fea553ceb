"""Decides what the quiz generator does after a failed Gemini attempt.

The policy is a pure function over ``ErrorKind`` and per-call bookkeeping so
it can be tested without any network mocking.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .classifier import ErrorKind


class Action(Enum):
    RETRY = "retry"  # same provider, after ``wait_seconds``
    NEXT_MODEL = "next_model"  # same provider, next model candidate, no wait
    FALLBACK = "fallback"  # hand over to the fallback providers
    RAISE = "raise"  # propagate the original error as-is
    FAIL = "fail"  # terminal generation failure


KEY_ROTATING = {
    ErrorKind.RATE_LIMITED,
    ErrorKind.FORBIDDEN,
    ErrorKind.SERVER_OVERLOAD,
    ErrorKind.TIMEOUT,
}

BACKOFF_RETRYABLE = {
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_OVERLOAD,
    ErrorKind.TIMEOUT,
    ErrorKind.EMPTY_RESPONSE,
    ErrorKind.MALFORMED_OUTPUT,
}

FALLBACK_ELIGIBLE = BACKOFF_RETRYABLE | {ErrorKind.MODEL_NOT_FOUND, ErrorKind.FORBIDDEN}


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: int = 2000
    max_delay_ms: int = 7000
    max_total_time_ms: int = 35000

    @classmethod
    def from_settings(cls, llm_cfg: Mapping[str, Any]) -> "RetryPolicy":
        return cls(
            max_retries=int(llm_cfg.get("max_retries", 3)),
            initial_delay_ms=int(llm_cfg.get("initial_retry_delay_ms", 2000)),
            max_delay_ms=int(llm_cfg.get("max_retry_delay_ms", 7000)),
            max_total_time_ms=int(llm_cfg.get("max_total_time_ms", 35000)),
        )


@dataclass
class RetryState:
    """Bookkeeping for one generation call; never shared between calls."""

    attempt: int = 0
    model_index: int = 0
    key_index: int = 0
    last_kind: Optional[ErrorKind] = None
    suggested_retry_seconds: Optional[float] = None


@dataclass(frozen=True)
class Decision:
    action: Action
    wait_seconds: float = 0.0
    reason: str = ""


def backoff_ms(policy: RetryPolicy, attempt: int, retry_after_seconds: Optional[float]) -> float:
    """Uncapped wait: the upstream hint if given, else exponential backoff."""
    if retry_after_seconds is not None:
        return max(500.0, retry_after_seconds * 1000.0)
    return float(policy.initial_delay_ms * (2**attempt))


def decide(
    policy: RetryPolicy,
    state: RetryState,
    kind: ErrorKind,
    *,
    model_count: int,
    key_count: int,
    elapsed_ms: float,
    retry_after_seconds: Optional[float] = None,
    hard_quota_zero: bool = False,
    fallback_available: bool = False,
) -> Decision:
    """Advances ``state`` for a failed attempt and returns the next action.

    The attempt counter resets when the model changes, but not when only the
    API key rotates.
    """
    state.attempt += 1
    state.last_kind = kind
    if retry_after_seconds is not None:
        state.suggested_retry_seconds = retry_after_seconds

    if kind is ErrorKind.INSUFFICIENT_CONTENT:
        return Decision(Action.RAISE, reason="insufficient content")

    if kind is ErrorKind.MODEL_NOT_FOUND and state.model_index + 1 < model_count:
        state.model_index += 1
        state.attempt = 0
        return Decision(Action.NEXT_MODEL, reason="model not found")

    if kind in KEY_ROTATING and key_count > 1:
        state.key_index += 1

    retryable = kind in BACKOFF_RETRYABLE or (kind is ErrorKind.FORBIDDEN and key_count > 1)
    if retryable and state.attempt <= policy.max_retries and not hard_quota_zero:
        raw_ms = backoff_ms(policy, state.attempt, retry_after_seconds)
        wait_ms = min(raw_ms, float(policy.max_delay_ms))
        would_exceed_budget = elapsed_ms + wait_ms > policy.max_total_time_ms
        suggested_too_long = raw_ms > policy.max_delay_ms
        if fallback_available and (would_exceed_budget or suggested_too_long):
            return Decision(Action.FALLBACK, reason="retry wait too long or time budget exhausted")
        return Decision(Action.RETRY, wait_seconds=wait_ms / 1000.0, reason=kind.value)

    if kind in FALLBACK_ELIGIBLE:
        reason = "hard zero quota" if hard_quota_zero else f"{kind.value}, retries exhausted"
        return Decision(Action.FALLBACK, reason=reason)

    return Decision(Action.FAIL, reason=kind.value)
