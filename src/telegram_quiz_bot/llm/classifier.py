"""Classification of provider failures into retry-relevant kinds.

All string heuristics against upstream error text live here so the retry
policy can work on ``ErrorKind`` values only.
"""

from __future__ import annotations

import asyncio
import re
from enum import Enum
from typing import Iterable, Optional

from .types import (
    ConfigError,
    EmptyResponseError,
    GenerationTimeoutError,
    HttpError,
    InsufficientContentError,
    NetworkError,
    ParseError,
)


class ErrorKind(Enum):
    INSUFFICIENT_CONTENT = "insufficient_content"
    MODEL_NOT_FOUND = "model_not_found"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    SERVER_OVERLOAD = "server_overload"
    TIMEOUT = "timeout"
    EMPTY_RESPONSE = "empty_response"
    MALFORMED_OUTPUT = "malformed_output"
    INVALID_REQUEST = "invalid_request"
    CONFIG = "config"
    UNKNOWN = "unknown"


INSUFFICIENT_CONTENT_PATTERNS = [r"insufficient content"]
MODEL_NOT_FOUND_PATTERNS = [r"models/\S+.*not found", r"model.*not.*found"]
RATE_LIMIT_PATTERNS = [
    r"\b429\b",
    r"rate.*limit",
    r"quota",
    r"resource_exhausted",
    r"too many requests",
]
FORBIDDEN_PATTERNS = [r"\b401\b", r"\b403\b", r"permission", r"unauthorized", r"api key not valid"]
SERVER_OVERLOAD_PATTERNS = [r"\b503\b", r"overloaded", r"unavailable"]
TIMEOUT_PATTERNS = [r"timeout", r"timed out", r"deadline"]

SERVER_OVERLOAD_STATUSES = {500, 502, 503, 504}

_RETRY_IN_RE = re.compile(r"retry in\s+([0-9]+(?:\.[0-9]+)?)\s*s", re.IGNORECASE)
_RETRY_DELAY_RE = re.compile(r'"?retryDelay"?\s*:\s*"([0-9]+(?:\.[0-9]+)?)s"', re.IGNORECASE)


def _match_patterns(text: str, patterns: Iterable[str]) -> bool:
    return any(re.search(pattern, text) for pattern in patterns)


def error_text(exc: BaseException) -> str:
    """Message plus upstream body, which is where providers put the details."""
    message = str(exc)
    body = getattr(exc, "body", "") or ""
    if body and body not in message:
        return f"{message}\n{body}"
    return message


def classify(status: Optional[int], text: str) -> ErrorKind:
    lowered = (text or "").lower()

    if _match_patterns(lowered, INSUFFICIENT_CONTENT_PATTERNS):
        return ErrorKind.INSUFFICIENT_CONTENT

    if status is not None:
        if status == 404:
            return ErrorKind.MODEL_NOT_FOUND
        if status == 429:
            return ErrorKind.RATE_LIMITED
        if status in (401, 403):
            return ErrorKind.FORBIDDEN
        if status in SERVER_OVERLOAD_STATUSES:
            return ErrorKind.SERVER_OVERLOAD
        if status == 408:
            return ErrorKind.TIMEOUT
        if status == 400:
            if "api key not valid" in lowered:
                return ErrorKind.FORBIDDEN
            if _match_patterns(lowered, MODEL_NOT_FOUND_PATTERNS):
                return ErrorKind.MODEL_NOT_FOUND
            return ErrorKind.INVALID_REQUEST

    if _match_patterns(lowered, MODEL_NOT_FOUND_PATTERNS):
        return ErrorKind.MODEL_NOT_FOUND
    if _match_patterns(lowered, RATE_LIMIT_PATTERNS):
        return ErrorKind.RATE_LIMITED
    if _match_patterns(lowered, FORBIDDEN_PATTERNS):
        return ErrorKind.FORBIDDEN
    if _match_patterns(lowered, SERVER_OVERLOAD_PATTERNS):
        return ErrorKind.SERVER_OVERLOAD
    if _match_patterns(lowered, TIMEOUT_PATTERNS):
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    if isinstance(exc, InsufficientContentError):
        return ErrorKind.INSUFFICIENT_CONTENT
    if isinstance(exc, ConfigError):
        return ErrorKind.CONFIG
    if isinstance(exc, (GenerationTimeoutError, NetworkError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, EmptyResponseError):
        return ErrorKind.EMPTY_RESPONSE
    if isinstance(exc, ParseError):
        return ErrorKind.MALFORMED_OUTPUT
    if isinstance(exc, HttpError):
        return classify(exc.status, exc.body)
    return classify(None, error_text(exc))


def parse_retry_after_seconds(text: str) -> Optional[float]:
    """Extracts 'Please retry in 3.5s' or '"retryDelay": "4s"' hints."""
    for pattern in (_RETRY_IN_RE, _RETRY_DELAY_RE):
        match = pattern.search(text or "")
        if match:
            return float(match.group(1))
    return None


def is_hard_free_tier_zero(text: str) -> bool:
    """Gemini free tier reporting a quota of zero rather than a transient limit.

    Heuristic against the observed error text; providers may reword it.
    """
    text = text or ""
    return "limit: 0" in text and ("generate_content_free_tier" in text or "FreeTier" in text)


def is_model_skip_error(exc: BaseException, markers: Iterable[str]) -> bool:
    """400 responses that only rule out the current model, not the provider."""
    if not isinstance(exc, HttpError) or exc.status != 400:
        return False
    body = exc.body.lower()
    for marker in markers:
        if marker == "model_not_found":
            if "model" in body and "not found" in body:
                return True
        elif marker.lower() in body:
            return True
    return False
