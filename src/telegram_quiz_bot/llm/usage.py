"""Token usage normalization across provider naming conventions."""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from .types import TokenUsage

PROMPT_FIELDS = (
    "promptTokenCount",
    "promptTokens",
    "inputTokenCount",
    "inputTokens",
    "prompt_tokens",
    "input_tokens",
)
COMPLETION_FIELDS = (
    "candidatesTokenCount",
    "candidateTokenCount",
    "outputTokenCount",
    "outputTokens",
    "completionTokens",
    "completion_tokens",
    "output_tokens",
)
TOTAL_FIELDS = ("totalTokenCount", "totalTokens", "total_tokens")


def _first_present(usage: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = usage.get(name)
        if value is not None:
            return value
    return None


def _positive_int(value: Any) -> Optional[int]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return int(number)


def normalize_usage(usage: Mapping[str, Any] | None) -> TokenUsage:
    if not usage or not isinstance(usage, Mapping):
        return TokenUsage()

    prompt = _positive_int(_first_present(usage, PROMPT_FIELDS))
    completion = _positive_int(_first_present(usage, COMPLETION_FIELDS))
    total = _positive_int(_first_present(usage, TOTAL_FIELDS))

    if total is None:
        summed = (prompt or 0) + (completion or 0)
        total = summed if summed > 0 else None

    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)
