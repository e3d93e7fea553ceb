"""Utility helpers."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[TRUNCATED_DUE_TO_QUOTA_LIMITS]"

_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_SPACES_RE = re.compile(r"\s+")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(data: Dict[str, Any] | list[Any] | None) -> str:
    return json.dumps(data or {}, ensure_ascii=False, sort_keys=True)


def json_loads(text: str | None) -> Dict[str, Any]:
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return {}
    if isinstance(payload, dict):
        return payload
    return {}


def window_count(text: str, max_chars: int) -> int:
    size = max(1, max_chars)
    return max(1, -(-len(text or "") // size))


def window_text(text: str, window_index: int, max_chars: int) -> str:
    """Returns the ``window_index``-th slice of ``max_chars`` characters.

    Out-of-range indices are clamped to the first/last window.
    """
    text = text or ""
    size = max(1, max_chars)
    if len(text) <= size:
        return text
    idx = min(max(0, window_index), window_count(text, size) - 1)
    chunk = text[idx * size : (idx + 1) * size]
    logger.info("Text length %d exceeds %d chars, using window %d", len(text), size, idx)
    return chunk + TRUNCATION_MARKER


def normalize_question_text(text: str) -> str:
    lowered = (text or "").lower()
    return _SPACES_RE.sub(" ", _NON_WORD_RE.sub(" ", lowered)).strip()


def jaccard_similarity(a: str, b: str) -> float:
    a_tokens = set(normalize_question_text(a).split())
    b_tokens = set(normalize_question_text(b).split())
    if not a_tokens or not b_tokens:
        return 0.0
    intersection = len(a_tokens & b_tokens)
    union = len(a_tokens | b_tokens)
    return intersection / union if union else 0.0


def is_near_duplicate(candidate: str, existing: Iterable[str], threshold: float = 0.82) -> bool:
    cand = normalize_question_text(candidate)
    if not cand:
        return True
    for other in existing:
        norm = normalize_question_text(other)
        if not norm:
            continue
        if cand == norm or jaccard_similarity(cand, norm) >= threshold:
            return True
    return False
