"""Typed-answer checking for open questions."""

from __future__ import annotations

import re
from typing import Iterable

from .utils import jaccard_similarity, normalize_question_text

MIN_CONTAINMENT_CHARS = 4
ANSWER_JACCARD_THRESHOLD = 0.86

_NUMBER_SEPARATORS_RE = re.compile(r"[,\s]+")
_NON_NUMBER_RE = re.compile(r"[^0-9.\-]")


def normalize_number_text(text: str) -> str:
    compact = _NUMBER_SEPARATORS_RE.sub("", (text or "").lower())
    return _NON_NUMBER_RE.sub("", compact).strip()


def is_answer_match(user_answer: str, canonical: str, acceptable: Iterable[str] = ()) -> bool:
    """True when the typed answer matches the canonical answer or an accepted variant.

    Checks, in order: normalized equality, equality of the digits, the answer
    containing a variant of at least 4 characters, then token Jaccard
    similarity of 0.86 or more.
    """
    user_norm = normalize_question_text(user_answer)
    canon_norm = normalize_question_text(canonical)
    if not user_norm or not canon_norm:
        return False

    variants = [canon_norm] + [v for v in (normalize_question_text(a) for a in acceptable) if v]
    if user_norm in variants:
        return True

    user_num = normalize_number_text(user_answer)
    if user_num:
        numbers = [normalize_number_text(canonical)] + [normalize_number_text(a) for a in acceptable]
        if user_num in [n for n in numbers if n]:
            return True

    for variant in variants:
        if len(variant) >= MIN_CONTAINMENT_CHARS and variant in user_norm:
            return True
        if jaccard_similarity(user_norm, variant) >= ANSWER_JACCARD_THRESHOLD:
            return True
    return False
