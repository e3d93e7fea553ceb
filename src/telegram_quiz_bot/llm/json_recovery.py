"""Tolerant JSON parsing for raw LLM replies.

Models wrap JSON in code fences, surround it with prose, leave trailing
commas behind and get cut off by output-token limits. ``safe_json_parse``
handles all of these: it sanitizes the reply, tries a strict parse, and
otherwise salvages every complete object from the ``"questions"`` array.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from .types import ParseError

_LEADING_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\r?\n?")
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")
_QUESTIONS_KEY_RE = re.compile(r'"questions"\s*:\s*\[')

SNIPPET_CHARS = 400


def find_balanced_end(text: str, start: int) -> Optional[int]:
    """Returns the index of the bracket closing the one at ``start``.

    Brackets inside string literals (including escaped quotes) are ignored.
    Returns None when the value never closes.
    """
    open_char = text[start]
    close_char = "}" if open_char == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return idx
    return None


def extract_first_balanced_json(text: str) -> Optional[str]:
    starts = [idx for idx in (text.find("{"), text.find("[")) if idx >= 0]
    if not starts:
        return None
    start = min(starts)
    end = find_balanced_end(text, start)
    if end is None:
        return None
    return text[start : end + 1]


def remove_trailing_commas(text: str) -> str:
    """Drops commas that directly precede a closing ``}`` or ``]``.

    Commas inside string literals are left untouched.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    length = len(text)
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            out.append(ch)
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            nxt = idx + 1
            while nxt < length and text[nxt].isspace():
                nxt += 1
            if nxt < length and text[nxt] in "}]":
                continue
        out.append(ch)
    return "".join(out)


def sanitize_json_string(raw: str | None) -> str:
    text = str(raw or "").strip()
    if not text:
        return text

    if text.startswith("\ufeff"):
        text = text[1:].strip()

    if text.startswith("```"):
        text = _LEADING_FENCE_RE.sub("", text, count=1)
        text = _TRAILING_FENCE_RE.sub("", text).strip()

    balanced = extract_first_balanced_json(text)
    if balanced is not None:
        text = balanced
    else:
        start = text.find("{")
        end = text.rfind("}")
        if start >= 0 and end > start:
            text = text[start : end + 1]

    return remove_trailing_commas(text)


def recover_quiz_json(raw: str | None) -> Optional[Dict[str, Any]]:
    """Salvages complete question objects from a truncated reply.

    Returns None if nothing was recovered or if any complete element is
    itself unparseable.
    """
    text = str(raw or "")
    match = _QUESTIONS_KEY_RE.search(text)
    if not match:
        return None

    questions: list[Any] = []
    idx = match.end()
    length = len(text)
    while idx < length:
        while idx < length and (text[idx].isspace() or text[idx] == ","):
            idx += 1
        if idx >= length or text[idx] != "{":
            break

        end = find_balanced_end(text, idx)
        if end is None:
            break
        try:
            questions.append(json.loads(sanitize_json_string(text[idx : end + 1]), strict=False))
        except ValueError:
            return None
        idx = end + 1

    if not questions:
        return None
    return {"questions": questions}


def safe_json_parse(raw: str | None) -> Dict[str, Any]:
    cleaned = sanitize_json_string(raw)
    try:
        parsed = json.loads(cleaned, strict=False)
    except ValueError:
        recovered = recover_quiz_json(raw)
        if recovered is not None:
            return recovered
        raise ParseError("Invalid JSON", snippet=cleaned[:SNIPPET_CHARS]) from None

    if isinstance(parsed, list):
        return {"questions": parsed}
    if not isinstance(parsed, dict):
        raise ParseError("Expected a JSON object", snippet=cleaned[:SNIPPET_CHARS])
    return parsed
