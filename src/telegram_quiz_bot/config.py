"""Configuration loading and defaults."""

from __future__ import annotations

import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "database": {
        "path": "data/telegram_quiz_bot.db",
    },
    "telegram": {
        "poll_interval_seconds": 1,
        "admin_user_ids": [],
    },
    "quiz": {
        "max_input_chars": 30000,
        "min_input_chars": 200,
        "default_count": 10,
        "max_count": 30,
    },
    "llm": {
        "max_concurrency": 5,
        "max_retries": 3,
        "initial_retry_delay_ms": 2000,
        "max_retry_delay_ms": 7000,
        "max_total_time_ms": 35000,
        "generation_timeout_seconds": 25,
        "request_timeout_seconds": 30,
        "network_attempts": 3,
        "network_backoff_seconds": 1.5,
        "temperature": 0.3,
        "json_mode": True,
        "gemini": {
            "model": "",
            "models": ["gemini-2.5-flash", "gemini-2.0-flash", "gemini-2.5-flash-lite"],
            "max_tokens": 8192,
        },
        "deepseek": {
            "model": "",
            "models": ["deepseek-chat", "deepseek-reasoner"],
            "max_tokens": 1800,
            "base_url": "https://api.deepseek.com/v1",
        },
        "groq": {
            "model": "",
            "models": [
                "llama-3.3-70b-versatile",
                "llama-3.1-8b-instant",
                "openai/gpt-oss-20b",
                "openai/gpt-oss-120b",
                "qwen/qwen3-32b",
            ],
            "max_tokens": 900,
            "base_url": "https://api.groq.com/openai/v1",
        },
    },
}

# (env var, settings path, parser, floor)
ENV_OVERRIDES: list[tuple[str, tuple[str, ...], Callable[[str], Any], Any]] = [
    ("LLM_MAX_CONCURRENCY", ("llm", "max_concurrency"), int, 1),
    ("GEMINI_MAX_RETRY_DELAY_MS", ("llm", "max_retry_delay_ms"), int, 1000),
    ("GEMINI_MAX_TOTAL_TIME_MS", ("llm", "max_total_time_ms"), int, 5000),
    ("GEMINI_MAX_TOKENS", ("llm", "gemini", "max_tokens"), int, 200),
    ("DEEPSEEK_MAX_TOKENS", ("llm", "deepseek", "max_tokens"), int, 200),
    ("GROQ_MAX_TOKENS", ("llm", "groq", "max_tokens"), int, 200),
    ("MAX_INPUT_CHARS", ("quiz", "max_input_chars"), int, 1000),
    ("DEEPSEEK_BASE_URL", ("llm", "deepseek", "base_url"), str, None),
    ("QUIZ_MODEL", ("llm", "gemini", "model"), str, None),
    ("GEMINI_MODEL", ("llm", "gemini", "model"), str, None),
    ("DEEPSEEK_MODEL", ("llm", "deepseek", "model"), str, None),
    ("GROQ_MODEL", ("llm", "groq", "model"), str, None),
]


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _set_path(config: Dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = config
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def apply_env_overrides(config: Dict[str, Any], environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    env = os.environ if environ is None else environ
    merged = deepcopy(config)
    for name, path, parser, floor in ENV_OVERRIDES:
        raw = (env.get(name) or "").strip()
        if not raw:
            continue
        try:
            value = parser(raw)
        except ValueError:
            logger.warning("Ignoring invalid %s=%r", name, raw)
            continue
        if floor is not None:
            value = max(floor, value)
        _set_path(merged, path, value)

    json_mode = (env.get("LLM_JSON_MODE") or "").strip()
    if json_mode:
        merged["llm"]["json_mode"] = json_mode != "0"

    admins = parse_id_list(env.get("ADMIN_USER_IDS"))
    if admins:
        merged["telegram"]["admin_user_ids"] = admins
    return merged


def load_settings(settings_path: str = "config/settings.yaml") -> Dict[str, Any]:
    """Loads settings.yaml, merges it onto defaults, then applies env overrides."""
    merged = deepcopy(DEFAULT_SETTINGS)
    config_path = Path(settings_path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            user_cfg = yaml.safe_load(f) or {}
        merged = _deep_merge(merged, user_cfg)
    return apply_env_overrides(merged)


def split_csv(*values: str | None) -> List[str]:
    """Splits comma-separated values, dropping blanks and duplicates in order."""
    seen: List[str] = []
    for value in values:
        for item in (value or "").split(","):
            item = item.strip()
            if item and item not in seen:
                seen.append(item)
    return seen


def parse_id_list(value: str | None) -> List[int]:
    ids: List[int] = []
    for item in split_csv(value):
        try:
            ids.append(int(item))
        except ValueError:
            logger.warning("Ignoring non-numeric admin id %r", item)
    return ids


def model_candidates(override: str | None, defaults: Iterable[str]) -> List[str]:
    """Explicit override first, then built-in defaults, without duplicates."""
    return split_csv(override, ",".join(defaults))
