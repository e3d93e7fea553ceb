"""In-process LLM call counters for the admin surface.

Best-effort diagnostics: created at import, mutated by the quiz generator,
reset on demand, never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

PROVIDERS = ("gemini", "deepseek", "groq")


@dataclass
class ProviderCounters:
    attempts: int = 0
    success: int = 0
    fail: int = 0


@dataclass
class LLMStats:
    counters: Dict[str, ProviderCounters] = field(
        default_factory=lambda: {name: ProviderCounters() for name in PROVIDERS}
    )
    last_provider: str = ""
    last_model: str = ""
    last_error: str = ""

    def _counter(self, provider: str) -> ProviderCounters:
        return self.counters.setdefault(provider, ProviderCounters())

    def record_attempt(self, provider: str, model: str) -> None:
        self._counter(provider).attempts += 1
        self.last_provider = provider
        self.last_model = model

    def record_success(self, provider: str) -> None:
        self._counter(provider).success += 1
        self.last_error = ""

    def record_failure(self, provider: str, error: str) -> None:
        self._counter(provider).fail += 1
        self.last_error = error[:500]

    def snapshot(self) -> Dict[str, Any]:
        snap: Dict[str, Any] = {}
        for name, counter in self.counters.items():
            snap[f"{name}_attempts"] = counter.attempts
            snap[f"{name}_success"] = counter.success
            snap[f"{name}_fail"] = counter.fail
        snap["last_provider"] = self.last_provider
        snap["last_model"] = self.last_model
        snap["last_error"] = self.last_error
        return snap

    def reset(self) -> None:
        for counter in self.counters.values():
            counter.attempts = counter.success = counter.fail = 0
        self.last_provider = ""
        self.last_model = ""
        self.last_error = ""


LLM_STATS = LLMStats()
