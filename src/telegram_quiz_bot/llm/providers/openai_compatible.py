"""OpenAI-compatible chat-completions adapter shared by DeepSeek and Groq."""

from __future__ import annotations

import json
from typing import Any, Dict, Tuple

from ..types import EmptyResponseError, ProviderResult
from ..usage import normalize_usage
from .base import BaseProvider


class OpenAICompatibleProvider(BaseProvider):
    def _build_request(
        self, prompt: str, model: str, api_key: str, json_mode: bool
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        payload: Dict[str, Any] = {
            "model": model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": self.system},
                {"role": "user", "content": prompt},
            ],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return f"{self.base_url}/chat/completions", payload, headers

    def _parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        choices = data.get("choices") or []
        message = (choices[0].get("message") or {}) if choices and isinstance(choices[0], dict) else {}
        raw = message.get("content")
        if raw is None:
            raise EmptyResponseError(f"Empty response from {self.name}", provider=self.name)
        content = raw if isinstance(raw, str) else json.dumps(raw)
        if not content:
            raise EmptyResponseError(f"Empty response from {self.name}", provider=self.name)

        return ProviderResult(
            content=content,
            provider=self.name,
            model=model,
            usage=normalize_usage(data.get("usage")),
        )
