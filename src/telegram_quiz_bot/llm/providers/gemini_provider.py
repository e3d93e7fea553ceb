"""Google Gemini REST provider."""

from __future__ import annotations

from typing import Any, Dict, Tuple

from ..types import EmptyResponseError, ProviderResult
from ..usage import normalize_usage
from .base import BaseProvider


class GeminiProvider(BaseProvider):
    name = "gemini"
    key_env_vars = ("GEMINI_API_KEYS", "GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")
    json_mode_markers = ("response_mime_type", "responsemimetype")
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models"

    def _build_request(
        self, prompt: str, model: str, api_key: str, json_mode: bool
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        url = f"{self.endpoint}/{model}:generateContent"
        generation_config: Dict[str, Any] = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_tokens,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        payload = {
            "system_instruction": {"parts": [{"text": self.system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        headers = {"x-goog-api-key": api_key, "content-type": "application/json"}
        return url, payload, headers

    def _parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        candidates = data.get("candidates") or []
        text = ""
        if candidates and isinstance(candidates[0], dict):
            parts = (candidates[0].get("content") or {}).get("parts") or []
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise EmptyResponseError("Empty response from Gemini", provider=self.name)

        return ProviderResult(
            content=text,
            provider=self.name,
            model=model,
            usage=normalize_usage(data.get("usageMetadata") or data.get("usage")),
        )
