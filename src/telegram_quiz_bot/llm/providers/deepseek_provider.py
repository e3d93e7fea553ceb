"""DeepSeek chat-completions provider."""

from __future__ import annotations

from .openai_compatible import OpenAICompatibleProvider


class DeepSeekProvider(OpenAICompatibleProvider):
    name = "deepseek"
    key_env_vars = ("DEEPSEEK_API_KEY",)
    model_skip_markers = ("invalid_request_error", "model_not_found")
