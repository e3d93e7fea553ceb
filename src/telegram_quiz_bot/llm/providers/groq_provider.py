"""Groq chat-completions provider."""

from __future__ import annotations

from .openai_compatible import OpenAICompatibleProvider


class GroqProvider(OpenAICompatibleProvider):
    name = "groq"
    key_env_vars = ("GROQ_API_KEY",)
    model_skip_markers = ("invalid_request_error", "model_not_found", "decommissioned")
