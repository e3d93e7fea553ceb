"""LLM provider interface and shared adapter plumbing."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Protocol, Tuple

import requests

from ...config import DEFAULT_SETTINGS, model_candidates, split_csv
from ...prompts import build_system_instruction
from ..http import HttpTransport
from ..types import ConfigError, HttpError, ProviderResult


class LLMProvider(Protocol):
    name: str
    api_keys: List[str]
    model_candidates: List[str]
    model_skip_markers: Tuple[str, ...]

    @property
    def is_configured(self) -> bool:
        ...

    def call(self, prompt: str, model: str, key_index: int = 0) -> ProviderResult:
        ...


class BaseProvider:
    """Holds keys, model candidates and request knobs for one upstream API.

    Subclasses set ``name``, ``key_env_vars`` and ``json_mode_markers`` and
    implement ``_build_request`` and ``_parse_response``.
    """

    name = ""
    key_env_vars: Tuple[str, ...] = ()
    json_mode_markers: Tuple[str, ...] = ("response_format",)
    model_skip_markers: Tuple[str, ...] = ()

    def __init__(
        self,
        settings: Mapping[str, Any] | None = None,
        transport: HttpTransport | None = None,
        api_keys: List[str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        llm_cfg = dict(settings or DEFAULT_SETTINGS["llm"])
        provider_cfg = dict(llm_cfg.get(self.name) or DEFAULT_SETTINGS["llm"][self.name])
        env = os.environ if environ is None else environ

        if api_keys is None:
            api_keys = split_csv(*(env.get(var) for var in self.key_env_vars))
        self.api_keys = list(api_keys)
        self.model_candidates = model_candidates(provider_cfg.get("model"), provider_cfg.get("models", []))
        self.max_tokens = max(200, int(provider_cfg.get("max_tokens", 900)))
        self.base_url = str(provider_cfg.get("base_url", "")).rstrip("/")
        self.temperature = float(llm_cfg.get("temperature", 0.3))
        self.json_mode = bool(llm_cfg.get("json_mode", True))
        self.system = build_system_instruction()
        self.transport = transport or HttpTransport(
            timeout_seconds=float(llm_cfg.get("request_timeout_seconds", 30)),
            attempts=int(llm_cfg.get("network_attempts", 3)),
            backoff_seconds=float(llm_cfg.get("network_backoff_seconds", 1.5)),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_keys)

    def _api_key(self, key_index: int) -> str:
        if not self.api_keys:
            raise ConfigError(f"{' / '.join(self.key_env_vars)} missing", provider=self.name)
        return self.api_keys[key_index % len(self.api_keys)]

    def _build_request(
        self, prompt: str, model: str, api_key: str, json_mode: bool
    ) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        raise NotImplementedError

    def _parse_response(self, data: Dict[str, Any], model: str) -> ProviderResult:
        raise NotImplementedError

    def _post(self, prompt: str, model: str, api_key: str, json_mode: bool) -> requests.Response:
        url, payload, headers = self._build_request(prompt, model, api_key, json_mode)
        return self.transport.post_json(url, payload, headers=headers, provider=self.name)

    def call(self, prompt: str, model: str, key_index: int = 0) -> ProviderResult:
        api_key = self._api_key(key_index)
        res = self._post(prompt, model, api_key, self.json_mode)

        # Not every model accepts forced JSON output; resend once without it.
        if res.status_code == 400 and self.json_mode:
            body = res.text or ""
            if any(marker in body.lower() for marker in self.json_mode_markers):
                res = self._post(prompt, model, api_key, False)
            else:
                raise HttpError(self.name, res.status_code, body)

        if not res.ok:
            raise HttpError(self.name, res.status_code, res.text or "")

        try:
            data = res.json()
        except ValueError as exc:
            raise HttpError(self.name, res.status_code, f"invalid JSON body: {(res.text or '')[:200]}") from exc
        return self._parse_response(data if isinstance(data, dict) else {}, model)
