"""Blocking HTTP transport shared by the provider adapters."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict

import requests

from .types import NetworkError

logger = logging.getLogger(__name__)


class HttpTransport:
    """POSTs JSON with a request timeout and a short retry on network failures.

    Only connection and read-timeout failures are retried here; HTTP status
    handling belongs to the adapters and the quiz generator.
    """

    def __init__(
        self,
        timeout_seconds: float = 30,
        attempts: int = 3,
        backoff_seconds: float = 1.5,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()
        self._sleep = sleep

    def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str] | None = None,
        provider: str = "",
    ) -> requests.Response:
        last_exc: Exception | None = None
        for attempt in range(self.attempts):
            try:
                return self.session.post(url, json=payload, headers=headers, timeout=self.timeout_seconds)
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_exc = exc
                if attempt + 1 >= self.attempts:
                    break
                delay = self.backoff_seconds * (2**attempt)
                logger.warning(
                    "%s request failed (%s), retry %d/%d in %.1fs",
                    provider or "provider",
                    type(exc).__name__,
                    attempt + 1,
                    self.attempts - 1,
                    delay,
                )
                self._sleep(delay)
            except requests.RequestException as exc:
                raise NetworkError(f"{provider or 'provider'} request error: {exc}", provider=provider) from exc
        raise NetworkError(f"{provider or 'provider'} network error: {last_exc}", provider=provider) from last_exc
