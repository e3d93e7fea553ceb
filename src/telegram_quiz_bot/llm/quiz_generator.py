"""Quiz generation across Gemini, DeepSeek and Groq with retries and fallback.

One ``generate_quiz`` call takes a single slot of the concurrency gate, then:

1. drives Gemini through model candidates and API keys, retrying transient
   failures with capped backoff inside a soft total-time budget;
2. falls back to DeepSeek and then Groq, skipping models the upstream
   rejects and giving up on a provider at its first other failure;
3. parses whichever reply arrives into a typed ``QuizResponse``.

An empty ``questions`` array means the text cannot be quizzed and is raised
as ``InsufficientContentError`` straight away, without retry or fallback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from copy import deepcopy
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from ..config import DEFAULT_SETTINGS, load_settings
from ..prompts import build_quiz_prompt
from ..quiz import QuizResponse, build_quiz_response
from ..utils import window_text
from .classifier import (
    ErrorKind,
    classify_exception,
    error_text,
    is_hard_free_tier_zero,
    is_model_skip_error,
    parse_retry_after_seconds,
)
from .gate import ConcurrencyGate
from .json_recovery import safe_json_parse
from .providers.base import LLMProvider
from .providers.deepseek_provider import DeepSeekProvider
from .providers.gemini_provider import GeminiProvider
from .providers.groq_provider import GroqProvider
from .retry_policy import Action, RetryPolicy, RetryState, decide
from .stats import LLM_STATS, LLMStats
from .types import (
    Difficulty,
    GenerationFailedError,
    GenerationRequest,
    GenerationTimeoutError,
    InsufficientContentError,
    Language,
    NoProviderConfiguredError,
    ParseError,
    ProviderResult,
    QuestionType,
    QuizGenerationError,
    QuotaExceededError,
    UsageRecord,
)

logger = logging.getLogger(__name__)

UsageCollector = Callable[[UsageRecord], None]

FALLBACK_ORDER = ("deepseek", "groq")


def format_provider_error(exc: BaseException | None) -> str:
    if exc is None:
        return "unknown error"
    status = getattr(exc, "status", None)
    text = error_text(exc)
    return f"{text} status={status}" if status and str(status) not in text else text


class QuizGenerator:
    def __init__(
        self,
        settings: Mapping[str, Any] | None = None,
        providers: Mapping[str, LLMProvider] | None = None,
        gate: ConcurrencyGate | None = None,
        stats: LLMStats | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = dict(settings or deepcopy(DEFAULT_SETTINGS))
        llm_cfg = self.settings.get("llm", DEFAULT_SETTINGS["llm"])
        quiz_cfg = self.settings.get("quiz", DEFAULT_SETTINGS["quiz"])

        self.policy = RetryPolicy.from_settings(llm_cfg)
        self.generation_timeout = float(llm_cfg.get("generation_timeout_seconds", 25))
        self.max_input_chars = int(quiz_cfg.get("max_input_chars", 30000))
        self.providers: Dict[str, LLMProvider] = dict(
            providers if providers is not None else self._default_providers(llm_cfg)
        )
        self.gate = gate or ConcurrencyGate(int(llm_cfg.get("max_concurrency", 5)))
        self.stats = stats if stats is not None else LLM_STATS
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def _default_providers(llm_cfg: Mapping[str, Any]) -> Dict[str, LLMProvider]:
        return {
            "gemini": GeminiProvider(llm_cfg),
            "deepseek": DeepSeekProvider(llm_cfg),
            "groq": GroqProvider(llm_cfg),
        }

    def _configured(self, name: str) -> Optional[LLMProvider]:
        provider = self.providers.get(name)
        if provider is not None and provider.is_configured and provider.model_candidates:
            return provider
        return None

    def build_prompt(self, request: GenerationRequest) -> str:
        text = window_text(request.text, request.window_index, self.max_input_chars)
        return build_quiz_prompt(
            text,
            request.count,
            request.difficulty,
            request.language,
            request.avoid_questions,
            request.question_type,
        )

    async def generate_quiz(
        self,
        request: GenerationRequest,
        usage_collector: UsageCollector | None = None,
    ) -> QuizResponse:
        async with self.gate.limit():
            return await self._generate(request, usage_collector)

    async def _generate(self, request: GenerationRequest, usage_collector: UsageCollector | None) -> QuizResponse:
        started = self._clock()
        gemini = self._configured("gemini")
        fallbacks = [p for p in (self._configured(name) for name in FALLBACK_ORDER) if p is not None]

        if gemini is None and not fallbacks:
            raise NoProviderConfiguredError()

        prompt = self.build_prompt(request)
        if gemini is None:
            try:
                return await self._run_fallbacks(fallbacks, prompt, request, usage_collector)
            except InsufficientContentError:
                raise
            except QuizGenerationError as exc:
                raise self._terminal_error(classify_exception(exc), None, exc) from exc

        return await self._run_gemini(gemini, fallbacks, prompt, request, usage_collector, started)

    async def _run_gemini(
        self,
        gemini: LLMProvider,
        fallbacks: List[LLMProvider],
        prompt: str,
        request: GenerationRequest,
        usage_collector: UsageCollector | None,
        started: float,
    ) -> QuizResponse:
        state = RetryState()
        models = gemini.model_candidates
        key_count = len(gemini.api_keys)

        while True:
            model = models[min(state.model_index, len(models) - 1)]
            self.stats.record_attempt(gemini.name, model)
            try:
                result = await self._call_with_timeout(gemini, prompt, model, state.key_index)
                quiz = self._to_quiz(result, request.question_type)
            except QuizGenerationError as exc:
                self.stats.record_failure(gemini.name, format_provider_error(exc))
                failure = exc
                text = error_text(exc)
                kind = classify_exception(exc)
                decision = decide(
                    self.policy,
                    state,
                    kind,
                    model_count=len(models),
                    key_count=key_count,
                    elapsed_ms=(self._clock() - started) * 1000.0,
                    retry_after_seconds=parse_retry_after_seconds(text),
                    hard_quota_zero=is_hard_free_tier_zero(text),
                    fallback_available=bool(fallbacks),
                )
            else:
                self._report_usage(usage_collector, result)
                self.stats.record_success(gemini.name)
                return quiz

            if decision.action is Action.RAISE:
                raise failure
            if decision.action is Action.NEXT_MODEL:
                logger.warning("Switching Gemini model from %s to %s", model, models[state.model_index])
                continue
            if decision.action is Action.RETRY:
                logger.warning(
                    "Gemini busy/slow (%s, attempt %d/%d). Retrying in %.1fs",
                    decision.reason,
                    state.attempt,
                    self.policy.max_retries,
                    decision.wait_seconds,
                )
                await self._sleep(decision.wait_seconds)
                continue
            break

        logger.warning("Gemini gave up (%s): %s", decision.reason, format_provider_error(failure)[:300])
        fallback_exc: QuizGenerationError | None = None
        if decision.action is Action.FALLBACK and fallbacks:
            try:
                return await self._run_fallbacks(fallbacks, prompt, request, usage_collector)
            except InsufficientContentError:
                raise
            except QuizGenerationError as err:
                fallback_exc = err

        last_exc = fallback_exc or failure
        last_kind = classify_exception(fallback_exc) if fallback_exc is not None else state.last_kind
        raise self._terminal_error(last_kind, state.suggested_retry_seconds, last_exc) from last_exc

    async def _call_with_timeout(self, provider: LLMProvider, prompt: str, model: str, key_index: int) -> ProviderResult:
        # On timeout the worker thread is abandoned, not interrupted.
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(provider.call, prompt, model, key_index),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError:
            raise GenerationTimeoutError(
                f"GENERATION_TIMEOUT after {self.generation_timeout:g}s", provider=provider.name
            ) from None

    async def _run_fallbacks(
        self,
        providers: Iterable[LLMProvider],
        prompt: str,
        request: GenerationRequest,
        usage_collector: UsageCollector | None,
    ) -> QuizResponse:
        last_exc: QuizGenerationError | None = None
        for provider in providers:
            try:
                return await self._try_provider(provider, prompt, request, usage_collector)
            except InsufficientContentError:
                raise
            except QuizGenerationError as exc:
                logger.error("%s fallback failed: %s", provider.name, format_provider_error(exc)[:300])
                last_exc = exc
        raise last_exc or GenerationFailedError(detail="no fallback provider available")

    async def _try_provider(
        self,
        provider: LLMProvider,
        prompt: str,
        request: GenerationRequest,
        usage_collector: UsageCollector | None,
    ) -> QuizResponse:
        last_exc: QuizGenerationError | None = None
        for model in provider.model_candidates:
            self.stats.record_attempt(provider.name, model)
            try:
                result = await asyncio.to_thread(provider.call, prompt, model, 0)
                quiz = self._to_quiz(result, request.question_type)
            except QuizGenerationError as exc:
                self.stats.record_failure(provider.name, format_provider_error(exc))
                if isinstance(exc, InsufficientContentError):
                    raise
                last_exc = exc
                if is_model_skip_error(exc, provider.model_skip_markers):
                    logger.warning("%s rejected model %s, trying next candidate", provider.name, model)
                    continue
                break
            self._report_usage(usage_collector, result)
            self.stats.record_success(provider.name)
            return quiz
        raise last_exc or GenerationFailedError(detail=f"{provider.name} has no model candidates")

    @staticmethod
    def _to_quiz(result: ProviderResult, question_type: QuestionType) -> QuizResponse:
        mentions_insufficient = "insufficient content" in result.content.lower()
        try:
            payload = safe_json_parse(result.content)
        except ParseError:
            if mentions_insufficient:
                raise InsufficientContentError() from None
            raise

        questions = payload.get("questions")
        if isinstance(questions, list) and not questions:
            raise InsufficientContentError()
        if not isinstance(questions, list) and mentions_insufficient:
            raise InsufficientContentError()
        return build_quiz_response(payload, question_type)

    @staticmethod
    def _report_usage(usage_collector: UsageCollector | None, result: ProviderResult) -> None:
        if usage_collector is None:
            return
        record = UsageRecord(
            provider=result.provider,
            model=result.model,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            total_tokens=result.usage.total_tokens,
        )
        try:
            usage_collector(record)
        except Exception:  # usage tracking must never fail a generation
            logger.warning("Usage collector failed for %s/%s", result.provider, result.model, exc_info=True)

    @staticmethod
    def _terminal_error(
        kind: Optional[ErrorKind],
        suggested_retry_seconds: Optional[float],
        last_exc: BaseException | None,
    ) -> QuizGenerationError:
        if kind is ErrorKind.RATE_LIMITED:
            return QuotaExceededError(suggested_retry_seconds)
        return GenerationFailedError(detail=format_provider_error(last_exc))


_default_generator: QuizGenerator | None = None


def configure_default_generator(settings: Mapping[str, Any] | None = None) -> QuizGenerator:
    global _default_generator
    _default_generator = QuizGenerator(settings if settings is not None else load_settings())
    return _default_generator


def get_default_generator() -> QuizGenerator:
    if _default_generator is None:
        return configure_default_generator()
    return _default_generator


async def generate_quiz(
    text: str,
    count: int,
    difficulty: Difficulty | str,
    language: Language | str,
    avoid_questions: Iterable[str] = (),
    window_index: int = 0,
    question_type: QuestionType | str = QuestionType.POLL,
    usage_collector: UsageCollector | None = None,
) -> QuizResponse:
    request = GenerationRequest(
        text=text,
        count=count,
        difficulty=difficulty,
        language=language,
        avoid_questions=tuple(avoid_questions),
        question_type=question_type,
        window_index=window_index,
    )
    return await get_default_generator().generate_quiz(request, usage_collector=usage_collector)


def get_llm_stats() -> Dict[str, Any]:
    return LLM_STATS.snapshot()


def reset_llm_stats() -> None:
    LLM_STATS.reset()
