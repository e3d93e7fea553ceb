import asyncio
import json
import time
from copy import deepcopy

import pytest

from telegram_quiz_bot.config import DEFAULT_SETTINGS
from telegram_quiz_bot.llm.gate import ConcurrencyGate
from telegram_quiz_bot.llm.quiz_generator import QuizGenerator
from telegram_quiz_bot.llm.stats import LLMStats
from telegram_quiz_bot.llm.types import (
    GenerationFailedError,
    GenerationRequest,
    HttpError,
    InsufficientContentError,
    NoProviderConfiguredError,
    ProviderResult,
    QuestionType,
    QuotaExceededError,
    TokenUsage,
)
from telegram_quiz_bot.quiz import OpenQuestion, PollQuestion
from telegram_quiz_bot.utils import TRUNCATION_MARKER


class FakeProvider:
    def __init__(self, name, outcomes=(), models=("m1",), keys=("k1",), skip_markers=()):
        self.name = name
        self.api_keys = list(keys)
        self.model_candidates = list(models)
        self.model_skip_markers = tuple(skip_markers)
        self.outcomes = list(outcomes)
        self.calls = []
        self.prompts = []

    @property
    def is_configured(self):
        return bool(self.api_keys)

    def call(self, prompt, model, key_index=0):
        self.calls.append((model, key_index))
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            outcome = outcome()
        return ProviderResult(content=outcome, provider=self.name, model=model, usage=TokenUsage(10, 5, 15))


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _quiz_json(count=2):
    return json.dumps(
        {
            "questions": [
                {"question": f"Question {i}?", "options": ["a", "b", "c", "d"], "correctIndex": 1, "explanation": "e"}
                for i in range(count)
            ]
        }
    )


def _generator(gemini=None, deepseek=None, groq=None, settings=None, gate=None):
    clock = FakeClock()
    providers = {
        "gemini": gemini or FakeProvider("gemini", keys=()),
        "deepseek": deepseek or FakeProvider("deepseek", keys=()),
        "groq": groq or FakeProvider("groq", keys=()),
    }
    generator = QuizGenerator(
        settings or deepcopy(DEFAULT_SETTINGS),
        providers=providers,
        gate=gate,
        stats=LLMStats(),
        sleep=clock.sleep,
        clock=clock,
    )
    return generator, clock


def _request(**overrides):
    fields = {"text": "Photosynthesis converts light into chemical energy. " * 10, "count": 2}
    fields.update(overrides)
    return GenerationRequest(**fields)


def _run(generator, request=None, usage_collector=None):
    return asyncio.run(generator.generate_quiz(request or _request(), usage_collector=usage_collector))


def test_gemini_success_reports_usage_and_stats():
    gemini = FakeProvider("gemini", [_quiz_json()])
    generator, clock = _generator(gemini=gemini)
    records = []

    quiz = _run(generator, usage_collector=records.append)

    assert [q.question for q in quiz.questions] == ["Question 0?", "Question 1?"]
    assert isinstance(quiz.questions[0], PollQuestion)
    assert clock.sleeps == []
    assert records[0].provider == "gemini" and records[0].total_tokens == 15
    snap = generator.stats.snapshot()
    assert (snap["gemini_attempts"], snap["gemini_success"], snap["gemini_fail"]) == (1, 1, 0)
    assert snap["last_provider"] == "gemini" and snap["last_model"] == "m1"


def test_transient_overload_is_retried_with_backoff():
    gemini = FakeProvider("gemini", [HttpError("gemini", 503, "overloaded"), _quiz_json()])
    generator, clock = _generator(gemini=gemini)

    quiz = _run(generator)

    assert len(quiz.questions) == 2
    assert clock.sleeps == [4.0]
    snap = generator.stats.snapshot()
    assert (snap["gemini_attempts"], snap["gemini_success"], snap["gemini_fail"]) == (2, 1, 1)


def test_missing_model_moves_to_next_candidate_without_waiting():
    gemini = FakeProvider(
        "gemini",
        [HttpError("gemini", 404, "models/m1 is not found"), _quiz_json()],
        models=("m1", "m2"),
    )
    generator, clock = _generator(gemini=gemini)

    _run(generator)

    assert gemini.calls == [("m1", 0), ("m2", 0)]
    assert clock.sleeps == []


def test_rate_limit_rotates_to_next_key():
    gemini = FakeProvider(
        "gemini",
        [HttpError("gemini", 429, "Please retry in 1s."), _quiz_json()],
        keys=("k1", "k2"),
    )
    generator, clock = _generator(gemini=gemini)

    _run(generator)

    assert [key for _, key in gemini.calls] == [0, 1]
    assert clock.sleeps == [1.0]


def test_long_retry_hint_goes_straight_to_fallback():
    gemini = FakeProvider("gemini", [HttpError("gemini", 429, "Quota exceeded. Please retry in 30s.")])
    deepseek = FakeProvider("deepseek", [_quiz_json()], models=("deepseek-chat",))
    generator, clock = _generator(gemini=gemini, deepseek=deepseek)
    records = []

    quiz = _run(generator, usage_collector=records.append)

    assert len(quiz.questions) == 2
    assert clock.sleeps == []
    assert records[0].provider == "deepseek"
    snap = generator.stats.snapshot()
    assert snap["gemini_fail"] == 1
    assert snap["deepseek_success"] == 1
    assert snap["last_provider"] == "deepseek"


def test_malformed_output_is_retried():
    gemini = FakeProvider("gemini", ["I cannot produce JSON today", _quiz_json()])
    generator, clock = _generator(gemini=gemini)

    quiz = _run(generator)

    assert len(quiz.questions) == 2
    assert len(clock.sleeps) == 1


def test_empty_question_list_is_insufficient_content_without_fallback():
    gemini = FakeProvider("gemini", ['{"questions": []}'])
    deepseek = FakeProvider("deepseek", [_quiz_json()])
    generator, _ = _generator(gemini=gemini, deepseek=deepseek)

    with pytest.raises(InsufficientContentError):
        _run(generator)
    assert deepseek.calls == []


def test_insufficient_content_text_reply_is_recognized():
    gemini = FakeProvider("gemini", ["Insufficient content to build a quiz."])
    generator, _ = _generator(gemini=gemini)

    with pytest.raises(InsufficientContentError):
        _run(generator)
    assert len(gemini.calls) == 1


def test_invalid_request_fails_without_fallback():
    gemini = FakeProvider("gemini", [HttpError("gemini", 400, "Invalid value at 'contents'")])
    deepseek = FakeProvider("deepseek", [_quiz_json()])
    generator, _ = _generator(gemini=gemini, deepseek=deepseek)

    with pytest.raises(GenerationFailedError):
        _run(generator)
    assert deepseek.calls == []


def test_exhausted_retries_without_fallback_fail_generically():
    gemini = FakeProvider("gemini", [HttpError("gemini", 503, "overloaded")] * 4)
    generator, clock = _generator(gemini=gemini)

    with pytest.raises(GenerationFailedError):
        _run(generator)
    assert len(gemini.calls) == 4
    assert clock.sleeps == [4.0, 7.0, 7.0]


def test_exhausted_rate_limits_report_quota_exceeded():
    gemini = FakeProvider("gemini", [HttpError("gemini", 429, "Please retry in 2s.")] * 4)
    generator, _ = _generator(gemini=gemini)

    with pytest.raises(QuotaExceededError) as excinfo:
        _run(generator)
    assert excinfo.value.retry_after_seconds == 2.0
    assert "retry in 2s" in str(excinfo.value)


def test_hard_zero_quota_falls_back_immediately():
    zero = HttpError("gemini", 429, "generate_content_free_tier_requests, limit: 0")
    gemini = FakeProvider("gemini", [zero])
    groq = FakeProvider("groq", [_quiz_json()])
    generator, clock = _generator(gemini=gemini, groq=groq)

    _run(generator)

    assert len(gemini.calls) == 1
    assert clock.sleeps == []
    assert len(groq.calls) == 1


def test_fallback_chain_failure_reflects_last_error():
    zero = HttpError("gemini", 429, "generate_content_free_tier_requests, limit: 0")
    deepseek = FakeProvider("deepseek", [HttpError("deepseek", 500, "boom")])
    groq = FakeProvider("groq", [HttpError("groq", 503, "busy")])
    generator, _ = _generator(gemini=FakeProvider("gemini", [zero]), deepseek=deepseek, groq=groq)

    with pytest.raises(GenerationFailedError) as excinfo:
        _run(generator)
    assert "GROQ_HTTP_503" in excinfo.value.detail

    groq_limited = FakeProvider("groq", [HttpError("groq", 429, "rate limit reached")])
    generator, _ = _generator(
        gemini=FakeProvider("gemini", [zero]),
        deepseek=FakeProvider("deepseek", [HttpError("deepseek", 500, "boom")]),
        groq=groq_limited,
    )
    with pytest.raises(QuotaExceededError):
        _run(generator)


def test_without_gemini_key_deepseek_skips_rejected_model():
    deepseek = FakeProvider(
        "deepseek",
        [HttpError("deepseek", 400, '{"error": {"type": "invalid_request_error"}}'), _quiz_json()],
        models=("deepseek-reasoner", "deepseek-chat"),
        skip_markers=("invalid_request_error", "model_not_found"),
    )
    generator, _ = _generator(deepseek=deepseek)

    _run(generator)

    assert [model for model, _ in deepseek.calls] == ["deepseek-reasoner", "deepseek-chat"]
    snap = generator.stats.snapshot()
    assert snap["gemini_attempts"] == 0
    assert (snap["deepseek_attempts"], snap["deepseek_fail"], snap["deepseek_success"]) == (2, 1, 1)


def test_other_fallback_errors_abort_provider_and_move_on():
    deepseek = FakeProvider("deepseek", [HttpError("deepseek", 401, "bad key")], models=("a", "b"))
    groq = FakeProvider("groq", [_quiz_json()])
    generator, _ = _generator(deepseek=deepseek, groq=groq)

    _run(generator)

    assert deepseek.calls == [("a", 0)]
    assert len(groq.calls) == 1


def test_no_provider_configured_touches_nothing():
    gate = ConcurrencyGate(2)
    generator, _ = _generator(gate=gate)

    with pytest.raises(NoProviderConfiguredError):
        _run(generator)
    assert generator.stats.snapshot()["last_provider"] == ""
    assert gate.in_flight == 0


def test_slow_attempt_times_out_and_is_retried():
    settings = deepcopy(DEFAULT_SETTINGS)
    settings["llm"]["generation_timeout_seconds"] = 0.05

    def slow():
        time.sleep(0.3)
        return _quiz_json()

    gemini = FakeProvider("gemini", [slow, _quiz_json()])
    generator, clock = _generator(gemini=gemini, settings=settings)

    quiz = _run(generator)

    assert len(quiz.questions) == 2
    assert len(gemini.calls) == 2
    assert len(clock.sleeps) == 1
    snap = generator.stats.snapshot()
    assert (snap["gemini_attempts"], snap["gemini_fail"], snap["gemini_success"]) == (2, 1, 1)


def test_usage_collector_failure_does_not_fail_generation():
    gemini = FakeProvider("gemini", [_quiz_json()])
    generator, _ = _generator(gemini=gemini)

    def broken(record):
        raise RuntimeError("db down")

    quiz = _run(generator, usage_collector=broken)
    assert len(quiz.questions) == 2


def test_long_text_uses_requested_window():
    settings = deepcopy(DEFAULT_SETTINGS)
    settings["quiz"]["max_input_chars"] = 1000
    gemini = FakeProvider("gemini", [_quiz_json()])
    generator, _ = _generator(gemini=gemini, settings=settings)

    _run(generator, _request(text="A" * 1000 + "B" * 1000, window_index=1))

    prompt = gemini.prompts[0]
    assert "B" * 1000 in prompt
    assert "A" * 1000 not in prompt
    assert TRUNCATION_MARKER in prompt


def test_open_questions_are_typed():
    payload = json.dumps({"questions": [{"question": "Capital of France?", "answer": "Paris", "explanation": "e"}]})
    gemini = FakeProvider("gemini", [payload])
    generator, _ = _generator(gemini=gemini)

    quiz = _run(generator, _request(question_type=QuestionType.OPEN, count=1))

    assert isinstance(quiz.questions[0], OpenQuestion)
    assert quiz.questions[0].answer == "Paris"
