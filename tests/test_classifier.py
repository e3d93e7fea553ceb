from telegram_quiz_bot.llm.classifier import (
    ErrorKind,
    classify,
    classify_exception,
    is_hard_free_tier_zero,
    is_model_skip_error,
    parse_retry_after_seconds,
)
from telegram_quiz_bot.llm.types import (
    ConfigError,
    EmptyResponseError,
    GenerationTimeoutError,
    HttpError,
    InsufficientContentError,
    NetworkError,
    ParseError,
)


def test_status_codes_map_to_kinds():
    assert classify(404, "") is ErrorKind.MODEL_NOT_FOUND
    assert classify(429, "") is ErrorKind.RATE_LIMITED
    assert classify(403, "") is ErrorKind.FORBIDDEN
    assert classify(503, "") is ErrorKind.SERVER_OVERLOAD
    assert classify(500, "") is ErrorKind.SERVER_OVERLOAD
    assert classify(400, "bad field") is ErrorKind.INVALID_REQUEST


def test_bad_request_variants():
    assert classify(400, "API key not valid. Please pass a valid API key.") is ErrorKind.FORBIDDEN
    assert classify(400, "models/gemini-9 is not found for API version v1beta") is ErrorKind.MODEL_NOT_FOUND


def test_text_only_classification():
    assert classify(None, "RESOURCE_EXHAUSTED: quota exceeded") is ErrorKind.RATE_LIMITED
    assert classify(None, "The model is overloaded") is ErrorKind.SERVER_OVERLOAD
    assert classify(None, "request timed out") is ErrorKind.TIMEOUT
    assert classify(None, "something odd") is ErrorKind.UNKNOWN


def test_bare_404_in_text_is_not_a_missing_model():
    assert classify(None, "upstream proxy returned page 404 of the docs") is ErrorKind.UNKNOWN
    assert classify(None, "error 404 then rate limit") is ErrorKind.RATE_LIMITED
    assert classify(404, "Not Found") is ErrorKind.MODEL_NOT_FOUND


def test_exception_types_take_precedence():
    assert classify_exception(InsufficientContentError()) is ErrorKind.INSUFFICIENT_CONTENT
    assert classify_exception(ConfigError("missing key")) is ErrorKind.CONFIG
    assert classify_exception(GenerationTimeoutError("slow")) is ErrorKind.TIMEOUT
    assert classify_exception(NetworkError("reset")) is ErrorKind.TIMEOUT
    assert classify_exception(EmptyResponseError("empty")) is ErrorKind.EMPTY_RESPONSE
    assert classify_exception(ParseError("bad json")) is ErrorKind.MALFORMED_OUTPUT
    assert classify_exception(HttpError("gemini", 429, "slow down")) is ErrorKind.RATE_LIMITED


def test_retry_hints_are_parsed():
    assert parse_retry_after_seconds("Please retry in 3.5s.") == 3.5
    assert parse_retry_after_seconds('{"retryDelay": "12s"}') == 12.0
    assert parse_retry_after_seconds("no hint here") is None


def test_hard_free_tier_zero_needs_both_markers():
    text = "Quota exceeded for metric generate_content_free_tier_requests, limit: 0"
    assert is_hard_free_tier_zero(text) is True
    assert is_hard_free_tier_zero("limit: 0") is False
    assert is_hard_free_tier_zero("generate_content_free_tier_requests, limit: 15") is False


def test_model_skip_errors_only_for_bad_request():
    markers = ("invalid_request_error", "model_not_found")
    assert is_model_skip_error(HttpError("deepseek", 400, '{"type": "invalid_request_error"}'), markers)
    assert is_model_skip_error(HttpError("deepseek", 400, "The model `x` was not found"), markers)
    assert not is_model_skip_error(HttpError("deepseek", 400, "prompt too long"), markers)
    assert not is_model_skip_error(HttpError("deepseek", 500, "invalid_request_error"), markers)
    assert not is_model_skip_error(ParseError("invalid_request_error"), markers)
