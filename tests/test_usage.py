from telegram_quiz_bot.llm.types import TokenUsage
from telegram_quiz_bot.llm.usage import normalize_usage


def test_gemini_usage_metadata_names():
    usage = normalize_usage({"promptTokenCount": 120, "candidatesTokenCount": 80, "totalTokenCount": 200})
    assert usage == TokenUsage(prompt_tokens=120, completion_tokens=80, total_tokens=200)


def test_openai_style_names_and_derived_total():
    usage = normalize_usage({"prompt_tokens": 10, "completion_tokens": 5})
    assert usage == TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)


def test_non_positive_and_non_numeric_values_are_omitted():
    usage = normalize_usage({"prompt_tokens": 0, "completion_tokens": "abc", "total_tokens": -3})
    assert usage == TokenUsage()


def test_missing_usage_gives_empty_record():
    assert normalize_usage(None) == TokenUsage()
    assert normalize_usage({}) == TokenUsage()
