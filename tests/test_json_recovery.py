import pytest

from telegram_quiz_bot.llm.json_recovery import (
    extract_first_balanced_json,
    remove_trailing_commas,
    safe_json_parse,
    sanitize_json_string,
)
from telegram_quiz_bot.llm.types import ParseError


def test_plain_json_object_is_returned_as_is():
    parsed = safe_json_parse('{"questions": [{"question": "Q1"}]}')
    assert parsed == {"questions": [{"question": "Q1"}]}


def test_code_fence_and_prose_are_stripped():
    raw = '```json\n{"questions": [{"question": "Q1"}]}\n```'
    assert safe_json_parse(raw) == {"questions": [{"question": "Q1"}]}

    raw = 'Sure! Here is your quiz: {"questions": []} Hope this helps.'
    assert safe_json_parse(raw) == {"questions": []}


def test_trailing_commas_are_removed_outside_strings_only():
    assert remove_trailing_commas('{"a": [1, 2,], }') == '{"a": [1, 2] }'
    assert remove_trailing_commas('{"a": "x,]"}') == '{"a": "x,]"}'
    assert safe_json_parse('{"questions": [{"question": "Q1",},],}') == {"questions": [{"question": "Q1"}]}


def test_braces_inside_strings_do_not_confuse_extraction():
    raw = 'prefix {"question": "What does } mean?", "note": "say \\"{\\""} suffix'
    extracted = extract_first_balanced_json(raw)
    assert extracted == '{"question": "What does } mean?", "note": "say \\"{\\""}'


def test_bom_is_removed():
    assert sanitize_json_string('\ufeff{"questions": []}') == '{"questions": []}'


def test_top_level_array_is_wrapped():
    assert safe_json_parse('[{"question": "Q1"}]') == {"questions": [{"question": "Q1"}]}


def test_truncated_reply_keeps_complete_questions():
    raw = (
        '{"questions": ['
        '{"question": "Q1", "options": ["a", "b", "c", "d"], "correctIndex": 0, "explanation": "e1"},'
        '{"question": "Q2", "options": ["a", "b", "c", "d"], "correctIndex": 1, "explanation": "e2"},'
        '{"question": "Q3", "options": ["a", "b'
    )
    parsed = safe_json_parse(raw)
    assert [q["question"] for q in parsed["questions"]] == ["Q1", "Q2"]


def test_truncated_reply_with_no_complete_question_fails():
    with pytest.raises(ParseError) as excinfo:
        safe_json_parse('{"questions": [{"question": "Q1", "opt')
    assert excinfo.value.snippet


def test_raw_control_characters_in_strings_are_tolerated():
    parsed = safe_json_parse('{"questions": [{"question": "line one\nline two"}]}')
    assert parsed["questions"][0]["question"] == "line one\nline two"


def test_garbage_raises_parse_error_with_bounded_snippet():
    with pytest.raises(ParseError) as excinfo:
        safe_json_parse("{" + "x" * 1000 + "}")
    assert len(excinfo.value.snippet) <= 400


def test_non_object_json_is_rejected():
    with pytest.raises(ParseError):
        safe_json_parse("42")
