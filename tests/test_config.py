from copy import deepcopy

from telegram_quiz_bot.config import (
    DEFAULT_SETTINGS,
    apply_env_overrides,
    load_settings,
    model_candidates,
    parse_id_list,
    split_csv,
)


def test_env_overrides_respect_floors():
    env = {
        "LLM_MAX_CONCURRENCY": "0",
        "GEMINI_MAX_RETRY_DELAY_MS": "10",
        "GEMINI_MAX_TOTAL_TIME_MS": "60000",
        "GROQ_MAX_TOKENS": "50",
    }
    cfg = apply_env_overrides(deepcopy(DEFAULT_SETTINGS), env)
    assert cfg["llm"]["max_concurrency"] == 1
    assert cfg["llm"]["max_retry_delay_ms"] == 1000
    assert cfg["llm"]["max_total_time_ms"] == 60000
    assert cfg["llm"]["groq"]["max_tokens"] == 200


def test_invalid_numbers_keep_defaults():
    cfg = apply_env_overrides(deepcopy(DEFAULT_SETTINGS), {"LLM_MAX_CONCURRENCY": "lots"})
    assert cfg["llm"]["max_concurrency"] == 5


def test_json_mode_and_admin_ids():
    cfg = apply_env_overrides(deepcopy(DEFAULT_SETTINGS), {"LLM_JSON_MODE": "0", "ADMIN_USER_IDS": "1, 2,x"})
    assert cfg["llm"]["json_mode"] is False
    assert cfg["telegram"]["admin_user_ids"] == [1, 2]


def test_gemini_model_wins_over_legacy_name():
    cfg = apply_env_overrides(deepcopy(DEFAULT_SETTINGS), {"QUIZ_MODEL": "old", "GEMINI_MODEL": "new"})
    assert cfg["llm"]["gemini"]["model"] == "new"


def test_defaults_are_not_mutated():
    apply_env_overrides(DEFAULT_SETTINGS, {"GROQ_MAX_TOKENS": "999"})
    assert DEFAULT_SETTINGS["llm"]["groq"]["max_tokens"] == 900


def test_settings_file_is_merged(tmp_path, monkeypatch):
    for name in ("LLM_MAX_CONCURRENCY", "MAX_INPUT_CHARS"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "settings.yaml"
    path.write_text("llm:\n  max_concurrency: 2\nquiz:\n  max_input_chars: 5000\n", encoding="utf-8")

    cfg = load_settings(str(path))

    assert cfg["llm"]["max_concurrency"] == 2
    assert cfg["quiz"]["max_input_chars"] == 5000
    assert cfg["llm"]["gemini"]["models"] == DEFAULT_SETTINGS["llm"]["gemini"]["models"]


def test_csv_and_model_helpers():
    assert split_csv("a, b", None, "b,c,,") == ["a", "b", "c"]
    assert parse_id_list("10,oops,20") == [10, 20]
    assert model_candidates("custom", ["m1", "custom"]) == ["custom", "m1"]
    assert model_candidates("", ["m1", "m2"]) == ["m1", "m2"]
