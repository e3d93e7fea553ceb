from telegram_quiz_bot.validators import is_answer_match, normalize_number_text


def test_exact_match_ignores_case_and_punctuation():
    assert is_answer_match("  PARIS! ", "Paris")


def test_acceptable_variants_match():
    assert is_answer_match("H2O", "water", ["h2o", "dihydrogen monoxide"])


def test_numeric_answers_compare_digits():
    assert normalize_number_text("1,000 km") == "1000"
    assert is_answer_match("1 000", "1000")
    assert is_answer_match("in 1945", "1945")
    assert not is_answer_match("1946", "1945")


def test_answer_containing_canonical_matches():
    assert is_answer_match("it is mitochondria", "mitochondria")
    assert not is_answer_match("it is dna", "dna")


def test_near_identical_phrasing_matches():
    assert is_answer_match("the french revolution", "french revolution the")


def test_wrong_or_blank_answers_do_not_match():
    assert not is_answer_match("London", "Paris")
    assert not is_answer_match("", "Paris")
    assert not is_answer_match("Paris", "")
