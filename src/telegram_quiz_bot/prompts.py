"""Prompt builders."""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

from .llm.types import Difficulty, Language, QuestionType

MAX_AVOID_QUESTIONS = 40
MAX_AVOID_CHARS = 160

LANGUAGE_NAMES: Dict[Language, str] = {
    Language.EN: "English",
    Language.UZ: "Uzbek",
    Language.RU: "Russian",
}

DIFFICULTY_GUIDANCE: Dict[Difficulty, str] = {
    Difficulty.EASY: (
        "Focus on basic definitions, vocabulary, and simple fact retrieval. Questions should be straightforward."
    ),
    Difficulty.EXAM: (
        "Focus on conceptual understanding, cause-and-effect, and standard curriculum-level questions. "
        "Resemble real exam questions."
    ),
    Difficulty.HARD: (
        "Focus on application of concepts, tricky logic, edge cases, and synthesis of multiple ideas from the text."
    ),
}

TFNG_OPTIONS = ("True", "False", "Not Given")

_FORMATS: Dict[QuestionType, Tuple[str, str, str]] = {
    QuestionType.POLL: (
        "Task: Generate {count} multiple-choice questions based ONLY on the provided text content.\n",
        "3. Each question must have exactly 4 options and exactly one correct option.\n",
        '{{\n  "questions": [\n    {{\n      "question": "string",\n'
        '      "options": ["A", "B", "C", "D"],\n      "correctIndex": 0,\n'
        '      "explanation": "string"\n    }}\n  ]\n}}',
    ),
    QuestionType.TFNG: (
        "Task: Generate {count} True / False / Not Given statements based ONLY on the provided text content.\n",
        '3. Each item is a statement with exactly 3 options in this order: "True", "False", "Not Given". '
        "Use Not Given only when the text neither confirms nor contradicts the statement.\n",
        '{{\n  "questions": [\n    {{\n      "question": "statement",\n'
        '      "options": ["True", "False", "Not Given"],\n      "correctIndex": 0,\n'
        '      "explanation": "string"\n    }}\n  ]\n}}',
    ),
    QuestionType.OPEN: (
        "Task: Generate {count} short-answer questions based ONLY on the provided text content.\n",
        "3. Each answer must be a single word, number, or short phrase (max 5 words). "
        "List common equivalent spellings or forms in acceptableAnswers.\n",
        '{{\n  "questions": [\n    {{\n      "question": "string",\n'
        '      "answer": "string",\n      "acceptableAnswers": ["string"],\n'
        '      "explanation": "string"\n    }}\n  ]\n}}',
    ),
}


def build_system_instruction() -> str:
    return (
        "You are a strict, educational quiz generation engine. "
        "Your output MUST be valid JSON only. Do not output markdown code blocks."
    )


def _avoid_block(avoid_questions: Iterable[str]) -> str:
    recent = [q.strip() for q in avoid_questions if q and q.strip()][-MAX_AVOID_QUESTIONS:]
    if not recent:
        return ""
    lines = "\n".join(f"- {q[:MAX_AVOID_CHARS]}" for q in recent)
    return (
        "\nAlready asked (do NOT repeat or paraphrase these; cover different facts):\n"
        f"{lines}\n"
    )


def build_quiz_prompt(
    content: str,
    count: int,
    difficulty: Difficulty,
    language: Language,
    avoid_questions: Iterable[str] = (),
    question_type: QuestionType = QuestionType.POLL,
) -> str:
    difficulty = Difficulty(difficulty)
    language = Language(language)
    task, item_rule, output_format = _FORMATS[QuestionType(question_type)]

    return (
        task.format(count=count)
        + "\nLanguage:\n"
        "Output the question text, options, and explanation in the SAME language as the provided text content. "
        "Do NOT translate.\n"
        f"Expected language (best-effort hint): {LANGUAGE_NAMES[language]}.\n"
        "\nContext:\n"
        f"Difficulty Level: {difficulty.value.upper()}\n"
        f"{DIFFICULTY_GUIDANCE[difficulty]}\n"
        "\nRules:\n"
        "1. Use ONLY the provided text. Do not invent facts.\n"
        '2. If the text is insufficient, return {"questions": []}.\n'
        + item_rule
        + "4. Provide a clear, educational explanation for why the correct answer is correct.\n"
        "5. Keep the explanation short (max 180 characters).\n"
        '6. Do NOT use phrases like "the text states" or "according to the passage".\n'
        + _avoid_block(avoid_questions)
        + "\nOutput Format (Strict JSON):\n"
        + output_format.format()
        + "\n\nProvided Text Content:\n"
        f'"{content}"\n'
    )
