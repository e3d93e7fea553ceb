"""Typed quiz questions built from parsed LLM output."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Union

from .llm.types import ParseError, QuestionType
from .prompts import TFNG_OPTIONS
from .utils import is_near_duplicate, normalize_question_text

logger = logging.getLogger(__name__)

# Telegram limits for quiz polls.
MAX_POLL_QUESTION_CHARS = 300
MAX_POLL_OPTION_CHARS = 100
MAX_POLL_EXPLANATION_CHARS = 200


@dataclass
class PollQuestion:
    question: str
    options: List[str]
    correct_index: int
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "options": list(self.options),
            "correctIndex": self.correct_index,
            "explanation": self.explanation,
        }


@dataclass
class OpenQuestion:
    question: str
    answer: str
    acceptable_answers: List[str] = field(default_factory=list)
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "acceptableAnswers": list(self.acceptable_answers),
            "explanation": self.explanation,
        }


QuizQuestion = Union[PollQuestion, OpenQuestion]


@dataclass
class QuizResponse:
    questions: List[QuizQuestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"questions": [q.to_dict() for q in self.questions]}


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _poll_question(item: Mapping[str, Any], option_count: int) -> PollQuestion | None:
    question = _text(item.get("question"))
    options = item.get("options")
    correct = item.get("correctIndex", item.get("correct_index"))
    if not question or not isinstance(options, list) or isinstance(correct, bool):
        return None
    options = [_text(opt) for opt in options]
    if len(options) != option_count or not all(options):
        return None
    try:
        correct_index = int(correct)
    except (TypeError, ValueError):
        return None
    if not 0 <= correct_index < option_count:
        return None
    return PollQuestion(
        question=question,
        options=options,
        correct_index=correct_index,
        explanation=_text(item.get("explanation")),
    )


def _tfng_question(item: Mapping[str, Any]) -> PollQuestion | None:
    parsed = _poll_question({**item, "options": item.get("options") or list(TFNG_OPTIONS)}, len(TFNG_OPTIONS))
    if parsed is not None:
        parsed.options = list(TFNG_OPTIONS)
    return parsed


def _open_question(item: Mapping[str, Any]) -> OpenQuestion | None:
    question = _text(item.get("question"))
    answer = _text(item.get("answer"))
    if not question or not answer:
        return None
    acceptable = item.get("acceptableAnswers", item.get("acceptable_answers")) or []
    if not isinstance(acceptable, list):
        acceptable = [acceptable]
    return OpenQuestion(
        question=question,
        answer=answer,
        acceptable_answers=[_text(a) for a in acceptable if _text(a)],
        explanation=_text(item.get("explanation")),
    )


def build_quiz_response(payload: Mapping[str, Any], question_type: QuestionType = QuestionType.POLL) -> QuizResponse:
    """Validates parsed questions for the requested type.

    Malformed items are dropped; a non-empty list with no valid item raises
    ParseError so the attempt counts as a generation failure.
    """
    raw_items = payload.get("questions")
    if not isinstance(raw_items, list):
        raise ParseError("Invalid JSON structure received from AI: missing questions array")

    question_type = QuestionType(question_type)
    questions: List[QuizQuestion] = []
    for item in raw_items:
        if not isinstance(item, Mapping):
            continue
        if question_type is QuestionType.OPEN:
            parsed: QuizQuestion | None = _open_question(item)
        elif question_type is QuestionType.TFNG:
            parsed = _tfng_question(item)
        else:
            parsed = _poll_question(item, 4)
        if parsed is None:
            logger.warning("Dropping malformed %s question: %.120s", question_type.value, item)
            continue
        questions.append(parsed)

    if raw_items and not questions:
        raise ParseError(f"No valid {question_type.value} questions in model output")
    return QuizResponse(questions=questions)


def filter_new_questions(questions: Iterable[QuizQuestion], avoid: Iterable[str]) -> List[QuizQuestion]:
    """Drops repeats within the batch and near-duplicates of already asked questions."""
    avoid_list = list(avoid)
    seen: set[str] = set()
    accepted: List[QuizQuestion] = []
    for question in questions:
        norm = normalize_question_text(question.question)
        if not norm or norm in seen:
            continue
        if is_near_duplicate(question.question, avoid_list):
            continue
        seen.add(norm)
        accepted.append(question)
    return accepted
