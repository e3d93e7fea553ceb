"""Shared LLM data structures and the generation error hierarchy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class Difficulty(str, Enum):
    EASY = "easy"
    EXAM = "exam"
    HARD = "hard"


class Language(str, Enum):
    EN = "en"
    UZ = "uz"
    RU = "ru"


class QuestionType(str, Enum):
    POLL = "poll"
    OPEN = "open"
    TFNG = "tfng"


@dataclass(frozen=True)
class GenerationRequest:
    text: str
    count: int
    difficulty: Difficulty = Difficulty.EXAM
    language: Language = Language.EN
    avoid_questions: Tuple[str, ...] = ()
    question_type: QuestionType = QuestionType.POLL
    window_index: int = 0

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValueError(f"count must be positive, got {self.count}")
        object.__setattr__(self, "difficulty", Difficulty(self.difficulty))
        object.__setattr__(self, "language", Language(self.language))
        object.__setattr__(self, "question_type", QuestionType(self.question_type))
        object.__setattr__(self, "avoid_questions", tuple(str(q) for q in self.avoid_questions))


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


@dataclass
class ProviderResult:
    content: str
    provider: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class UsageRecord:
    provider: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class QuizGenerationError(RuntimeError):
    """Base class for every error raised by quiz generation."""


class ProviderError(QuizGenerationError):
    """Provider failed to return a usable generation."""

    def __init__(self, message: str, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider


class ConfigError(ProviderError):
    """Required credential is missing for a provider."""


class HttpError(ProviderError):
    def __init__(self, provider: str, status: int, body: str = "") -> None:
        super().__init__(f"{provider.upper()}_HTTP_{status}", provider=provider)
        self.status = status
        self.body = body or ""

    def __str__(self) -> str:
        base = super().__str__()
        body = self.body.strip()
        return f"{base}: {body[:400]}" if body else base


class EmptyResponseError(ProviderError):
    """Upstream answered 2xx but without message content."""


class NetworkError(ProviderError):
    """Connection or read failure that survived the transport-level retries."""


class GenerationTimeoutError(ProviderError):
    """A single generation attempt exceeded its hard time limit."""


class ParseError(QuizGenerationError):
    def __init__(self, message: str, snippet: str = "") -> None:
        super().__init__(message)
        self.snippet = snippet[:400]


class InsufficientContentError(QuizGenerationError):
    """The source text cannot yield questions; retrying will not help."""

    def __init__(self, message: str = "Insufficient content") -> None:
        super().__init__(message)


class NoProviderConfiguredError(QuizGenerationError):
    def __init__(self) -> None:
        super().__init__(
            "No LLM provider configured. Set GEMINI_API_KEY(S), DEEPSEEK_API_KEY and/or GROQ_API_KEY."
        )


class QuotaExceededError(QuizGenerationError):
    def __init__(self, retry_after_seconds: float | None = None) -> None:
        self.retry_after_seconds = retry_after_seconds
        extra = f" Please retry in {retry_after_seconds:g}s." if retry_after_seconds else ""
        super().__init__(f"LLM API quota exceeded. The system is currently busy.{extra}")


class GenerationFailedError(QuizGenerationError):
    def __init__(self, message: str | None = None, detail: str = "") -> None:
        super().__init__(
            message
            or "Failed to generate quiz. The AI service might be busy or the file content is unclear."
        )
        self.detail = detail
