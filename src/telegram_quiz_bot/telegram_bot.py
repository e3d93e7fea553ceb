"""Telegram bot handlers and app wiring."""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Poll, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    PollAnswerHandler,
    filters,
)

from .llm.quiz_generator import QuizGenerator, get_llm_stats, reset_llm_stats
from .llm.types import (
    Difficulty,
    GenerationRequest,
    InsufficientContentError,
    Language,
    NoProviderConfiguredError,
    QuestionType,
    QuizGenerationError,
    QuotaExceededError,
    UsageRecord,
)
from .models import (
    delete_expired_polls,
    get_connection,
    get_poll,
    get_usage_summary,
    get_user_state,
    list_usage_by_provider,
    log_llm_usage,
    save_poll,
    set_user_state,
)
from .quiz import (
    MAX_POLL_EXPLANATION_CHARS,
    MAX_POLL_OPTION_CHARS,
    MAX_POLL_QUESTION_CHARS,
    filter_new_questions,
)
from .validators import is_answer_match
from .utils import window_count

MAX_FILE_BYTES = 10 * 1024 * 1024
MAX_ASKED_HISTORY = 200

STATE_READY = "ready"
STATE_QUIZ = "quiz"
STATE_AWAITING_ANSWER = "awaiting_answer"

_CYRILLIC_RE = re.compile(r"[\u0400-\u052f]")
_LATIN_RE = re.compile(r"[A-Za-z]")
_UZBEK_CYRILLIC_RE = re.compile(r"[қўғҳ]")
_UZBEK_LATIN_MARKERS = ("o‘", "g‘", "o'", "g'")

HELP_TEXT = (
    "Send me a text (or a .txt file) and I will turn it into a quiz.\n\n"
    "1) Send the material\n"
    "2) Pick question type and difficulty\n"
    "3) Answer the polls or type your answers\n\n"
    "Commands:\n"
    "/count N - questions per round (default {default_count}, max {max_count})\n"
    "/part N - use part N of a long text\n"
    "/stop - stop the current quiz\n"
    "/usage - your token usage\n"
    "/help - this message"
)


def detect_language(text: str) -> Language:
    sample = (text or "")[:4000].lower()
    cyrillic = len(_CYRILLIC_RE.findall(sample))
    latin = len(_LATIN_RE.findall(sample))
    if cyrillic > latin * 1.2:
        return Language.UZ if _UZBEK_CYRILLIC_RE.search(sample) else Language.RU
    if any(marker in sample for marker in _UZBEK_LATIN_MARKERS):
        return Language.UZ
    return Language.EN


def clip(text: str | None, limit: int) -> str:
    value = str(text or "").strip()
    if len(value) <= limit:
        return value
    return value[: max(0, limit - 1)].rstrip() + "…"


def parse_positive_int(args: List[str] | None) -> int | None:
    if not args:
        return None
    try:
        value = int(args[0])
    except ValueError:
        return None
    return value if value > 0 else None


def error_message(exc: BaseException) -> str:
    if isinstance(exc, InsufficientContentError):
        return "The text didn't contain enough readable content to generate questions."
    if isinstance(exc, QuotaExceededError):
        hint = f" Please retry in {exc.retry_after_seconds:g}s." if exc.retry_after_seconds else ""
        return "Traffic limit reached. The AI is busy right now." + (hint or " Please wait a minute and try again.")
    if isinstance(exc, NoProviderConfiguredError):
        return "The AI service is not configured. Please contact the bot administrator."
    return "The AI service is busy or the text is unclear. Please try again in a moment."


def format_llm_stats(snap: Dict[str, Any]) -> str:
    lines = ["LLM stats"]
    for provider in ("gemini", "deepseek", "groq"):
        lines.append(
            f"{provider}: attempts={snap.get(f'{provider}_attempts', 0)} "
            f"ok={snap.get(f'{provider}_success', 0)} fail={snap.get(f'{provider}_fail', 0)}"
        )
    lines.append(f"last: {snap.get('last_provider') or '-'} / {snap.get('last_model') or '-'}")
    if snap.get("last_error"):
        lines.append(f"last_error: {snap['last_error'][:300]}")
    return "\n".join(lines)


class QuizBot:
    def __init__(self, config: Dict[str, Any], generator: QuizGenerator | None = None) -> None:
        self.config = config
        self.db_path = str(config["database"]["path"])
        self.quiz_cfg = config["quiz"]
        self.admin_ids = {int(uid) for uid in config["telegram"].get("admin_user_ids", [])}
        self.generator = generator or QuizGenerator(config)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _user_id(update: Update) -> str:
        return str(update.effective_user.id)

    def _is_admin(self, update: Update) -> bool:
        return bool(update.effective_user) and update.effective_user.id in self.admin_ids

    def _load(self, user_id: str) -> tuple[str, Dict[str, Any]]:
        with get_connection(self.db_path) as conn:
            row = get_user_state(conn, user_id)
        if not row:
            return "", {}
        return row["state"], row["data"]

    def _store(self, user_id: str, state: str, data: Dict[str, Any]) -> None:
        with get_connection(self.db_path) as conn:
            set_user_state(conn, user_id, state, data)

    @staticmethod
    def _type_keyboard() -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton("Quiz polls", callback_data="quiz:type:poll"),
                    InlineKeyboardButton("True/False/Not Given", callback_data="quiz:type:tfng"),
                ],
                [InlineKeyboardButton("Short answers", callback_data="quiz:type:open")],
            ]
        )

    @staticmethod
    def _difficulty_keyboard() -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton("Easy", callback_data="quiz:diff:easy"),
                    InlineKeyboardButton("Exam", callback_data="quiz:diff:exam"),
                    InlineKeyboardButton("Hard", callback_data="quiz:diff:hard"),
                ]
            ]
        )

    @staticmethod
    def _finish_keyboard(has_next_part: bool) -> InlineKeyboardMarkup:
        row = [InlineKeyboardButton("More questions", callback_data="quiz:more")]
        if has_next_part:
            row.append(InlineKeyboardButton("Next part", callback_data="quiz:nextpart"))
        return InlineKeyboardMarkup([row])

    def _help_text(self) -> str:
        return HELP_TEXT.format(
            default_count=self.quiz_cfg.get("default_count", 10),
            max_count=self.quiz_cfg.get("max_count", 30),
        )

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await update.message.reply_text("Hi! I make quizzes from your study material.\n\n" + self._help_text())

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await update.message.reply_text(self._help_text())

    async def count(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        max_count = int(self.quiz_cfg.get("max_count", 30))
        value = parse_positive_int(context.args)
        if value is None:
            await update.message.reply_text(f"Usage: /count N (1-{max_count})")
            return
        value = min(value, max_count)
        user_id = self._user_id(update)
        state, data = self._load(user_id)
        data["count"] = value
        self._store(user_id, state or STATE_READY, data)
        await update.message.reply_text(f"Questions per round set to {value}.")

    async def part(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = self._user_id(update)
        _, data = self._load(user_id)
        text = data.get("text", "")
        if not text:
            await update.message.reply_text("Send a text or .txt file first.")
            return
        parts = window_count(text, int(self.quiz_cfg["max_input_chars"]))
        value = parse_positive_int(context.args)
        if value is None:
            current = int(data.get("window_index", 0)) + 1
            await update.message.reply_text(f"Usage: /part N. This text has {parts} part(s); using part {current}.")
            return
        data["window_index"] = min(value, parts) - 1
        data["asked"] = []
        self._store(user_id, STATE_READY, data)
        await update.message.reply_text(
            f"Using part {data['window_index'] + 1} of {parts}. Choose a question type:",
            reply_markup=self._type_keyboard(),
        )

    async def stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = self._user_id(update)
        state, data = self._load(user_id)
        if not state:
            await update.message.reply_text("Nothing to stop.")
            return
        for key in ("questions", "current", "score", "processing"):
            data.pop(key, None)
        self._store(user_id, STATE_READY, data)
        await update.message.reply_text("Quiz stopped. Send new material or pick a question type again.")

    async def usage(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user_id = self._user_id(update)
        with get_connection(self.db_path) as conn:
            summary = get_usage_summary(conn, user_id)
            by_provider = list_usage_by_provider(conn, user_id)
        lines = [
            f"LLM calls: {summary['calls']}",
            f"tokens: prompt={summary['prompt_tokens']} completion={summary['completion_tokens']} "
            f"total={summary['total_tokens']}",
        ]
        lines.extend(f"- {row['provider']}/{row['model']}: {row['calls']} call(s), {row['total_tokens']} tokens"
                     for row in by_provider)
        await update.message.reply_text("\n".join(lines))

    async def llm(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_admin(update):
            await update.message.reply_text("Admins only.")
            return
        await update.message.reply_text(format_llm_stats(get_llm_stats()))

    async def llmreset(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_admin(update):
            await update.message.reply_text("Admins only.")
            return
        reset_llm_stats()
        await update.message.reply_text("LLM stats reset.")

    async def message_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text:
            return
        user_id = self._user_id(update)
        text = update.message.text.strip()

        state, data = self._load(user_id)
        if state == STATE_AWAITING_ANSWER:
            await self._check_open_answer(update, context, user_id, data, text)
            return
        await self._accept_material(update, user_id, data, text)

    async def document_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        doc = update.message.document if update.message else None
        if doc is None:
            return
        name = (doc.file_name or "").lower()
        if doc.mime_type != "text/plain" and not name.endswith(".txt"):
            await update.message.reply_text("Only .txt files are supported. You can also paste the text directly.")
            return
        if doc.file_size and doc.file_size > MAX_FILE_BYTES:
            await update.message.reply_text("File is too large (max 10 MB).")
            return

        tg_file = await context.bot.get_file(doc.file_id)
        raw = await tg_file.download_as_bytearray()
        text = bytes(raw).decode("utf-8", errors="replace").strip()
        user_id = self._user_id(update)
        _, data = self._load(user_id)
        await self._accept_material(update, user_id, data, text)

    async def _accept_material(self, update: Update, user_id: str, data: Dict[str, Any], text: str) -> None:
        min_chars = int(self.quiz_cfg.get("min_input_chars", 200))
        if len(text) < min_chars:
            await update.effective_chat.send_message(
                f"That text is too short to quiz on (min {min_chars} characters). Send a longer text or a .txt file."
            )
            return

        parts = window_count(text, int(self.quiz_cfg["max_input_chars"]))
        fresh = {
            "text": text,
            "language": detect_language(text).value,
            "window_index": 0,
            "count": data.get("count", self.quiz_cfg.get("default_count", 10)),
            "asked": [],
        }
        self._store(user_id, STATE_READY, fresh)
        note = f" The text is long, so it was split into {parts} parts; use /part N to switch." if parts > 1 else ""
        await update.effective_chat.send_message(
            f"Got it ({len(text)} characters).{note}\nChoose a question type:",
            reply_markup=self._type_keyboard(),
        )

    async def callback_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        await query.answer()
        user_id = self._user_id(update)
        parts = (query.data or "").split(":")
        action = parts[1] if len(parts) > 1 else ""
        value = parts[2] if len(parts) > 2 else ""

        _, data = self._load(user_id)
        if not data.get("text"):
            await query.edit_message_text("Send a text or .txt file first.")
            return

        if action == "type" and value in {t.value for t in QuestionType}:
            data["question_type"] = value
            self._store(user_id, STATE_READY, data)
            await query.edit_message_text("Choose difficulty:", reply_markup=self._difficulty_keyboard())
            return

        if action == "diff" and value in {d.value for d in Difficulty}:
            data["difficulty"] = value
            data.setdefault("question_type", QuestionType.POLL.value)
            await query.edit_message_text(f"Difficulty: {value}.")
            await self._run_round(update, context, user_id, data)
            return

        if action == "more":
            await query.edit_message_text("Generating more questions...")
            await self._run_round(update, context, user_id, data)
            return

        if action == "nextpart":
            total = window_count(data["text"], int(self.quiz_cfg["max_input_chars"]))
            data["window_index"] = min(int(data.get("window_index", 0)) + 1, total - 1)
            data["asked"] = []
            await query.edit_message_text(f"Moving to part {data['window_index'] + 1} of {total}.")
            await self._run_round(update, context, user_id, data)
            return

        await query.edit_message_text("Unknown action.")

    async def _run_round(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE, user_id: str, data: Dict[str, Any]
    ) -> None:
        chat_id = update.effective_chat.id
        if data.get("processing"):
            await context.bot.send_message(chat_id, "Still generating your quiz, please wait...")
            return

        data["processing"] = True
        self._store(user_id, STATE_READY, data)
        try:
            await self._generate_round(context, user_id, chat_id, data)
        finally:
            self._release_processing(user_id, data)

    @staticmethod
    def _same_material(current: Dict[str, Any], data: Dict[str, Any]) -> bool:
        return current.get("text") == data.get("text") and int(current.get("window_index", 0)) == int(
            data.get("window_index", 0)
        )

    def _release_processing(self, user_id: str, data: Dict[str, Any]) -> None:
        state, current = self._load(user_id)
        if current.get("processing") and self._same_material(current, data):
            current["processing"] = False
            self._store(user_id, state or STATE_READY, current)

    async def _generate_round(
        self, context: ContextTypes.DEFAULT_TYPE, user_id: str, chat_id: int, data: Dict[str, Any]
    ) -> None:
        await context.bot.send_message(chat_id, "Generating questions. This can take a few seconds...")

        request = GenerationRequest(
            text=data["text"],
            count=int(data.get("count", self.quiz_cfg.get("default_count", 10))),
            difficulty=data.get("difficulty", Difficulty.EXAM.value),
            language=data.get("language", Language.EN.value),
            avoid_questions=tuple(data.get("asked", [])),
            question_type=data.get("question_type", QuestionType.POLL.value),
            window_index=int(data.get("window_index", 0)),
        )
        try:
            quiz = await self.generator.generate_quiz(request, usage_collector=self._usage_collector(user_id))
        except QuizGenerationError as exc:
            if not isinstance(exc, (InsufficientContentError, QuotaExceededError)):
                self.logger.error("Quiz generation failed for user %s: %s", user_id, exc)
            await context.bot.send_message(chat_id, error_message(exc))
            return

        _, current = self._load(user_id)
        if not self._same_material(current, data):
            self.logger.info("Discarding quiz for user %s: material changed during generation", user_id)
            return

        questions = filter_new_questions(quiz.questions, data.get("asked", []))
        data["processing"] = False
        if not questions:
            self._store(user_id, STATE_READY, data)
            await context.bot.send_message(
                chat_id, "No new questions left for this part. Try /part N or send new material."
            )
            return

        data["questions"] = [q.to_dict() for q in questions]
        data["asked"] = (data.get("asked", []) + [q.question for q in questions])[-MAX_ASKED_HISTORY:]
        data["current"] = 0
        data["score"] = 0
        data["chat_id"] = chat_id
        await self._send_question(context, user_id, data)

    def _usage_collector(self, user_id: str):
        def collect(record: UsageRecord) -> None:
            with get_connection(self.db_path) as conn:
                log_llm_usage(
                    conn,
                    user_id,
                    record.provider,
                    record.model,
                    record.prompt_tokens,
                    record.completion_tokens,
                    record.total_tokens,
                )

        return collect

    async def _send_question(self, context: ContextTypes.DEFAULT_TYPE, user_id: str, data: Dict[str, Any]) -> None:
        index = int(data["current"])
        total = len(data["questions"])
        question = data["questions"][index]
        chat_id = data["chat_id"]

        if data.get("question_type") == QuestionType.OPEN.value:
            self._store(user_id, STATE_AWAITING_ANSWER, data)
            await context.bot.send_message(
                chat_id, f"{index + 1}/{total}. {question['question']}\n\nType your answer."
            )
            return

        self._store(user_id, STATE_QUIZ, data)
        message = await context.bot.send_poll(
            chat_id,
            clip(f"{index + 1}. {question['question']}", MAX_POLL_QUESTION_CHARS),
            [clip(option, MAX_POLL_OPTION_CHARS) for option in question["options"]],
            is_anonymous=False,
            type=Poll.QUIZ,
            correct_option_id=int(question["correctIndex"]),
            explanation=clip(question.get("explanation"), MAX_POLL_EXPLANATION_CHARS) or None,
        )
        with get_connection(self.db_path) as conn:
            save_poll(
                conn,
                message.poll.id,
                chat_id,
                user_id,
                index,
                int(question["correctIndex"]),
                question["question"],
                question.get("explanation", ""),
            )

    async def _advance(self, context: ContextTypes.DEFAULT_TYPE, user_id: str, data: Dict[str, Any]) -> None:
        data["current"] = int(data["current"]) + 1
        if data["current"] < len(data["questions"]):
            await self._send_question(context, user_id, data)
            return

        total = len(data["questions"])
        score = int(data.get("score", 0))
        for key in ("questions", "current", "score"):
            data.pop(key, None)
        self._store(user_id, STATE_READY, data)
        parts = window_count(data["text"], int(self.quiz_cfg["max_input_chars"]))
        await context.bot.send_message(
            data["chat_id"],
            f"Finished! Score: {score}/{total}",
            reply_markup=self._finish_keyboard(int(data.get("window_index", 0)) + 1 < parts),
        )

    async def _check_open_answer(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
        user_id: str,
        data: Dict[str, Any],
        text: str,
    ) -> None:
        question = data["questions"][int(data["current"])]
        if is_answer_match(text, question["answer"], question.get("acceptableAnswers", [])):
            data["score"] = int(data.get("score", 0)) + 1
            reply = "Correct!"
        else:
            reply = f"Not quite. Answer: {question['answer']}"
        if question.get("explanation"):
            reply += f"\n\n{question['explanation']}"
        await update.message.reply_text(reply)
        await self._advance(context, user_id, data)

    async def poll_answer_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        answer = update.poll_answer
        if answer is None or answer.user is None:
            return
        user_id = str(answer.user.id)
        with get_connection(self.db_path) as conn:
            poll = get_poll(conn, answer.poll_id)
        if not poll or poll["user_id"] != user_id:
            return

        state, data = self._load(user_id)
        if state != STATE_QUIZ or int(data.get("current", -1)) != int(poll["question_index"]):
            return
        selected = answer.option_ids[0] if answer.option_ids else None
        if selected == poll["correct_index"]:
            data["score"] = int(data.get("score", 0)) + 1
        await self._advance(context, user_id, data)

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        self.logger.exception("Unhandled bot error", exc_info=context.error)
        if isinstance(update, Update) and update.effective_chat:
            await update.effective_chat.send_message("Unexpected error while processing your request. Please retry.")

    def build_application(self) -> Application:
        token = os.getenv("TELEGRAM_BOT_TOKEN")
        if not token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")

        app = ApplicationBuilder().token(token).build()
        app.add_handler(CommandHandler("start", self.start))
        app.add_handler(CommandHandler("help", self.help))
        app.add_handler(CommandHandler("count", self.count))
        app.add_handler(CommandHandler("part", self.part))
        app.add_handler(CommandHandler("stop", self.stop))
        app.add_handler(CommandHandler("usage", self.usage))
        app.add_handler(CommandHandler("llm", self.llm))
        app.add_handler(CommandHandler("llmreset", self.llmreset))
        app.add_handler(CallbackQueryHandler(self.callback_handler, pattern=r"^quiz:"))
        app.add_handler(PollAnswerHandler(self.poll_answer_handler))
        app.add_handler(MessageHandler(filters.Document.ALL, self.document_handler))
        app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.message_handler))
        app.add_error_handler(self.error_handler)
        return app

    def run_polling(self) -> None:
        app = self.build_application()
        with get_connection(self.db_path) as conn:
            delete_expired_polls(conn)
        app.run_polling(
            poll_interval=float(self.config["telegram"].get("poll_interval_seconds", 1)),
            allowed_updates=Update.ALL_TYPES,
        )
