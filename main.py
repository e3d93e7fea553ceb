"""Entrypoint: run the Telegram quiz bot or generate a quiz from a local file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
import sys

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from telegram_quiz_bot.config import load_settings
from telegram_quiz_bot.llm.quiz_generator import QuizGenerator
from telegram_quiz_bot.llm.types import GenerationRequest, QuizGenerationError
from telegram_quiz_bot.models import apply_migrations
from telegram_quiz_bot.telegram_bot import QuizBot, detect_language


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Telegram quiz bot")
    parser.add_argument("--settings", default="config/settings.yaml", help="Path to settings.yaml")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run-bot", help="Run Telegram bot (default)")
    subparsers.add_parser("init-db", help="Apply SQLite migrations only")

    generate = subparsers.add_parser("generate", help="Print quiz JSON for a local text file")
    generate.add_argument("--file", required=True, help="UTF-8 text file to quiz on")
    generate.add_argument("--count", type=int, default=None)
    generate.add_argument("--difficulty", choices=["easy", "exam", "hard"], default="exam")
    generate.add_argument("--type", dest="question_type", choices=["poll", "open", "tfng"], default="poll")
    generate.add_argument("--language", choices=["en", "uz", "ru"], default=None)
    generate.add_argument("--part", type=int, default=1, help="1-based window of a long text")
    return parser


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every Telegram long-poll request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _generate(config, args: argparse.Namespace) -> int:
    text = Path(args.file).read_text(encoding="utf-8", errors="replace")
    request = GenerationRequest(
        text=text,
        count=args.count or int(config["quiz"]["default_count"]),
        difficulty=args.difficulty,
        language=args.language or detect_language(text),
        question_type=args.question_type,
        window_index=max(0, args.part - 1),
    )
    generator = QuizGenerator(config)
    try:
        quiz = asyncio.run(generator.generate_quiz(request))
    except QuizGenerationError as exc:
        print(f"Generation failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(quiz.to_dict(), ensure_ascii=False, indent=2))
    return 0


def main() -> None:
    load_dotenv()
    _configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command or "run-bot"

    config = load_settings(args.settings)

    if command == "generate":
        sys.exit(_generate(config, args))

    db_path = config["database"]["path"]
    apply_migrations(db_path)

    if command == "init-db":
        print(f"Database initialized at {db_path}")
        return

    bot = QuizBot(config)
    bot.run_polling()


if __name__ == "__main__":
    main()
