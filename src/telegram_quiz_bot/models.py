"""SQLite schema, migrations, and data access helpers."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

from .utils import json_dumps, json_loads, utc_now_iso

POLL_TTL_HOURS = 24

MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS user_states (
            user_id TEXT PRIMARY KEY,
            state TEXT NOT NULL,
            data_json TEXT NOT NULL DEFAULT '{}',
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS polls (
            poll_id TEXT PRIMARY KEY,
            chat_id INTEGER NOT NULL,
            user_id TEXT NOT NULL,
            question_index INTEGER NOT NULL,
            correct_index INTEGER NOT NULL,
            question TEXT NOT NULL,
            explanation TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_polls_created ON polls(created_at);
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS llm_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            model TEXT NOT NULL,
            prompt_tokens INTEGER,
            completion_tokens INTEGER,
            total_tokens INTEGER,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_llm_usage_user_created ON llm_usage(user_id, created_at);
        """,
    ),
]


def get_connection(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def apply_migrations(db_path: str) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row["version"]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version in applied:
                continue
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
        conn.commit()


def _row_to_dict(row: sqlite3.Row | None) -> Dict[str, Any] | None:
    if row is None:
        return None
    return dict(row)


def set_user_state(conn: sqlite3.Connection, user_id: str, state: str, data: Dict[str, Any] | None = None) -> None:
    conn.execute(
        """
        INSERT INTO user_states(user_id, state, data_json, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(user_id)
        DO UPDATE SET state = excluded.state, data_json = excluded.data_json, updated_at = excluded.updated_at
        """,
        (user_id, state, json_dumps(data), utc_now_iso()),
    )
    conn.commit()


def get_user_state(conn: sqlite3.Connection, user_id: str) -> Dict[str, Any] | None:
    row = _row_to_dict(conn.execute("SELECT * FROM user_states WHERE user_id = ?", (user_id,)).fetchone())
    if row is None:
        return None
    row["data"] = json_loads(row.pop("data_json"))
    return row


def clear_user_state(conn: sqlite3.Connection, user_id: str) -> None:
    conn.execute("DELETE FROM user_states WHERE user_id = ?", (user_id,))
    conn.commit()


def save_poll(
    conn: sqlite3.Connection,
    poll_id: str,
    chat_id: int,
    user_id: str,
    question_index: int,
    correct_index: int,
    question: str,
    explanation: str = "",
) -> None:
    conn.execute(
        """
        INSERT INTO polls(poll_id, chat_id, user_id, question_index, correct_index, question, explanation, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(poll_id)
        DO UPDATE SET question_index = excluded.question_index, correct_index = excluded.correct_index
        """,
        (poll_id, chat_id, user_id, question_index, correct_index, question, explanation, utc_now_iso()),
    )
    conn.commit()


def get_poll(conn: sqlite3.Connection, poll_id: str) -> Dict[str, Any] | None:
    row = conn.execute("SELECT * FROM polls WHERE poll_id = ?", (poll_id,)).fetchone()
    return _row_to_dict(row)


def delete_expired_polls(conn: sqlite3.Connection, ttl_hours: int = POLL_TTL_HOURS) -> int:
    cutoff = (datetime.now(timezone.utc) - timedelta(hours=ttl_hours)).isoformat()
    cur = conn.execute("DELETE FROM polls WHERE created_at < ?", (cutoff,))
    conn.commit()
    return cur.rowcount


def log_llm_usage(
    conn: sqlite3.Connection,
    user_id: str,
    provider: str,
    model: str,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_tokens: int | None,
) -> Dict[str, Any]:
    cur = conn.execute(
        """
        INSERT INTO llm_usage(user_id, provider, model, prompt_tokens, completion_tokens, total_tokens, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, provider, model, prompt_tokens, completion_tokens, total_tokens, utc_now_iso()),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM llm_usage WHERE id = ?", (cur.lastrowid,)).fetchone()
    return dict(row)


def get_usage_summary(conn: sqlite3.Connection, user_id: str | None = None) -> Dict[str, Any]:
    where = "WHERE user_id = ?" if user_id is not None else ""
    params: tuple[Any, ...] = (user_id,) if user_id is not None else ()
    row = conn.execute(
        f"""
        SELECT
          COUNT(*) AS calls,
          COALESCE(SUM(prompt_tokens), 0) AS prompt_tokens,
          COALESCE(SUM(completion_tokens), 0) AS completion_tokens,
          COALESCE(SUM(total_tokens), 0) AS total_tokens
        FROM llm_usage
        {where}
        """,
        params,
    ).fetchone()
    return dict(row)


def list_usage_by_provider(conn: sqlite3.Connection, user_id: str | None = None) -> List[Dict[str, Any]]:
    where = "WHERE user_id = ?" if user_id is not None else ""
    params: tuple[Any, ...] = (user_id,) if user_id is not None else ()
    rows = conn.execute(
        f"""
        SELECT provider, model, COUNT(*) AS calls, COALESCE(SUM(total_tokens), 0) AS total_tokens
        FROM llm_usage
        {where}
        GROUP BY provider, model
        ORDER BY total_tokens DESC
        """,
        params,
    ).fetchall()
    return [dict(row) for row in rows]
