from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger

from chat_stream_runtime.models import Message, utc_now

MESSAGES_KEY_PREFIX = "chatui-messages:"


def thread_messages_key(base_key: str, thread_id: str) -> str:
    """Storage key holding one thread's messages, so threads never share history."""
    if not base_key or not thread_id:
        return ""
    return f"{MESSAGES_KEY_PREFIX}{base_key}:{thread_id}"


class SnapshotStore:
    """Local snapshots of the message list and current thread id, keyed by storage key."""

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def commit(self) -> None:
        self._conn.commit()

    def save_messages(self, storage_key: str, messages: Sequence[Message]) -> None:
        if not storage_key or not messages:
            return
        payload = json.dumps([m.to_dict() for m in messages], ensure_ascii=True)
        try:
            self._conn.execute(
                """
                INSERT INTO message_snapshots (storage_key, payload_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(storage_key) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    updated_at = excluded.updated_at
                """,
                (storage_key, payload, utc_now().isoformat()),
            )
            self._conn.commit()
        except sqlite3.Error as ex:
            logger.error(f"Failed to save chat history for {storage_key!r}: {ex}")

    def load_messages(self, storage_key: str) -> list[Message] | None:
        if not storage_key:
            return None
        row = self._conn.execute(
            "SELECT payload_json FROM message_snapshots WHERE storage_key = ? LIMIT 1",
            (storage_key,),
        ).fetchone()
        if row is None:
            return None
        try:
            raw = json.loads(row["payload_json"])
            if not isinstance(raw, list) or not raw:
                return None
            return [Message.from_dict(item) for item in raw]
        except (ValueError, TypeError, AttributeError) as ex:
            logger.warning(f"Ignoring unreadable chat snapshot for {storage_key!r}: {ex}")
            return None

    def clear_messages(self, storage_key: str) -> None:
        if not storage_key:
            return
        self._conn.execute("DELETE FROM message_snapshots WHERE storage_key = ?", (storage_key,))
        self._conn.commit()

    def load_current_thread_id(self, storage_key: str) -> str | None:
        if not storage_key:
            return None
        row = self._conn.execute(
            "SELECT thread_id FROM current_threads WHERE storage_key = ? LIMIT 1",
            (storage_key,),
        ).fetchone()
        return row["thread_id"] if row is not None else None

    def save_current_thread_id(self, storage_key: str, thread_id: str | None) -> None:
        if not storage_key:
            return
        if thread_id is None:
            self._conn.execute("DELETE FROM current_threads WHERE storage_key = ?", (storage_key,))
        else:
            self._conn.execute(
                """
                INSERT INTO current_threads (storage_key, thread_id, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(storage_key) DO UPDATE SET
                    thread_id = excluded.thread_id,
                    updated_at = excluded.updated_at
                """,
                (storage_key, thread_id, utc_now().isoformat()),
            )
        self._conn.commit()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS message_snapshots (
                storage_key TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS current_threads (
                storage_key TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()
