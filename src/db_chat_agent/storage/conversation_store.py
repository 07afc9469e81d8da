from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from loguru import logger

from db_chat_agent.storage.store import ConversationDb, utc_now

MESSAGES_KEY = "messages"
LAST_MODEL_KEY = "last_model"


class ConversationStore:
    def __init__(self, db: ConversationDb):
        self._db = db

    def get_conversation(self, conversation_id: str) -> dict | None:
        row = self._db.execute(
            "SELECT * FROM conversations WHERE id = ? LIMIT 1",
            (conversation_id,),
        ).fetchone()
        return dict(row) if row is not None else None

    def list_conversations(self, *, limit: int = 50) -> list[dict]:
        rows = self._db.execute(
            """
            SELECT id, title, created_at, updated_at
            FROM conversations
            ORDER BY updated_at DESC, created_at DESC
            LIMIT ?
            """,
            (max(1, limit),),
        ).fetchall()
        return [dict(row) for row in rows]

    def create_conversation(self, conversation_id: str | None = None) -> str:
        cid = conversation_id or str(uuid4())
        now = utc_now()
        self._db.execute(
            "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, '', ?, ?)",
            (cid, now, now),
        )
        self._db.commit()
        logger.debug(f"Created conversation {cid}")
        return cid

    def load_or_create(self, conversation_id: str | None) -> str:
        if conversation_id and self.get_conversation(conversation_id) is not None:
            return conversation_id
        return self.create_conversation(conversation_id)

    def get_title(self, conversation_id: str) -> str:
        conversation = self.get_conversation(conversation_id)
        return conversation["title"] if conversation else ""

    def set_title(self, conversation_id: str, title: str) -> None:
        cursor = self._db.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
            (title.strip(), utc_now(), conversation_id),
        )
        if cursor.rowcount == 0:
            raise ValueError(f"Conversation does not exist: {conversation_id}")
        self._db.commit()

    def clear_title(self, conversation_id: str) -> None:
        self.set_title(conversation_id, "")

    def get_state(self, conversation_id: str, key: str, default: Any = None) -> Any:
        row = self._db.execute(
            "SELECT value_json FROM tab_state WHERE conversation_id = ? AND key = ? LIMIT 1",
            (conversation_id, key),
        ).fetchone()
        if row is None:
            return default
        return json.loads(row["value_json"])

    def set_state(self, conversation_id: str, key: str, value: Any) -> None:
        now = utc_now()
        self._db.execute(
            """
            INSERT INTO tab_state (conversation_id, key, value_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(conversation_id, key)
            DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at
            """,
            (conversation_id, key, json.dumps(value, ensure_ascii=True), now),
        )
        self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (now, conversation_id),
        )
        self._db.commit()

    def load_messages(self, conversation_id: str) -> list[dict]:
        messages = self.get_state(conversation_id, MESSAGES_KEY, [])
        return messages if isinstance(messages, list) else []


class ConversationTabState:
    """Tab persistence for one stored conversation."""

    def __init__(self, store: ConversationStore, conversation_id: str):
        self._store = store
        self._conversation_id = conversation_id

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def conversation_title(self) -> str:
        return self._store.get_title(self._conversation_id)

    async def set_tab_state(self, key: str, value: Any) -> None:
        self._store.set_state(self._conversation_id, key, value)

    async def set_tab_title(self, title: str) -> None:
        self._store.set_title(self._conversation_id, title)

    def clear_title(self) -> None:
        self._store.clear_title(self._conversation_id)
