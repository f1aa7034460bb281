"""SQLite chat storage (aiosqlite).

Chats, messages and candidate replies in one local database file.

Tables:
- chats:      {id, card (JSON), persona (JSON), created_at}
- messages:   {id, chat_id, sender, text, prime_candidate_id, inserted_at}
- candidates: {id, message_id, text, inserted_at}

Ordering: message ids are AUTOINCREMENT, so they are never reused after a
delete and id order is chronological order within a chat.

Referential integrity is enforced by SQLite itself:
- candidates are removed with their message (ON DELETE CASCADE)
- prime_candidate_id never dangles (ON DELETE SET NULL)
- rewind is a single DELETE statement, so a partially cut history is never visible

All access goes through one connection guarded by an asyncio.Lock; every
mutation is one statement or one transaction.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from rpchat.config import settings
from rpchat.models import (
    Candidate,
    CardData,
    Chat,
    Message,
    PersonaData,
    Sender,
    TargetKind,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card TEXT NOT NULL,
    persona TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    sender TEXT NOT NULL CHECK (sender IN ('user', 'character')),
    text TEXT NOT NULL,
    prime_candidate_id INTEGER REFERENCES candidates(id) ON DELETE SET NULL,
    inserted_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS candidates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
    text TEXT NOT NULL,
    inserted_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, id);
CREATE INDEX IF NOT EXISTS idx_candidates_message ON candidates(message_id);
"""

# Message row + prime candidate text (NULL when no prime is set)
_SELECT_MESSAGE = """
SELECT m.id, m.chat_id, m.sender, m.text, m.inserted_at, m.prime_candidate_id,
       p.text AS prime_text
FROM messages m
LEFT JOIN candidates p ON p.id = m.prime_candidate_id
"""


class ChatStorage:
    """aiosqlite-backed storage collaborator for the chat core.

    Usage:
        storage = ChatStorage()
        await storage.init()
        ...
        await storage.close()
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock: asyncio.Lock | None = None

    async def init(self, db_path: str | Path | None = None) -> None:
        """Open the database and create tables if needed."""
        path = Path(db_path or self._db_path or settings.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()
        self._lock = asyncio.Lock()
        logger.info("ChatStorage initialized (db=%s)", path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            self._lock = None
        logger.info("ChatStorage closed")

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("ChatStorage not initialized. Call init() first.")
        return self._db

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[aiosqlite.Connection]:
        db = self.db
        async with self._lock:
            yield db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize a write; commit on success, roll back on any error."""
        db = self.db
        async with self._lock:
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def create_chat(self, card: CardData, persona: PersonaData) -> Chat:
        """Create a chat; the character's greeting becomes its first turn."""
        async with self._transaction() as db:
            cursor = await db.execute(
                "INSERT INTO chats (card, persona) VALUES (?, ?)",
                (card.model_dump_json(), persona.model_dump_json()),
            )
            chat_id = cursor.lastrowid
            if card.character.greeting:
                await db.execute(
                    "INSERT INTO messages (chat_id, sender, text) VALUES (?, ?, ?)",
                    (chat_id, Sender.CHARACTER.value, card.character.greeting),
                )
        logger.info("CHAT_CREATED | chatId=%d | character=%s", chat_id, card.character.name)
        chat = await self.get_chat(chat_id)
        return chat

    async def get_chat(self, chat_id: int) -> Chat | None:
        async with self._reading() as db:
            cursor = await db.execute(
                "SELECT id, card, persona, created_at FROM chats WHERE id = ?",
                (chat_id,),
            )
            row = await cursor.fetchone()
        return _row_to_chat(row) if row else None

    async def list_chats(self, limit: int = 50) -> list[Chat]:
        """Chats ordered by most recent activity."""
        async with self._reading() as db:
            cursor = await db.execute(
                """
                SELECT c.id, c.card, c.persona, c.created_at, MAX(m.id) AS last_message_id
                FROM chats c
                LEFT JOIN messages m ON m.chat_id = c.id
                GROUP BY c.id
                ORDER BY last_message_id IS NULL, last_message_id DESC, c.id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
        return [_row_to_chat(row) for row in rows]

    async def get_most_recent_chat(self) -> int | None:
        chats = await self.list_chats(limit=1)
        return chats[0].id if chats else None

    async def chat_exists(self, chat_id: int) -> bool:
        async with self._reading() as db:
            cursor = await db.execute("SELECT 1 FROM chats WHERE id = ?", (chat_id,))
            return await cursor.fetchone() is not None

    # ------------------------------------------------------------------
    # Message reads
    # ------------------------------------------------------------------

    async def fetch_before(
        self, chat_id: int, limit: int, before_id: int | None = None,
    ) -> list[Message]:
        """Up to `limit` messages, newest first, strictly older than before_id."""
        if before_id is None:
            query = _SELECT_MESSAGE + "WHERE m.chat_id = ? ORDER BY m.id DESC LIMIT ?"
            params: tuple = (chat_id, limit)
        else:
            query = _SELECT_MESSAGE + "WHERE m.chat_id = ? AND m.id < ? ORDER BY m.id DESC LIMIT ?"
            params = (chat_id, before_id, limit)

        async with self._reading() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def get_message(self, message_id: int) -> Message | None:
        """Single message with its candidates."""
        async with self._reading() as db:
            cursor = await db.execute(_SELECT_MESSAGE + "WHERE m.id = ?", (message_id,))
            row = await cursor.fetchone()
            if row is None:
                return None
            cursor = await db.execute(
                "SELECT id, message_id, text, inserted_at FROM candidates "
                "WHERE message_id = ? ORDER BY id",
                (message_id,),
            )
            candidate_rows = await cursor.fetchall()

        message = _row_to_message(row)
        message.candidates = [_row_to_candidate(r) for r in candidate_rows]
        return message

    async def get_history(self, chat_id: int) -> list[Message]:
        """Whole chat, chronological, candidates attached (for display)."""
        async with self._reading() as db:
            cursor = await db.execute(
                _SELECT_MESSAGE + "WHERE m.chat_id = ? ORDER BY m.id ASC", (chat_id,),
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                """
                SELECT c.id, c.message_id, c.text, c.inserted_at
                FROM candidates c
                JOIN messages m ON m.id = c.message_id
                WHERE m.chat_id = ?
                ORDER BY c.id
                """,
                (chat_id,),
            )
            candidate_rows = await cursor.fetchall()

        messages = [_row_to_message(row) for row in rows]
        by_id = {m.id: m for m in messages}
        for r in candidate_rows:
            by_id[r["message_id"]].candidates.append(_row_to_candidate(r))
        return messages

    async def find_user_turn_before(self, chat_id: int, message_id: int) -> Message | None:
        """Nearest user message older than message_id in the chat."""
        async with self._reading() as db:
            cursor = await db.execute(
                _SELECT_MESSAGE
                + "WHERE m.chat_id = ? AND m.id < ? AND m.sender = ? ORDER BY m.id DESC LIMIT 1",
                (chat_id, message_id, Sender.USER.value),
            )
            row = await cursor.fetchone()
        return _row_to_message(row) if row else None

    # ------------------------------------------------------------------
    # Message writes
    # ------------------------------------------------------------------

    async def insert_pair(self, chat_id: int, user_text: str, character_text: str) -> tuple[int, int]:
        """Insert a user turn and its character reply in one transaction."""
        async with self._transaction() as db:
            cursor = await db.execute(
                "INSERT INTO messages (chat_id, sender, text) VALUES (?, ?, ?)",
                (chat_id, Sender.USER.value, user_text),
            )
            user_id = cursor.lastrowid
            cursor = await db.execute(
                "INSERT INTO messages (chat_id, sender, text) VALUES (?, ?, ?)",
                (chat_id, Sender.CHARACTER.value, character_text),
            )
            character_id = cursor.lastrowid
        return user_id, character_id

    async def insert_candidate(self, message_id: int, text: str, set_prime: bool = False) -> int:
        """Add a candidate reply; with set_prime it becomes canonical in the same transaction."""
        async with self._transaction() as db:
            cursor = await db.execute(
                "INSERT INTO candidates (message_id, text) VALUES (?, ?)",
                (message_id, text),
            )
            candidate_id = cursor.lastrowid
            if set_prime:
                await db.execute(
                    "UPDATE messages SET prime_candidate_id = ? WHERE id = ?",
                    (candidate_id, message_id),
                )
        return candidate_id

    async def set_prime(self, message_id: int, candidate_id: int) -> bool:
        """Point message at candidate. False (no change) if the candidate isn't the message's."""
        async with self._transaction() as db:
            cursor = await db.execute(
                """
                UPDATE messages SET prime_candidate_id = ?
                WHERE id = ?
                  AND EXISTS (SELECT 1 FROM candidates WHERE id = ? AND message_id = ?)
                """,
                (candidate_id, message_id, candidate_id, message_id),
            )
            return cursor.rowcount > 0

    async def clear_prime(self, message_id: int) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute(
                "UPDATE messages SET prime_candidate_id = NULL WHERE id = ?", (message_id,),
            )
            return cursor.rowcount > 0

    async def update_text(self, target_kind: TargetKind, target_id: int, text: str) -> bool:
        table = "messages" if target_kind is TargetKind.MESSAGE else "candidates"
        async with self._transaction() as db:
            cursor = await db.execute(
                f"UPDATE {table} SET text = ? WHERE id = ?", (text, target_id),
            )
            return cursor.rowcount > 0

    async def delete_message(self, message_id: int) -> bool:
        """Delete one message (candidates cascade). Other messages untouched."""
        async with self._transaction() as db:
            cursor = await db.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            return cursor.rowcount > 0

    async def delete_after(self, chat_id: int, message_id: int) -> int:
        """Delete every message of the chat newer than message_id, as one statement."""
        async with self._transaction() as db:
            cursor = await db.execute(
                "DELETE FROM messages WHERE chat_id = ? AND id > ?", (chat_id, message_id),
            )
            return cursor.rowcount


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _row_to_chat(row) -> Chat:
    return Chat(
        id=row["id"],
        card=CardData.model_validate_json(row["card"]),
        persona=PersonaData.model_validate_json(row["persona"]),
        created_at=row["created_at"],
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row["id"],
        chat_id=row["chat_id"],
        sender=Sender(row["sender"]),
        text=row["text"],
        inserted_at=row["inserted_at"],
        prime_candidate_id=row["prime_candidate_id"],
        prime_text=row["prime_text"],
    )


def _row_to_candidate(row) -> Candidate:
    return Candidate(
        id=row["id"],
        message_id=row["message_id"],
        text=row["text"],
        inserted_at=row["inserted_at"],
    )


# Singleton
chat_storage = ChatStorage()
