"""Test doubles: scripted provider, table tokenizer, in-memory page source."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from rpchat.models import CardData, Character, Message, PersonaData, Sender, World
from rpchat.storage import ChatStorage


class FakeProvider:
    """Returns scripted replies (or "reply N"), or raises `error`.

    With a `gate`, every call waits for gate.set() before answering.
    """

    def __init__(self, replies=None, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.replies = list(replies or [])
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, str, list]] = []

    async def generate(self, system, messages, *, model=None) -> str:
        return await self._reply("generate", system, messages)

    async def regenerate(self, system, messages, *, model=None) -> str:
        return await self._reply("regenerate", system, messages)

    async def _reply(self, kind, system, messages) -> str:
        self.calls.append((kind, system, list(messages)))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.calls)}"


class TableTokenizer:
    """Token counts from a table; unknown texts count one token per word."""

    def __init__(self, table: dict[str, int] | None = None):
        self.table = table or {}

    def count_tokens(self, text: str) -> int:
        if text in self.table:
            return self.table[text]
        return len(text.split())


class InMemoryPageSource:
    """HistoryPageSource over a chronological message list; records every page request."""

    def __init__(self, messages: list[Message]):
        self.messages = messages
        self.calls: list[tuple[int, int, int | None]] = []

    async def fetch_before(self, chat_id: int, limit: int, before_id: int | None = None) -> list[Message]:
        self.calls.append((chat_id, limit, before_id))
        older = [
            m for m in self.messages
            if m.chat_id == chat_id and (before_id is None or m.id < before_id)
        ]
        return list(reversed(older))[:limit]


def msg(message_id: int, sender: Sender | str, text: str, chat_id: int = 1) -> Message:
    return Message(id=message_id, chat_id=chat_id, sender=Sender(sender), text=text)


def make_card(
    name: str = "Aiko",
    greeting: str = "Welcome back, traveler.",
    description: str = "A cheerful innkeeper.",
    world: str = "",
) -> CardData:
    return CardData(
        character=Character(name=name, description=description, greeting=greeting),
        world=World(description=world),
    )


def make_persona(name: str = "Ren", description: str = "") -> PersonaData:
    return PersonaData(name=name, description=description)


@asynccontextmanager
async def storage_at(directory: Path):
    storage = ChatStorage(directory / "chat.db")
    await storage.init()
    try:
        yield storage
    finally:
        await storage.close()
