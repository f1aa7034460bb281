"""Data models for chats, messages, candidates and provider payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field


# --- Enums ---


class Sender(str, Enum):
    USER = "user"
    CHARACTER = "character"


class Role(str, Enum):
    """Provider-side role. Only these two roles ever reach a provider."""

    USER = "user"
    ASSISTANT = "assistant"


class TargetKind(str, Enum):
    """What an edit mutates."""

    MESSAGE = "message"
    CANDIDATE = "candidate"


class PromptVariant(str, Enum):
    XML = "xml"
    MARKDOWN = "markdown"


# --- Card / Persona (template data, read-only for the core) ---


class Character(BaseModel):
    name: str
    description: str = ""
    greeting: str = ""
    alt_greetings: list[str] = Field(default_factory=list)
    msg_examples: str = ""


class World(BaseModel):
    description: str = ""


class CardCreator(BaseModel):
    card: str = ""
    character: str = ""
    world: str = ""


class CardMeta(BaseModel):
    title: str = ""
    created_at: str = ""
    updated_at: str | None = None
    creator: CardCreator = Field(default_factory=CardCreator)
    notes: str | None = None
    tagline: str = ""
    tags: list[str] = Field(default_factory=list)


class CardData(BaseModel):
    """Character card: character + world description."""

    spec: str = "anime_rp"
    spec_version: str = "1.0"
    character: Character
    world: World = Field(default_factory=World)
    meta: CardMeta = Field(default_factory=CardMeta)


class PersonaData(BaseModel):
    """The user's persona in a chat."""

    name: str
    description: str = ""


# --- Provider payload ---


class ProviderMessage(BaseModel):
    role: Role
    content: str

    @classmethod
    def from_sender(cls, sender: Sender, content: str) -> "ProviderMessage":
        if sender is Sender.USER:
            return cls(role=Role.USER, content=content)
        if sender is Sender.CHARACTER:
            return cls(role=Role.ASSISTANT, content=content)
        raise ValueError(f"Unknown sender: {sender!r}")


@dataclass
class Context:
    """System prompt + alternating messages for one provider call. Never cached."""

    system: str
    messages: list[ProviderMessage]

    def to_llm_messages(self) -> list[dict]:
        """Flatten into the OpenAI-style list litellm expects."""
        return [
            {"role": "system", "content": self.system},
            *({"role": m.role.value, "content": m.content} for m in self.messages),
        ]


# --- Persisted entities ---


@dataclass
class Chat:
    id: int
    card: CardData
    persona: PersonaData
    created_at: str


@dataclass
class Candidate:
    """Alternative reply text for a character message."""

    id: int
    message_id: int
    text: str
    inserted_at: str = ""


@dataclass
class Message:
    """One conversational turn.

    prime_text is the prime candidate's text, joined in by storage whenever
    prime_candidate_id is set.
    """

    id: int
    chat_id: int
    sender: Sender
    text: str
    inserted_at: str = ""
    prime_candidate_id: int | None = None
    prime_text: str | None = None
    candidates: list[Candidate] = field(default_factory=list)

    @property
    def canonical_text(self) -> str:
        if self.prime_candidate_id is not None and self.prime_text is not None:
            return self.prime_text
        return self.text

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "sender": self.sender.value,
            "text": self.text,
            "canonical_text": self.canonical_text,
            "inserted_at": self.inserted_at,
            "prime_candidate_id": self.prime_candidate_id,
            "candidates": [
                {"id": c.id, "text": c.text, "inserted_at": c.inserted_at}
                for c in self.candidates
            ],
        }
