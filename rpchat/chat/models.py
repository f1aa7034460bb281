"""Request models for the chat API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from rpchat.models import CardData, PersonaData


class CreateChatRequest(BaseModel):
    card: CardData
    persona: PersonaData


class SendRequest(BaseModel):
    text: str = Field(min_length=1)


class ContextPreviewRequest(BaseModel):
    text: str


class RewindRequest(BaseModel):
    message_id: int


class SetPrimeRequest(BaseModel):
    candidate_id: int


class EditRequest(BaseModel):
    """Exactly one of message_id / candidate_id; checked by the service."""

    text: str
    message_id: int | None = None
    candidate_id: int | None = None
