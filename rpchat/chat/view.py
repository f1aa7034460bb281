"""ConversationView — the caller's local copy of a chat, with optimistic turns.

Two-phase protocol around a provider call:

    pending = view.begin(text)        # show the user turn immediately, clear input
    ...provider call + persist...
    view.commit(pending, user, reply) # replace the pending turn with the persisted pair
    # or, on any failure:
    view.retract(pending)             # remove the pending turn, restore the input

Retract is mandatory on failure; nothing the user typed is lost.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from rpchat.models import Message, Sender


@dataclass
class TurnView:
    """One rendered turn. message_id is None while the turn is pending."""
    sender: Sender
    text: str
    message_id: int | None = None
    pending: bool = False


@dataclass
class PendingTurn:
    token: str
    text: str


@dataclass
class ConversationView:
    chat_id: int
    turns: list[TurnView] = field(default_factory=list)
    draft: str = ""
    _pending: dict[str, TurnView] = field(default_factory=dict, repr=False)

    @classmethod
    def from_history(cls, chat_id: int, history: list[Message]) -> "ConversationView":
        return cls(
            chat_id=chat_id,
            turns=[TurnView(sender=m.sender, text=m.canonical_text, message_id=m.id) for m in history],
        )

    @property
    def has_pending(self) -> bool:
        return any(t.pending for t in self.turns)

    def begin(self, text: str) -> PendingTurn:
        """Tentatively show a user turn before the provider replies."""
        pending = PendingTurn(token=uuid.uuid4().hex, text=text)
        turn = TurnView(sender=Sender.USER, text=text, pending=True)
        self.turns.append(turn)
        self._pending[pending.token] = turn
        self.draft = ""
        return pending

    def commit(self, pending: PendingTurn, user: Message, reply: Message) -> None:
        """Replace the pending turn with the persisted user/character pair."""
        index = self._take(pending)
        self.turns[index:index + 1] = [
            TurnView(sender=user.sender, text=user.canonical_text, message_id=user.id),
            TurnView(sender=reply.sender, text=reply.canonical_text, message_id=reply.id),
        ]

    def retract(self, pending: PendingTurn) -> None:
        """Remove the pending turn and give the text back to the input box."""
        index = self._take(pending)
        del self.turns[index]
        self.draft = pending.text

    def replace_text(self, message_id: int, text: str) -> None:
        for turn in self.turns:
            if turn.message_id == message_id:
                turn.text = text

    def truncate_after(self, message_id: int) -> None:
        self.turns = [t for t in self.turns if t.message_id is None or t.message_id <= message_id]

    def remove(self, message_id: int) -> None:
        self.turns = [t for t in self.turns if t.message_id != message_id]

    def _take(self, pending: PendingTurn) -> int:
        """Position of the pending turn; KeyError once committed or retracted."""
        turn = self._pending.pop(pending.token)
        return next(i for i, t in enumerate(self.turns) if t is turn)
