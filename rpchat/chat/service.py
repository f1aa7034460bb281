"""ChatService — branching message model operations.

send / regenerate call the provider; everything else is a single storage
statement or transaction. A chat has at most one generation in flight: a
second send or regenerate for the same chat returns None instead of queueing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rpchat.chat.context import ChatContextAssembler, ContextParams
from rpchat.chat.view import ConversationView
from rpchat.config import settings
from rpchat.errors import ChatNotFoundError, InvalidReferenceError
from rpchat.llm.provider import LLMProvider, llm_provider
from rpchat.models import Chat, Context, Message, Sender, TargetKind
from rpchat.storage import ChatStorage, chat_storage

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    user: Message
    reply: Message


@dataclass
class RegenerateResult:
    message: Message
    candidate_id: int


class ChatService:
    """Usage:
        service = ChatService(chat_storage, llm_provider)
        result = await service.send(chat_id, "Hello")
        if result is None:
            ...  # a generation for this chat is already running
    """

    def __init__(
        self,
        storage: ChatStorage,
        provider: LLMProvider,
        assembler: ChatContextAssembler | None = None,
    ) -> None:
        self._storage = storage
        self._provider = provider
        self._assembler = assembler or ChatContextAssembler(storage)
        self._generating: set[int] = set()

    def is_generating(self, chat_id: int) -> bool:
        return chat_id in self._generating

    def generating_chats(self) -> set[int]:
        return set(self._generating)

    # ------------------------------------------------------------------
    # Generation guard
    # ------------------------------------------------------------------

    def _try_acquire(self, chat_id: int, operation: str) -> bool:
        # No await between check and add: atomic on the event loop
        if chat_id in self._generating:
            logger.info("GENERATION_SKIPPED | chatId=%s | op=%s | reason=in_flight", chat_id, operation)
            return False
        self._generating.add(chat_id)
        return True

    def _release(self, chat_id: int) -> None:
        self._generating.discard(chat_id)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def _require_chat(self, chat_id: int) -> Chat:
        chat = await self._storage.get_chat(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def _build_context(self, chat: Chat, text: str, before_id: int | None = None) -> Context:
        params = ContextParams(
            chat_id=chat.id,
            latest_user_message=text,
            card=chat.card,
            persona=chat.persona,
            model=settings.default_model,
            token_limit=settings.token_limit,
            jailbreak=settings.jailbreak,
            variant=settings.prompt_variant,
            before_id=before_id,
        )
        return await self._assembler.get_context(params)

    async def preview_context(self, chat_id: int, text: str) -> Context:
        """The context a send of `text` would use right now. No provider call."""
        chat = await self._require_chat(chat_id)
        return await self._build_context(chat, text)

    # ------------------------------------------------------------------
    # Send / regenerate
    # ------------------------------------------------------------------

    async def send(
        self, chat_id: int, text: str, view: ConversationView | None = None,
    ) -> SendResult | None:
        """Generate a reply to `text` and persist the user/character pair.

        Nothing is persisted unless the provider replied. With a view, the
        user turn is shown as pending first and retracted on any failure.
        """
        if not self._try_acquire(chat_id, "send"):
            return None

        pending = view.begin(text) if view is not None else None
        try:
            chat = await self._require_chat(chat_id)
            context = await self._build_context(chat, text)
            reply_text = await self._provider.generate(
                context.system, context.messages, model=settings.default_model,
            )
            user_id, reply_id = await self._storage.insert_pair(chat_id, text, reply_text)
            user = await self._storage.get_message(user_id)
            reply = await self._storage.get_message(reply_id)
        except BaseException:
            if pending is not None:
                view.retract(pending)
            raise
        finally:
            self._release(chat_id)

        if pending is not None:
            view.commit(pending, user, reply)
        logger.info("CHAT_SEND | chatId=%s | userId=%d | replyId=%d", chat_id, user_id, reply_id)
        return SendResult(user=user, reply=reply)

    async def regenerate(
        self, message_id: int, view: ConversationView | None = None,
    ) -> RegenerateResult | None:
        """New candidate for a character message, made prime atomically.

        The context is the message's own turn: the nearest preceding user
        message is the latest utterance and only history before it is used.
        """
        message = await self._storage.get_message(message_id)
        if message is None:
            raise InvalidReferenceError(f"Message not found: {message_id}")
        if message.sender is not Sender.CHARACTER:
            raise InvalidReferenceError(f"Only character messages can be regenerated: {message_id}")

        chat_id = message.chat_id
        if not self._try_acquire(chat_id, "regenerate"):
            return None

        try:
            chat = await self._require_chat(chat_id)
            user_turn = await self._storage.find_user_turn_before(chat_id, message_id)
            if user_turn is None:
                raise InvalidReferenceError(f"No user turn precedes message {message_id}")

            context = await self._build_context(chat, user_turn.canonical_text, before_id=user_turn.id)
            reply_text = await self._provider.regenerate(
                context.system, context.messages, model=settings.default_model,
            )
            candidate_id = await self._storage.insert_candidate(message_id, reply_text, set_prime=True)
            updated = await self._storage.get_message(message_id)
        finally:
            self._release(chat_id)

        if view is not None:
            view.replace_text(message_id, updated.canonical_text)
        logger.info(
            "CHAT_REGENERATE | chatId=%s | messageId=%d | candidateId=%d | candidates=%d",
            chat_id, message_id, candidate_id, len(updated.candidates),
        )
        return RegenerateResult(message=updated, candidate_id=candidate_id)

    # ------------------------------------------------------------------
    # Structural operations
    # ------------------------------------------------------------------

    async def set_prime(self, message_id: int, candidate_id: int) -> Message:
        if not await self._storage.set_prime(message_id, candidate_id):
            raise InvalidReferenceError(
                f"Candidate {candidate_id} does not belong to message {message_id}"
            )
        logger.info("PRIME_SET | messageId=%d | candidateId=%d", message_id, candidate_id)
        return await self._storage.get_message(message_id)

    async def clear_prime(self, message_id: int) -> Message:
        if not await self._storage.clear_prime(message_id):
            raise InvalidReferenceError(f"Message not found: {message_id}")
        logger.info("PRIME_CLEARED | messageId=%d", message_id)
        return await self._storage.get_message(message_id)

    async def edit(
        self,
        text: str,
        *,
        message_id: int | None = None,
        candidate_id: int | None = None,
    ) -> None:
        """Overwrite the text of exactly one message or candidate."""
        if (message_id is None) == (candidate_id is None):
            raise InvalidReferenceError("Edit needs exactly one of message_id or candidate_id")

        if message_id is not None:
            kind, target_id = TargetKind.MESSAGE, message_id
        else:
            kind, target_id = TargetKind.CANDIDATE, candidate_id

        if not await self._storage.update_text(kind, target_id, text):
            raise InvalidReferenceError(f"{kind.value.capitalize()} not found: {target_id}")
        logger.info("EDIT | target=%s | id=%d | chars=%d", kind.value, target_id, len(text))

    async def rewind(self, chat_id: int, message_id: int) -> int:
        """Delete every message after `message_id`; returns how many were removed."""
        if not await self._storage.chat_exists(chat_id):
            raise ChatNotFoundError(chat_id)
        message = await self._storage.get_message(message_id)
        if message is None or message.chat_id != chat_id:
            raise InvalidReferenceError(f"Message {message_id} is not part of chat {chat_id}")

        deleted = await self._storage.delete_after(chat_id, message_id)
        logger.info("REWIND | chatId=%s | toMessageId=%d | deleted=%d", chat_id, message_id, deleted)
        return deleted

    async def delete(self, message_id: int) -> None:
        if not await self._storage.delete_message(message_id):
            raise InvalidReferenceError(f"Message not found: {message_id}")
        logger.info("MESSAGE_DELETED | messageId=%d", message_id)


# Singleton
chat_service = ChatService(chat_storage, llm_provider)
