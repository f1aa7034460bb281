"""ChatContextAssembler — builds the token-budgeted provider context for a chat.

Pipeline for one provider call:
1. render system prompt (card + persona + character memory + jailbreak)
2. budget: token_limit - tokens(system) - tokens(latest user message)
   fail fast with BudgetExceededError when fewer than MIN_HISTORY_TOKENS remain
3. page backwards through history (newest first) until the budget is full
4. normalize roles: leading user turn, trailing latest utterance, merge runs

The result is never cached; every call re-reads storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from rpchat.chat.system_prompt import render_card_prompt
from rpchat.errors import BudgetExceededError
from rpchat.llm.tokenizer import Tokenizer, get_tokenizer
from rpchat.models import (
    CardData,
    Context,
    Message,
    PersonaData,
    PromptVariant,
    ProviderMessage,
    Role,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Minimum tokens that must remain for history after system prompt + latest
# user message. Fixed policy, not part of Settings.
MIN_HISTORY_TOKENS = 300

HISTORY_PAGE_SIZE = 100

CONVERSATION_OPENER = "Now begin the conversation based on the given instructions above."


# ---------------------------------------------------------------------------
# Collaborator seams
# ---------------------------------------------------------------------------

class HistoryPageSource(Protocol):
    async def fetch_before(
        self, chat_id: int, limit: int, before_id: int | None = None,
    ) -> list[Message]: ...


class CharacterMemory(Protocol):
    """Long-term memory of a character, rendered into the system prompt."""

    async def recall(self, chat_id: int) -> str: ...


class NoCharacterMemory:
    """Default memory: nothing recalled. Summarization is not implemented."""

    async def recall(self, chat_id: int) -> str:
        return ""


@dataclass
class ContextParams:
    chat_id: int
    latest_user_message: str
    card: CardData
    persona: PersonaData
    model: str
    token_limit: int
    jailbreak: str = ""
    variant: PromptVariant | str = PromptVariant.MARKDOWN
    # Only history strictly older than this id is considered (regenerate)
    before_id: int | None = None


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

def allocate_history_budget(system_tokens: int, user_tokens: int, token_limit: int) -> int:
    """Tokens left for history, or BudgetExceededError if below MIN_HISTORY_TOKENS."""
    remaining = token_limit - (system_tokens + user_tokens)
    if remaining < MIN_HISTORY_TOKENS:
        raise BudgetExceededError(remaining, token_limit, MIN_HISTORY_TOKENS)
    return remaining


# ---------------------------------------------------------------------------
# Sliding window
# ---------------------------------------------------------------------------

async def fetch_history_window(
    source: HistoryPageSource,
    chat_id: int,
    budget: int,
    tokenizer: Tokenizer,
    *,
    before_id: int | None = None,
    page_size: int = HISTORY_PAGE_SIZE,
) -> tuple[list[Message], int]:
    """Greedy most-recent-first packing of history into `budget` tokens.

    Pages are requested one after another (the cursor of page N is the oldest
    message accepted from page N-1). The first message that does not fit ends
    the whole fetch, so the window is always a contiguous newest suffix.

    Returns (messages in chronological order, tokens used).
    """
    window: list[Message] = []
    used = 0
    cursor = before_id

    while used < budget:
        page = await source.fetch_before(chat_id, page_size, cursor)
        if not page:
            break

        overflow = False
        for message in page:
            tokens = tokenizer.count_tokens(message.canonical_text)
            if used + tokens > budget:
                overflow = True
                break
            window.append(message)
            used += tokens
            cursor = message.id

        if overflow:
            break

    window.reverse()
    return window, used


# ---------------------------------------------------------------------------
# Role alternation
# ---------------------------------------------------------------------------

def to_provider_messages(history: list[Message], latest_user_message: str) -> list[ProviderMessage]:
    """Chronological history + latest utterance -> strictly alternating user/assistant list."""
    messages = [ProviderMessage.from_sender(m.sender, m.canonical_text) for m in history]

    if messages and messages[0].role is Role.ASSISTANT:
        messages.insert(0, ProviderMessage(role=Role.USER, content=CONVERSATION_OPENER))

    messages.append(ProviderMessage(role=Role.USER, content=latest_user_message))
    return merge_consecutive_roles(messages)


def merge_consecutive_roles(messages: list[ProviderMessage]) -> list[ProviderMessage]:
    """Merge runs of same-role messages (newline-joined) in one forward pass.

    user / user / assistant / assistant / user -> user / assistant / user.
    Idempotent; relative order of all content is preserved.
    """
    merged: list[ProviderMessage] = []
    for message in messages:
        if merged and merged[-1].role is message.role:
            last = merged[-1]
            merged[-1] = ProviderMessage(role=last.role, content=f"{last.content}\n{message.content}")
        else:
            merged.append(message)
    return merged


# ---------------------------------------------------------------------------
# ChatContextAssembler
# ---------------------------------------------------------------------------

class ChatContextAssembler:
    """Builds the Context for one provider call.

    Usage:
        assembler = ChatContextAssembler(chat_storage)
        context = await assembler.get_context(params)
    """

    def __init__(
        self,
        source: HistoryPageSource,
        *,
        tokenizer_factory: Callable[[str], Tokenizer] = get_tokenizer,
        character_memory: CharacterMemory | None = None,
    ) -> None:
        self._source = source
        self._tokenizer_factory = tokenizer_factory
        self._character_memory = character_memory or NoCharacterMemory()

    async def get_context(self, params: ContextParams) -> Context:
        memory = await self._character_memory.recall(params.chat_id)
        system = render_card_prompt(
            params.card,
            params.persona,
            params.jailbreak,
            character_memory=memory,
            variant=params.variant,
        )

        tokenizer = self._tokenizer_factory(params.model)
        system_tokens = tokenizer.count_tokens(system)
        user_tokens = tokenizer.count_tokens(params.latest_user_message)
        try:
            budget = allocate_history_budget(system_tokens, user_tokens, params.token_limit)
        except BudgetExceededError as e:
            logger.warning(
                "CONTEXT_BUDGET_EXCEEDED | chatId=%s | system=%d | user=%d | limit=%d | remaining=%d",
                params.chat_id, system_tokens, user_tokens, params.token_limit, e.remaining,
            )
            raise

        history, history_tokens = await fetch_history_window(
            self._source,
            params.chat_id,
            budget,
            tokenizer,
            before_id=params.before_id,
        )
        messages = to_provider_messages(history, params.latest_user_message)

        logger.info(
            "CONTEXT_ASSEMBLED | chatId=%s | history=%d | providerMessages=%d "
            "| tokens=%d/%d (system=%d, user=%d, history=%d)",
            params.chat_id, len(history), len(messages),
            system_tokens + user_tokens + history_tokens, params.token_limit,
            system_tokens, user_tokens, history_tokens,
        )
        return Context(system=system, messages=messages)
