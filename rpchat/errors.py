"""Error types raised by the conversational context engine.

Storage errors (sqlite3 / aiosqlite) are not wrapped; they propagate to the
caller unchanged.
"""

from __future__ import annotations


class ChatEngineError(Exception):
    """Base class for errors raised by the chat core."""
    pass


class BudgetExceededError(ChatEngineError):
    """System prompt + latest user message leave too few tokens for history."""

    def __init__(self, remaining: int, token_limit: int, minimum: int):
        self.remaining = remaining
        self.token_limit = token_limit
        self.minimum = minimum
        super().__init__(
            f"System prompt and latest user message leave {remaining} of {token_limit} tokens "
            f"for the context window (minimum {minimum}). "
            "Reduce the size of the system prompt or the latest user message."
        )


class UnsupportedTemplateVariantError(ChatEngineError):
    """Rendering requested for a prompt variant with no implementation."""

    def __init__(self, variant: str):
        self.variant = variant
        super().__init__(f"Unsupported prompt template variant: {variant!r}")


class ProviderError(ChatEngineError):
    """Model provider failed (network, timeout, quota, malformed reply)."""
    pass


class InvalidReferenceError(ChatEngineError):
    """Operation references an entity that does not exist or does not fit."""
    pass


class ChatNotFoundError(InvalidReferenceError):
    """Chat id does not exist in storage."""

    def __init__(self, chat_id: int):
        self.chat_id = chat_id
        super().__init__(f"Chat not found: {chat_id}")
