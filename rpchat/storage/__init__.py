"""Persistence for chats, messages and candidate replies."""

from rpchat.storage.sqlite import ChatStorage, chat_storage

__all__ = ["ChatStorage", "chat_storage"]
