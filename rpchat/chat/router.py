"""Chat API endpoints — FastAPI router.

Endpoints:
- POST   /chats                      → create chat (card + persona, greeting as first turn)
- GET    /chats                      → list chats, most recent activity first
- GET    /chats/recent               → id of the most recently active chat
- GET    /chats/{chat_id}/messages   → full history with candidates
- POST   /chats/{chat_id}/messages   → send (409 while a generation is running)
- POST   /chats/{chat_id}/context    → context preview, no provider call
- POST   /chats/{chat_id}/rewind     → delete everything after a message
- POST   /messages/{id}/regenerate   → new prime candidate (409 while running)
- PUT    /messages/{id}/prime        → set prime candidate
- DELETE /messages/{id}/prime        → back to the message's own text
- POST   /edit                       → edit one message or candidate
- DELETE /messages/{id}              → delete one message
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from rpchat.chat.models import (
    ContextPreviewRequest,
    CreateChatRequest,
    EditRequest,
    RewindRequest,
    SendRequest,
    SetPrimeRequest,
)
from rpchat.chat.service import chat_service
from rpchat.errors import (
    BudgetExceededError,
    ChatNotFoundError,
    InvalidReferenceError,
    ProviderError,
    UnsupportedTemplateVariantError,
)
from rpchat.models import Chat
from rpchat.storage import chat_storage

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: Exception, what: str) -> HTTPException:
    """Map a core error to an HTTP status. Unknown errors are logged with traceback."""
    if isinstance(e, BudgetExceededError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, ChatNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidReferenceError, UnsupportedTemplateVariantError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ProviderError):
        logger.warning("%s failed: %s", what, e)
        return HTTPException(status_code=502, detail=str(e))
    logger.exception("%s failed", what)
    return HTTPException(status_code=500, detail=str(e))


def _in_flight(chat_id: int) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"success": False, "detail": f"Generation already running for chat {chat_id}"},
    )


def _chat_summary(chat: Chat) -> dict:
    return {
        "id": chat.id,
        "character": chat.card.character.name,
        "persona": chat.persona.name,
        "created_at": chat.created_at,
    }


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------

@router.post("/chats")
async def create_chat(request: CreateChatRequest):
    try:
        chat = await chat_storage.create_chat(request.card, request.persona)
    except Exception as e:
        raise _http_error(e, "Create chat")
    return _chat_summary(chat)


@router.get("/chats")
async def list_chats(limit: int = 50):
    try:
        chats = await chat_storage.list_chats(limit=limit)
    except Exception as e:
        raise _http_error(e, "List chats")
    return {"chats": [_chat_summary(c) for c in chats]}


@router.get("/chats/recent")
async def most_recent_chat():
    try:
        chat_id = await chat_storage.get_most_recent_chat()
    except Exception as e:
        raise _http_error(e, "Most recent chat")
    return {"chat_id": chat_id}


@router.get("/chats/{chat_id}/messages")
async def get_history(chat_id: int):
    try:
        if not await chat_storage.chat_exists(chat_id):
            raise ChatNotFoundError(chat_id)
        messages = await chat_storage.get_history(chat_id)
    except Exception as e:
        raise _http_error(e, f"History of chat {chat_id}")
    return {"chat_id": chat_id, "messages": [m.to_dict() for m in messages]}


@router.post("/chats/{chat_id}/context")
async def preview_context(chat_id: int, request: ContextPreviewRequest):
    try:
        context = await chat_service.preview_context(chat_id, request.text)
    except Exception as e:
        raise _http_error(e, f"Context preview for chat {chat_id}")
    return {
        "system": context.system,
        "messages": [m.model_dump(mode="json") for m in context.messages],
    }


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@router.post("/chats/{chat_id}/messages")
async def send_message(chat_id: int, request: SendRequest):
    try:
        result = await chat_service.send(chat_id, request.text)
    except Exception as e:
        raise _http_error(e, f"Send to chat {chat_id}")

    if result is None:
        return _in_flight(chat_id)
    return {
        "success": True,
        "user": result.user.to_dict(),
        "reply": result.reply.to_dict(),
    }


@router.post("/messages/{message_id}/regenerate")
async def regenerate(message_id: int):
    try:
        message = await chat_storage.get_message(message_id)
        result = await chat_service.regenerate(message_id)
    except Exception as e:
        raise _http_error(e, f"Regenerate message {message_id}")

    if result is None:
        return _in_flight(message.chat_id)
    return {
        "success": True,
        "candidate_id": result.candidate_id,
        "message": result.message.to_dict(),
    }


# ---------------------------------------------------------------------------
# Structural operations
# ---------------------------------------------------------------------------

@router.put("/messages/{message_id}/prime")
async def set_prime(message_id: int, request: SetPrimeRequest):
    try:
        message = await chat_service.set_prime(message_id, request.candidate_id)
    except Exception as e:
        raise _http_error(e, f"Set prime of message {message_id}")
    return message.to_dict()


@router.delete("/messages/{message_id}/prime")
async def clear_prime(message_id: int):
    try:
        message = await chat_service.clear_prime(message_id)
    except Exception as e:
        raise _http_error(e, f"Clear prime of message {message_id}")
    return message.to_dict()


@router.post("/edit")
async def edit(request: EditRequest):
    try:
        await chat_service.edit(
            request.text,
            message_id=request.message_id,
            candidate_id=request.candidate_id,
        )
    except Exception as e:
        raise _http_error(e, "Edit")
    return {"success": True}


@router.post("/chats/{chat_id}/rewind")
async def rewind(chat_id: int, request: RewindRequest):
    try:
        deleted = await chat_service.rewind(chat_id, request.message_id)
    except Exception as e:
        raise _http_error(e, f"Rewind chat {chat_id}")
    return {"success": True, "deleted": deleted}


@router.delete("/messages/{message_id}")
async def delete_message(message_id: int):
    try:
        await chat_service.delete(message_id)
    except Exception as e:
        raise _http_error(e, f"Delete message {message_id}")
    return {"success": True}
