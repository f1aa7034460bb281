"""FastAPI application – rpchat local roleplay chat service.

Serves the conversational core over HTTP for a local UI:
- chats: create / list / most recent / history
- generation: send, regenerate (one generation per chat at a time, 409 otherwise)
- branching edits: set/clear prime, edit, rewind, delete

Storage is a single SQLite file (settings.db_path); the model is any litellm
model string (settings.default_model).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rpchat.chat.router import router as chat_router
from rpchat.chat.service import chat_service
from rpchat.config import settings
from rpchat.logging_utils import HealthCheckAccessFilter, configure_logging
from rpchat.storage import chat_storage

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("rpchat starting on port %d (model=%s)", settings.port, settings.default_model)
    logging.getLogger("uvicorn.access").addFilter(HealthCheckAccessFilter())
    await chat_storage.init()
    yield
    await chat_storage.close()
    logger.info("rpchat stopped")


app = FastAPI(
    title="rpchat",
    description="Local roleplay chat: token-budgeted context, branching replies",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(chat_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "rpchat",
        "model": settings.default_model,
        "generating": sorted(chat_service.generating_chats()),
    }


def run() -> None:
    import uvicorn

    uvicorn.run(
        "rpchat.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
