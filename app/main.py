"""FastAPI application entrypoint."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db
from app.routers import chat, confirmations, conversations
from app.services.tools import registry

# ── Logging setup ────────────────────────────────────────────────────
_log_level = os.environ.get("CHATSYNC_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()
    logger.info(
        "Chat server ready (model %s, tools %s, confirmation required for %s)",
        settings.default_model,
        registry.names,
        settings.tools_requiring_confirmation,
    )
    yield


app = FastAPI(
    title="Agent Chat Sync",
    description="Streaming chat sessions with tool confirmation and artifacts",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(confirmations.router, prefix="/api/confirmations", tags=["confirmations"])


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "agent-chat-sync",
        "model": settings.default_model,
        "tools": registry.names,
    }
