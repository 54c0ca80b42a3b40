"""Shared fixtures: a throwaway database, the HTTP client and in-memory fakes."""

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  (registers tables on Base.metadata)
from app.adapters.base import GenerationService, Transport
from app.database import Base, get_db
from app.main import app
from app.schemas.chat import Message
from app.services.repository import ConversationRepository

# ── Database ─────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncIterator[AsyncClient]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def repository(session_factory) -> ConversationRepository:
    return ConversationRepository(session_factory)


# ── Fakes ────────────────────────────────────────────────────────────


class MemoryRepository:
    """In-memory stand-in for :class:`ConversationRepository`."""

    def __init__(self) -> None:
        self.conversations: dict[str, list[Message]] = {}
        self.confirmations: dict[tuple[str, str], dict[str, Any]] = {}

    async def create_conversation(self, *, user_id, organization_id, agent_id, model) -> str:
        conversation_id = f"conv-{len(self.conversations) + 1}"
        self.conversations[conversation_id] = []
        return conversation_id

    async def conversation_exists(self, conversation_id: str) -> bool:
        return conversation_id in self.conversations

    async def append_message(self, conversation_id: str, message: Message) -> None:
        log = self.conversations.setdefault(conversation_id, [])
        for i, existing in enumerate(log):
            if existing.id == message.id:
                log[i] = message.model_copy(deep=True)
                return
        log.append(message.model_copy(deep=True))

    async def load_messages(self, conversation_id: str) -> list[Message]:
        return [m.model_copy(deep=True) for m in self.conversations.get(conversation_id, [])]

    async def record_confirmation(self, conversation_id, message_id, pending) -> None:
        self.confirmations.setdefault(
            (conversation_id, pending.tool_call_id),
            {"conversation_id": conversation_id, "pending": pending, "status": "pending"},
        )

    async def resolve_confirmation(self, conversation_id, tool_call_id, result):
        entry = self.confirmations.get((conversation_id, tool_call_id))
        if not entry or entry["status"] != "pending":
            return None
        entry["status"] = "resolved"
        entry["result"] = result
        return entry["pending"]

    async def count_pending(self, conversation_id: str) -> int:
        return sum(
            1
            for entry in self.confirmations.values()
            if entry["conversation_id"] == conversation_id and entry["status"] == "pending"
        )


class ScriptedGenerator(GenerationService):
    """Plays back one event script per ``generate`` call."""

    def __init__(self, scripts: list[list[dict[str, Any]]], artifact_chunks: list[str] | None = None):
        self.scripts = list(scripts)
        self.artifact_chunks = artifact_chunks or ["# Title\n", "body\n"]
        self.artifact_error: Exception | None = None
        self.calls: list[list[dict[str, Any]]] = []

    async def generate(self, messages, *, model):
        self.calls.append(messages)
        script = self.scripts.pop(0) if self.scripts else [{"type": "finish", "finishReason": "stop"}]
        for event in script:
            if isinstance(event, Exception):
                raise event
            yield event

    async def generate_artifact(self, *, title, kind, description, model):
        for chunk in self.artifact_chunks:
            yield chunk
        if self.artifact_error:
            raise self.artifact_error


class FakeTransport(Transport):
    def __init__(self, **callbacks) -> None:
        super().__init__(**callbacks)
        self.opened = False
        self.closed = False
        self.sent: list[str] = []

    def open(self) -> None:
        self.opened = True

    def send(self, data: str) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def fire(self) -> None:
        timer = self.timers[-1]
        assert not timer.cancelled
        timer.callback()


class TransportRecorder:
    """Transport factory that keeps every transport it builds."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []

    def __call__(self, **callbacks) -> FakeTransport:
        transport = FakeTransport(**callbacks)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def memory_repository() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture
def transports() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()
