"""Shared fixtures: in-memory database, auth overrides, fake provider."""

from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import update
from sqlalchemy.pool import StaticPool

from lovechat.api.v1 import chat as chat_api
from lovechat.crud.stream_record import stream_record_crud
from lovechat.crud.thread import thread_crud
from lovechat.database import get_chat_session, get_session_maker
from lovechat.main import app
from lovechat.models import Base, StreamRecord, StreamStatus
from lovechat.services.streaming import resume as resume_service
from lovechat.utils.auth import AuthUser, get_current_user, get_optional_user

USER = AuthUser(id="user-1", email="alice@example.com")
OTHER_USER = AuthUser(id="user-2", email="bob@example.com")

PROVIDER_HEADERS = {"X-OpenAI-API-Key": "sk-test"}


@pytest.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


class FakeAuth:
    """Switchable identity behind get_current_user / get_optional_user."""

    def __init__(self) -> None:
        self.user: Optional[AuthUser] = USER

    async def current(self) -> AuthUser:
        if self.user is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        return self.user

    async def optional(self) -> Optional[AuthUser]:
        return self.user


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


class FakeProvider:
    """Replays scripted events.

    An exception instance in the script is raised; an async callable is awaited
    between events (to change server state mid-generation).
    """

    def __init__(self) -> None:
        self.events: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, config, credential, messages):
        self.calls.append({"model": config.name, "credential": credential, "messages": messages})
        return self._replay()

    async def _replay(self):
        for event in self.events:
            if isinstance(event, BaseException):
                raise event
            if callable(event):
                await event()
                continue
            yield event


@pytest.fixture
def provider(monkeypatch) -> FakeProvider:
    fake = FakeProvider()
    monkeypatch.setattr(chat_api, "stream_completion", fake)
    monkeypatch.setattr(resume_service, "stream_completion", fake)
    return fake


def tokens(*chunks: str) -> List[Dict[str, Any]]:
    return [{"type": "token", "content": c} for c in chunks]


@pytest.fixture
async def client(session_maker, auth, provider) -> AsyncGenerator[AsyncClient, None]:
    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_chat_session] = override_session
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_current_user] = auth.current
    app.dependency_overrides[get_optional_user] = auth.optional
    app.dependency_overrides[chat_api.get_search_client] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


async def make_thread(db: AsyncSession, thread_id: str = "thread-1", user_id: str = USER.id):
    return await thread_crud.create(db, user_id, title="Test thread", thread_id=thread_id)


async def make_record(
    db: AsyncSession,
    thread_id: str = "thread-1",
    message_id: str = "msg-1",
    user_id: str = USER.id,
    status: str = StreamStatus.PAUSED.value,
    partial: str = "",
    continuation_prompt: Optional[str] = "Why is the sky blue?",
    model: str = "gpt-4o-mini",
):
    record = await stream_record_crud.create(
        db,
        thread_id,
        message_id,
        user_id,
        model,
        continuation_prompt=continuation_prompt,
        initial_content=partial,
    )
    if status != StreamStatus.STREAMING.value:
        await db.execute(
            update(StreamRecord).where(StreamRecord.id == record.id).values(status=status)
        )
        await db.commit()
    return record.id


async def fetch_record(session_maker: async_sessionmaker, stream_id: str) -> StreamRecord:
    async with session_maker() as session:
        return await stream_record_crud.get(session, stream_id)
