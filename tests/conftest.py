import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPSTREAM_API_KEY", "test-key")
os.environ["LANGFUSE_PUBLIC_KEY"] = ""
os.environ["LANGFUSE_SECRET_KEY"] = ""

from typing import List, Optional, Sequence

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatstream.core.dependencies import get_completion_client, get_conversation_repository
from chatstream.main import app
from chatstream.models.base import Base
from chatstream.repositories.conversation_repository import ConversationRepository
from chatstream.services.completion_client import build_history
from chatstream.services.relay_service import ExchangeRelay
from chatstream.views.message import ChatMessage

SYSTEM_PROMPT = "You are a test assistant."


class ScriptedCompletionClient:
    """Stands in for the upstream provider with a fixed script of increments or failures."""

    def __init__(
        self,
        increments: Sequence[str] = (),
        reply: str = "",
        fail_before: Optional[Exception] = None,
        fail_after: Optional[Exception] = None,
    ):
        self.increments = list(increments)
        self.reply = reply
        self.fail_before = fail_before
        self.fail_after = fail_after
        self.histories: List[list] = []

    def build_history(self, messages: Sequence[ChatMessage]):
        return build_history(messages, SYSTEM_PROMPT)

    async def stream_completion(self, history):
        self.histories.append(history)
        if self.fail_before is not None:
            raise self.fail_before
        for increment in self.increments:
            yield increment
        if self.fail_after is not None:
            raise self.fail_after

    async def complete(self, history):
        self.histories.append(history)
        if self.fail_before is not None:
            raise self.fail_before
        return self.reply


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def repo(session_factory):
    return ConversationRepository(session_factory)


@pytest.fixture
def upstream():
    return ScriptedCompletionClient(increments=["Hello", ", ", "world"])


@pytest.fixture
def relay(repo, upstream):
    return ExchangeRelay(repo, upstream, mode="stream", word_delay=0)


@pytest.fixture
async def api(repo, upstream):
    app.dependency_overrides[get_conversation_repository] = lambda: repo
    app.dependency_overrides[get_completion_client] = lambda: upstream
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def collect(events):
    return [event async for event in events]
