"""
StudyVault Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the AI gateway test suite.
How:   A real AIStore on in-memory sqlite (aiosqlite + StaticPool) and a
       scripted vendor behind httpx.MockTransport, so adapters, registry,
       AIService and the chat controller run their real code paths
       without network access.

Fixture Hierarchy:
    engine ── session_factory ── store ──┐
    vendor ── http_client ───────────────┴── registry ── ai_service
    notifier ── error_handler ───────────────────────────┘
"""

import os

# Override settings BEFORE any studyvault import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["CHAT_RECONCILE_DELAYS"] = "[0, 0, 0]"

from typing import Any, Dict, List, Optional, Union

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from studyvault.database import create_tables
from studyvault.schemas.ai import ClassifiedError
from studyvault.services.ai_service import AIService
from studyvault.services.error_handler import AIErrorHandler, Notifier
from studyvault.services.registry import AIServiceRegistry
from studyvault.services.store import AIStore

OPENAI_KEY = "sk-" + "a" * 45
ANTHROPIC_KEY = "sk-ant-" + "b" * 40
GEMINI_KEY = "AIzaSy" + "c" * 33


# ══════════════════════════════════════════════════════════════════════════
# Vendor payload builders
# ══════════════════════════════════════════════════════════════════════════


def openai_reply(text: Optional[str], prompt_tokens: int = 12, completion_tokens: int = 8) -> httpx.Response:
    return httpx.Response(200, json={
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    })


def gemini_reply(text: Optional[str], prompt_tokens: int = 7, output_tokens: int = 3) -> httpx.Response:
    return httpx.Response(200, json={
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": output_tokens,
            "totalTokenCount": prompt_tokens + output_tokens,
        },
    })


def anthropic_reply(text: Optional[str], input_tokens: int = 9, output_tokens: int = 4) -> httpx.Response:
    return httpx.Response(200, json={
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    })


def vendor_error(status: int, message: Optional[str] = None) -> httpx.Response:
    if message is None:
        return httpx.Response(status, text="upstream failure")
    return httpx.Response(status, json={"error": {"message": message}})


class FakeVendor:
    """
    Scripted upstream for httpx.MockTransport.

    Queued items are served in order; an Exception item is raised instead
    of answered. With an empty queue every call gets `default`.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._queue: List[Union[httpx.Response, Exception]] = []
        self.default: Union[httpx.Response, Exception] = vendor_error(500, "nothing queued")

    def queue(self, *items: Union[httpx.Response, Exception]) -> None:
        self._queue.extend(items)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._queue.pop(0) if self._queue else self.default
        if isinstance(item, Exception):
            raise item
        # fresh copy so `default` can answer any number of calls
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    @property
    def calls(self) -> int:
        return len(self.requests)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.notifications: List[Dict[str, Any]] = []

    async def notify(self, template, error: ClassifiedError, context) -> None:
        self.notifications.append({"template": template, "error": error, "context": context})


async def no_sleep(_delay: float) -> None:
    return None


# ══════════════════════════════════════════════════════════════════════════
# Storage fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test; StaticPool keeps one shared connection."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> AIStore:
    return AIStore(session_factory)


# ══════════════════════════════════════════════════════════════════════════
# Vendor / service fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


@pytest_asyncio.fixture
async def http_client(vendor):
    async with httpx.AsyncClient(transport=httpx.MockTransport(vendor)) as client:
        yield client


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def error_handler(notifier) -> AIErrorHandler:
    return AIErrorHandler(notifier=notifier)


@pytest.fixture
def registry(store, http_client) -> AIServiceRegistry:
    return AIServiceRegistry(store, http_client)


@pytest.fixture
def ai_service(registry, error_handler, http_client) -> AIService:
    return AIService(
        registry,
        error_handler,
        http_client=http_client,
        max_attempts=3,
        base_delay=0.0,
        sleep=no_sleep,
    )


@pytest.fixture
def owner_id() -> str:
    return "user-123"


@pytest_asyncio.fixture
async def openai_owner(registry, owner_id) -> str:
    """An owner whose active provider is OpenAI (gpt-4o-mini)."""
    await registry.set_active_service(owner_id, "openai", api_key=OPENAI_KEY)
    return owner_id
