"""Shared test fixtures for the Chief of Staff test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from itertools import count
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from langchain_core.messages import AIMessage


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-456")
    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    os.environ.setdefault("METRICS_ENABLED", "false")


# ── Fake completion client ───────────────────────────────────────────


class ScriptedLLM:
    """Stands in for ChatAnthropic: ``bind_tools`` + async ``ainvoke``.

    ``respond(call_number, messages)`` builds each response so every call
    returns a fresh AIMessage.
    """

    def __init__(self, respond: Callable[[int, list], AIMessage]):
        self._respond = respond
        self.calls: list[list] = []
        self.bound_tools: list[dict[str, Any]] | None = None

    def bind_tools(self, tools):
        self.bound_tools = list(tools)
        return self

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        return self._respond(len(self.calls), messages)


@pytest.fixture
def scripted_llm():
    """Factory: ``scripted_llm(lambda n, msgs: ...)`` -> ScriptedLLM."""
    return ScriptedLLM


@pytest.fixture
def ai_tool_calls():
    """Factory for an AIMessage requesting ``(name, args)`` tool calls."""
    ids = count(1)

    def _make(*calls: tuple[str, dict], text: str = "") -> AIMessage:
        return AIMessage(
            content=text,
            tool_calls=[
                {"name": name, "args": args, "id": f"toolu_{next(ids)}"}
                for name, args in calls
            ],
            usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        )

    return _make


@pytest.fixture
def ai_text():
    """Factory for a final text AIMessage."""

    def _make(text: str) -> AIMessage:
        return AIMessage(
            content=text,
            usage_metadata={"input_tokens": 20, "output_tokens": 8, "total_tokens": 28},
        )

    return _make


# ── Storage ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db():
    """A fresh in-memory database with all tables created."""
    from src.db.connection import Database

    database = Database("sqlite+aiosqlite:///:memory:")
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def credentials(db):
    from src.services.credentials import CredentialStore

    return CredentialStore(db)


@pytest.fixture
def sessions(db):
    from src.services.session_store import SessionStore

    return SessionStore(db)


@pytest.fixture
def settings_store(db):
    from src.services.session_store import SettingsStore

    return SettingsStore(db)


# ── Tool context ─────────────────────────────────────────────────────


@pytest.fixture
def mock_tokens():
    """A TokenStore stand-in that hands out ``test-token`` for every provider."""
    tokens = MagicMock()
    tokens.get_valid_access_token = AsyncMock(return_value="test-token")
    return tokens


@pytest.fixture
def make_context(mock_tokens):
    """Factory for a ToolContext whose HTTP calls go to *handler*."""
    import httpx

    from src.tools.registry import ToolContext

    def _make(handler=None, tokens=None):
        transport = httpx.MockTransport(handler or (lambda request: httpx.Response(404)))
        return ToolContext(
            user_id="user-1",
            tokens=tokens or mock_tokens,
            http=httpx.AsyncClient(transport=transport),
        )

    return _make
