"""Construction of the long-lived objects shared by the API and the CLI.

Everything is built once at startup and torn down with :func:`close`.  The
completion client is only created when ``ANTHROPIC_API_KEY`` is set;
without it the chat service reports "AI service not configured".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from langchain_core.language_models import BaseChatModel

from src import config
from src.agent import Orchestrator, build_llm
from src.db.connection import Database
from src.services.chat_service import ChatService
from src.services.credentials import CredentialStore
from src.services.http_client import create_http_client
from src.services.session_store import SessionStore, SettingsStore
from src.services.token_store import TokenStore
from src.tools.catalog import build_registry
from src.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Components:
    db: Database
    http: httpx.AsyncClient
    credentials: CredentialStore
    tokens: TokenStore
    sessions: SessionStore
    settings: SettingsStore
    registry: ToolRegistry
    orchestrator: Orchestrator | None
    chat: ChatService


async def build_components(
    *,
    database_url: str | None = None,
    llm: BaseChatModel | None = None,
    http: httpx.AsyncClient | None = None,
) -> Components:
    """Create and wire every shared resource.

    ``llm`` and ``http`` may be injected (tests); otherwise they come from
    configuration.
    """
    db = Database(database_url or config.DATABASE_URL)
    await db.create_all()

    http = http or create_http_client()
    credentials = CredentialStore(db)
    tokens = TokenStore(credentials, http)
    sessions = SessionStore(db)
    settings = SettingsStore(db)
    registry = build_registry()

    if llm is None and config.ANTHROPIC_API_KEY:
        llm = build_llm(config.ANTHROPIC_API_KEY)
    orchestrator = Orchestrator(llm, registry) if llm is not None else None
    if orchestrator is None:
        logger.warning("ANTHROPIC_API_KEY is not set; chat is disabled")

    chat = ChatService(
        orchestrator=orchestrator,
        sessions=sessions,
        settings=settings,
        tokens=tokens,
        http=http,
    )
    logger.info("Components ready (model=%s)", config.MODEL_NAME if orchestrator else "none")
    return Components(
        db=db,
        http=http,
        credentials=credentials,
        tokens=tokens,
        sessions=sessions,
        settings=settings,
        registry=registry,
        orchestrator=orchestrator,
        chat=chat,
    )


async def close(components: Components) -> None:
    await components.http.aclose()
    await components.db.dispose()
