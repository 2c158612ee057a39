"""Conversation history and per-user assistant settings.

Every query is scoped to the calling user; a session id that exists but
belongs to someone else behaves exactly like one that does not exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update

from src.db.connection import Database
from src.db.models import ChatMessage, ChatSession, UserSettings
from src.prompts import DEFAULT_ASSISTANT_NAME, DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50
PREVIEW_LENGTH = 100


def title_from_message(message: str) -> str:
    """First 50 characters of the opening message, with an ellipsis if cut."""
    return message[:TITLE_LENGTH] + ("..." if len(message) > TITLE_LENGTH else "")


def _preview(content: str | None) -> str | None:
    if content is None:
        return None
    return content[:PREVIEW_LENGTH] + ("..." if len(content) > PREVIEW_LENGTH else "")


# ── Views ───────────────────────────────────────────────────────────

@dataclass
class StoredMessage:
    id: str
    role: str
    content: str
    tokens_in: int | None
    tokens_out: int | None
    tools_used: list[str] | None
    created_at: datetime


@dataclass
class SessionSummary:
    id: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    last_message_preview: str | None = None
    last_message_at: datetime | None = None


@dataclass
class SessionDetail:
    id: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    messages: list[StoredMessage] = field(default_factory=list)


@dataclass
class AssistantSettings:
    assistant_name: str = DEFAULT_ASSISTANT_NAME
    assistant_personality: str | None = None
    timezone: str = DEFAULT_TIMEZONE


# ── Sessions ────────────────────────────────────────────────────────

class SessionStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_session(self, user_id: str, first_message: str | None = None) -> str:
        """Create a session and return its id."""
        async with self._db.session() as session:
            row = ChatSession(
                user_id=user_id,
                title=title_from_message(first_message) if first_message else None,
            )
            session.add(row)
            await session.flush()
            session_id = row.id
        logger.info("Created chat session %s for user %s", session_id, user_id)
        return session_id

    async def is_owned(self, user_id: str, session_id: str) -> bool:
        async with self._db.session() as session:
            found = await session.scalar(
                select(ChatSession.id).where(
                    ChatSession.id == session_id, ChatSession.user_id == user_id,
                )
            )
        return found is not None

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        tokens_in: int | None = None,
        tokens_out: int | None = None,
        tools_used: list[str] | None = None,
    ) -> str:
        async with self._db.session() as session:
            row = ChatMessage(
                session_id=session_id,
                role=role,
                content=content,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                tools_used=tools_used or None,
            )
            session.add(row)
            await session.flush()
            return row.id

    async def touch(self, session_id: str) -> None:
        async with self._db.session() as session:
            await session.execute(
                update(ChatSession)
                .where(ChatSession.id == session_id)
                .values(updated_at=datetime.now(UTC))
            )

    async def list_sessions(self, user_id: str) -> list[SessionSummary]:
        """The user's sessions, most recently active first."""
        async with self._db.session() as session:
            rows = (
                await session.scalars(
                    select(ChatSession)
                    .where(ChatSession.user_id == user_id)
                    .order_by(ChatSession.updated_at.desc())
                )
            ).all()

            summaries = []
            for row in rows:
                count = await session.scalar(
                    select(func.count(ChatMessage.id)).where(ChatMessage.session_id == row.id)
                )
                last = (
                    await session.execute(
                        select(ChatMessage.content, ChatMessage.created_at)
                        .where(ChatMessage.session_id == row.id)
                        .order_by(ChatMessage.created_at.desc())
                        .limit(1)
                    )
                ).first()
                summaries.append(
                    SessionSummary(
                        id=row.id,
                        title=row.title,
                        created_at=row.created_at,
                        updated_at=row.updated_at,
                        message_count=count or 0,
                        last_message_preview=_preview(last.content) if last else None,
                        last_message_at=last.created_at if last else None,
                    )
                )
        return summaries

    async def get_session(self, user_id: str, session_id: str) -> SessionDetail | None:
        async with self._db.session() as session:
            row = await session.scalar(
                select(ChatSession).where(
                    ChatSession.id == session_id, ChatSession.user_id == user_id,
                )
            )
            if row is None:
                return None
            messages = (
                await session.scalars(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == session_id)
                    .order_by(ChatMessage.created_at)
                )
            ).all()
            return SessionDetail(
                id=row.id,
                title=row.title,
                created_at=row.created_at,
                updated_at=row.updated_at,
                messages=[
                    StoredMessage(
                        id=m.id,
                        role=m.role,
                        content=m.content,
                        tokens_in=m.tokens_in,
                        tokens_out=m.tokens_out,
                        tools_used=m.tools_used,
                        created_at=m.created_at,
                    )
                    for m in messages
                ],
            )

    async def rename_session(self, user_id: str, session_id: str, title: str) -> bool:
        async with self._db.session() as session:
            result = await session.execute(
                update(ChatSession)
                .where(ChatSession.id == session_id, ChatSession.user_id == user_id)
                .values(title=title, updated_at=datetime.now(UTC))
            )
            return bool(result.rowcount)

    async def delete_session(self, user_id: str, session_id: str) -> bool:
        """Delete a session and its messages.  Returns ``False`` if not found."""
        if not await self.is_owned(user_id, session_id):
            return False
        async with self._db.session() as session:
            await session.execute(delete(ChatMessage).where(ChatMessage.session_id == session_id))
            await session.execute(delete(ChatSession).where(ChatSession.id == session_id))
        logger.info("Deleted chat session %s for user %s", session_id, user_id)
        return True


# ── Settings ────────────────────────────────────────────────────────

class SettingsStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, user_id: str) -> AssistantSettings:
        """Stored settings, or the defaults for a user who never saved any."""
        async with self._db.session() as session:
            row = await session.get(UserSettings, user_id)
            if row is None:
                return AssistantSettings()
            return AssistantSettings(
                assistant_name=row.assistant_name or DEFAULT_ASSISTANT_NAME,
                assistant_personality=row.assistant_personality or None,
                timezone=row.timezone or DEFAULT_TIMEZONE,
            )

    async def save(self, user_id: str, settings: AssistantSettings) -> AssistantSettings:
        async with self._db.session() as session:
            row = await session.get(UserSettings, user_id)
            if row is None:
                row = UserSettings(user_id=user_id)
                session.add(row)
            row.assistant_name = settings.assistant_name
            row.assistant_personality = settings.assistant_personality or None
            row.timezone = settings.timezone
        return settings
