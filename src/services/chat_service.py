"""One chat turn, end to end.

    settings → session → capabilities → tools + prompt → orchestrator
             → persist (best-effort) → response

Persistence of the finished exchange is deliberately best-effort: a
failed save is logged and the answer is still returned.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import httpx

from src.agent import ImageAttachment, OrchestrationResult, Orchestrator
from src.prompts import build_system_prompt
from src.services.session_store import SessionStore, SettingsStore
from src.services.token_store import TokenStore
from src.tools.capabilities import resolve_capabilities, summarize
from src.tools.registry import ToolContext

logger = logging.getLogger(__name__)


class ServiceNotConfiguredError(Exception):
    """No completion client is configured for this process."""


class SessionNotFoundError(Exception):
    """The session id does not exist or belongs to another user."""


@dataclass
class ChatTurn:
    message: str
    history: Sequence[dict[str, str]] = ()
    images: Sequence[ImageAttachment] = ()
    session_id: str | None = None


@dataclass
class ChatReply:
    content: str
    input_tokens: int
    output_tokens: int
    session_id: str
    tools_used: list[str] = field(default_factory=list)


class ChatService:
    def __init__(
        self,
        *,
        orchestrator: Orchestrator | None,
        sessions: SessionStore,
        settings: SettingsStore,
        tokens: TokenStore,
        http: httpx.AsyncClient,
    ) -> None:
        self._orchestrator = orchestrator
        self._sessions = sessions
        self._settings = settings
        self._tokens = tokens
        self._http = http

    async def handle_message(self, user_id: str, turn: ChatTurn) -> ChatReply:
        """Answer one user message.

        Raises:
            ServiceNotConfiguredError: no completion client.
            SessionNotFoundError: ``turn.session_id`` is not the caller's.
            CompletionServiceError: the completion call failed.
        """
        if self._orchestrator is None:
            raise ServiceNotConfiguredError("AI service not configured")

        settings = await self._settings.get(user_id)

        session_id = turn.session_id
        if session_id is None:
            session_id = await self._sessions.create_session(user_id, turn.message)
        elif not await self._sessions.is_owned(user_id, session_id):
            raise SessionNotFoundError(session_id)

        snapshot = await resolve_capabilities(user_id, self._tokens.credentials)
        tools = self._orchestrator.registry.list_tools(snapshot)
        system_prompt = build_system_prompt(
            settings.assistant_name,
            settings.assistant_personality,
            settings.timezone,
            summarize(snapshot),
        )
        logger.info(
            "Chat turn for user %s (session %s, %d tools visible)",
            user_id, session_id, len(tools),
        )

        result = await self._orchestrator.run(
            message=turn.message,
            history=turn.history,
            system_prompt=system_prompt,
            tools=tools,
            context=ToolContext(user_id=user_id, tokens=self._tokens, http=self._http),
            images=turn.images,
        )
        if result.hit_iteration_limit:
            logger.warning(
                "Session %s hit the tool round limit after %d rounds",
                session_id, result.iterations,
            )

        await self._persist(session_id, turn.message, result)

        return ChatReply(
            content=result.text,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            session_id=session_id,
            tools_used=result.tools_used,
        )

    async def _persist(
        self, session_id: str, message: str, result: OrchestrationResult,
    ) -> None:
        try:
            await self._sessions.append_message(session_id, "user", message)
            await self._sessions.append_message(
                session_id,
                "assistant",
                result.text,
                tokens_in=result.input_tokens,
                tokens_out=result.output_tokens,
                tools_used=result.tools_used,
            )
            await self._sessions.touch(session_id)
        except Exception:
            logger.exception("Failed to save chat turn for session %s", session_id)
