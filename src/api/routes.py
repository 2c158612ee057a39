"""FastAPI route definitions: chat, session history and settings."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from src.agent import CompletionServiceError, ImageAttachment
from src.api.auth import get_current_user_id
from src.api.schemas import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    RenameSessionRequest,
    SessionDetailResponse,
    SessionSummaryResponse,
    SettingsPayload,
    StatusResponse,
    Usage,
)
from src.bootstrap import Components
from src.services.chat_service import ChatTurn, ServiceNotConfiguredError, SessionNotFoundError
from src.services.session_store import AssistantSettings

logger = logging.getLogger(__name__)

router = APIRouter()


def get_components(request: Request) -> Components:
    """Retrieve the shared components from app state.

    They are built once during the FastAPI lifespan (see ``server.py``).
    """
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return components


# ── Health ───────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


# ── Chat ─────────────────────────────────────────────────────────────


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    """Answer one user message, running tools on the user's behalf as needed.

    Without ``session_id`` a new session is created and its id returned.
    """
    request_id = getattr(request.state, "request_id", "?")
    turn = ChatTurn(
        message=body.message,
        history=[t.model_dump() for t in body.history],
        images=[ImageAttachment(media_type=i.media_type, data=i.data) for i in body.images],
        session_id=body.session_id,
    )

    try:
        reply = await components.chat.handle_message(user_id, turn)
    except ServiceNotConfiguredError as e:
        raise HTTPException(status_code=503, detail="AI service not configured") from e
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail="Session not found") from e
    except CompletionServiceError as e:
        logger.error("[%s] Completion service failed: %s", request_id, e)
        raise HTTPException(status_code=502, detail="AI service unavailable") from e
    except Exception as e:
        # Full traceback stays in the server log; the client gets a generic message.
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="Failed to process chat message. Please try again.",
        ) from e

    return ChatResponse(
        content=reply.content,
        usage=Usage(input_tokens=reply.input_tokens, output_tokens=reply.output_tokens),
        session_id=reply.session_id,
        tools_used=reply.tools_used,
    )


# ── Sessions ─────────────────────────────────────────────────────────


@router.get("/sessions", response_model=list[SessionSummaryResponse])
async def list_sessions(
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    sessions = await components.sessions.list_sessions(user_id)
    return [SessionSummaryResponse(**asdict(s)) for s in sessions]


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    detail = await components.sessions.get_session(user_id, session_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionDetailResponse(**asdict(detail))


@router.patch("/sessions/{session_id}", response_model=StatusResponse)
async def rename_session(
    session_id: str,
    body: RenameSessionRequest,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    if not await components.sessions.rename_session(user_id, session_id, body.title):
        raise HTTPException(status_code=404, detail="Session not found")
    return StatusResponse()


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    if not await components.sessions.delete_session(user_id, session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)


# ── Settings ─────────────────────────────────────────────────────────


@router.get("/settings", response_model=SettingsPayload)
async def get_settings(
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    return SettingsPayload(**asdict(await components.settings.get(user_id)))


@router.put("/settings", response_model=SettingsPayload)
async def save_settings(
    body: SettingsPayload,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    saved = await components.settings.save(user_id, AssistantSettings(**body.model_dump()))
    return SettingsPayload(**asdict(saved))
