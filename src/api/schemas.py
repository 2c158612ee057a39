"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

# ── Chat ────────────────────────────────────────────────────────────


class HistoryTurn(BaseModel):
    """A prior turn supplied by the client, oldest first."""

    role: Literal["user", "assistant"]
    content: str


class ImageInput(BaseModel):
    """A base64-encoded image attached to the user's message."""

    media_type: Literal["image/png", "image/jpeg", "image/gif", "image/webp"]
    data: str = Field(..., min_length=1, description="Base64 image bytes")


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=10_000, description="The user's message")
    history: list[HistoryTurn] = Field(default_factory=list)
    images: list[ImageInput] = Field(default_factory=list, max_length=5)
    session_id: str | None = Field(
        None,
        max_length=64,
        description="Existing session to continue; omitted to start a new one",
    )


class Usage(BaseModel):
    input_tokens: int
    output_tokens: int


class ChatResponse(BaseModel):
    """The assistant's final answer for one user message."""

    content: str = Field(..., description="Final assistant text")
    usage: Usage
    session_id: str
    tools_used: list[str] = Field(default_factory=list)


# ── Sessions ────────────────────────────────────────────────────────


class SessionSummaryResponse(BaseModel):
    id: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    message_count: int
    last_message_preview: str | None = None
    last_message_at: datetime | None = None


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    tokens_in: int | None = None
    tokens_out: int | None = None
    tools_used: list[str] | None = None
    created_at: datetime


class SessionDetailResponse(BaseModel):
    id: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    messages: list[MessageResponse]


class RenameSessionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


# ── Settings ────────────────────────────────────────────────────────


class SettingsPayload(BaseModel):
    assistant_name: str = Field("Chief of Staff", min_length=1, max_length=100)
    assistant_personality: str | None = Field(None, max_length=2000)
    timezone: str = Field("America/Phoenix", min_length=1, max_length=64)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value


# ── Integrations ────────────────────────────────────────────────────


class IntegrationStatus(BaseModel):
    provider: str
    label: str
    connected: bool
    connected_email: str | None = None
    connected_at: datetime | None = None
    scopes: list[str] = Field(default_factory=list)
    configured: bool = Field(
        True, description="Whether the server has OAuth client credentials for it",
    )


class FirefliesKeyRequest(BaseModel):
    api_key: str = Field(..., min_length=1, max_length=512)


class StatusResponse(BaseModel):
    success: bool = True
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "chief-of-staff"
