"""Tool catalog and dispatch.

Tool names form the closed :class:`ToolName` set.  A :class:`ToolRegistry`
maps every name to exactly one definition and one async handler, and
:meth:`ToolRegistry.validate` refuses a registry where any name is missing.

:meth:`ToolRegistry.dispatch` is the only way the orchestrator runs a
tool.  It never raises: unknown names, bad input, provider failures and
unexpected exceptions all come back as ``ToolResult(success=False, ...)``.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from src.services.http_client import ProviderAPIError
from src.services.metrics import metrics
from src.services.providers import Provider
from src.services.token_store import TokenStore
from src.tools.capabilities import CapabilitySnapshot, Integration

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    SEARCH_EMAILS = "search_emails"
    GET_EMAIL = "get_email"
    SEND_EMAIL = "send_email"
    LIST_CALENDAR_EVENTS = "list_calendar_events"
    GET_CALENDAR_EVENT = "get_calendar_event"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    UPDATE_CALENDAR_EVENT = "update_calendar_event"
    LIST_ASANA_TASKS = "list_asana_tasks"
    GET_ASANA_TASK = "get_asana_task"
    CREATE_ASANA_TASK = "create_asana_task"
    COMPLETE_ASANA_TASK = "complete_asana_task"
    LIST_FIREFLIES_TRANSCRIPTS = "list_fireflies_transcripts"
    GET_FIREFLIES_TRANSCRIPT = "get_fireflies_transcript"
    SEARCH_FIREFLIES_TRANSCRIPTS = "search_fireflies_transcripts"


@dataclass(frozen=True)
class ToolDefinition:
    name: ToolName
    integration: Integration
    description: str
    input_schema: dict[str, Any]

    def to_anthropic(self) -> dict[str, Any]:
        """The shape the completion API expects for a tool."""
        return {
            "name": self.name.value,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_content(self) -> str:
        """Text payload for the tool-result block sent back to the model."""
        if not self.success:
            return f"Error: {self.error}"
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, indent=2, default=str)


@dataclass
class ToolContext:
    """Per-turn state handed to every handler."""

    user_id: str
    tokens: TokenStore
    http: httpx.AsyncClient = field(repr=False)

    async def access_token(self, provider: Provider) -> str | None:
        return await self.tokens.get_valid_access_token(self.user_id, provider)


Handler = Callable[[ToolContext, dict[str, Any]], Awaitable[ToolResult]]


class RegistryError(Exception):
    """The registry does not map every tool name to exactly one handler."""


# ── Shared handler helpers ──────────────────────────────────────────

def clamp_limit(value: Any, *, default: int, maximum: int, minimum: int = 1) -> int:
    """Coerce a model-supplied count into ``[minimum, maximum]``."""
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return max(minimum, min(number, maximum))


def truncate(text: str | None, limit: int) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[:limit]


def not_connected(label: str) -> ToolResult:
    return ToolResult.fail(
        f"{label} is not connected or the connection has expired. "
        "Please reconnect in Settings."
    )


def provider_failure(
    exc: ProviderAPIError, *, label: str, action: str, not_found: str = "Resource not found",
) -> ToolResult:
    """Translate a provider error into a message the model can act on."""
    status = exc.status_code
    if status in (401, 403):
        return ToolResult.fail(
            f"{label} rejected the request. Please reconnect {label} in Settings."
        )
    if status == 404:
        return ToolResult.fail(not_found)
    if status == 429:
        return ToolResult.fail(f"{label} rate limit reached. Please try again in a moment.")
    if status is None:
        return ToolResult.fail(f"Failed to {action}: {exc}")
    return ToolResult.fail(f"Failed to {action}")


# ── Registry ────────────────────────────────────────────────────────

class ToolRegistry:
    def __init__(self) -> None:
        self._definitions: dict[ToolName, ToolDefinition] = {}
        self._handlers: dict[ToolName, Handler] = {}

    def register(self, definition: ToolDefinition, handler: Handler) -> None:
        if definition.name in self._handlers:
            raise RegistryError(f"Tool {definition.name.value} is already registered")
        self._definitions[definition.name] = definition
        self._handlers[definition.name] = handler

    def validate(self) -> ToolRegistry:
        """Raise unless every :class:`ToolName` has a handler."""
        missing = [name.value for name in ToolName if name not in self._handlers]
        if missing:
            raise RegistryError(f"No handler registered for: {', '.join(missing)}")
        return self

    def definition(self, name: ToolName) -> ToolDefinition:
        return self._definitions[name]

    def list_tools(self, snapshot: CapabilitySnapshot) -> list[ToolDefinition]:
        """Definitions the snapshot allows, in catalog order."""
        return [
            self._definitions[name]
            for name in ToolName
            if name in self._definitions
            and snapshot.allows(self._definitions[name].integration)
        ]

    async def dispatch(
        self, ctx: ToolContext, tool_name: str, tool_input: Any,
    ) -> ToolResult:
        try:
            name = ToolName(tool_name)
        except ValueError:
            logger.warning("Model requested unknown tool %r", tool_name)
            return ToolResult.fail(f"Unknown tool: {tool_name}")

        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult.fail(f"Unknown tool: {tool_name}")

        if not isinstance(tool_input, dict):
            return ToolResult.fail(f"Invalid input for {tool_name}: expected an object")
        missing = [
            key
            for key in self._definitions[name].input_schema.get("required", [])
            if tool_input.get(key) in (None, "")
        ]
        if missing:
            return ToolResult.fail(f"Missing required input: {', '.join(missing)}")

        t0 = time.perf_counter()
        try:
            result = await handler(ctx, tool_input)
        except Exception:
            logger.exception("Tool %s raised for user %s", tool_name, ctx.user_id)
            result = ToolResult.fail(
                f"An unexpected error occurred while running {tool_name}"
            )
        elapsed = (time.perf_counter() - t0) * 1000

        metrics.record_tool_call(tool_name, success=result.success, latency_ms=elapsed)
        if result.success:
            logger.debug("Tool %s succeeded in %.0fms", tool_name, elapsed)
        else:
            logger.warning("Tool %s failed: %s", tool_name, result.error)
        return result
