"""Google Calendar tools: list, read, create and update events."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from src.services.google_client import CalendarClient
from src.services.http_client import ProviderAPIError
from src.services.providers import Provider
from src.tools.capabilities import Integration
from src.tools.registry import (
    ToolContext,
    ToolDefinition,
    ToolName,
    ToolResult,
    clamp_limit,
    not_connected,
    provider_failure,
)

LABEL = "Google Calendar"
MAX_RESULTS = 50
DEFAULT_WINDOW = timedelta(days=7)
DEFAULT_DURATION = timedelta(hours=1)

_CALENDAR_ID = {"type": "string", "description": "Calendar ID (default: 'primary')"}


LIST_CALENDAR_EVENTS = ToolDefinition(
    name=ToolName.LIST_CALENDAR_EVENTS,
    integration=Integration.CALENDAR,
    description=(
        "List upcoming calendar events from the user's Google Calendar within a "
        "time range."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "timeMin": {
                "type": "string",
                "description": "Start of the range in ISO 8601 format. Defaults to now.",
            },
            "timeMax": {
                "type": "string",
                "description": "End of the range in ISO 8601 format. Defaults to 7 days from now.",
            },
            "maxResults": {
                "type": "number",
                "description": "Maximum number of events to return (default: 10, max: 50)",
            },
            "calendarId": _CALENDAR_ID,
        },
        "required": [],
    },
)

GET_CALENDAR_EVENT = ToolDefinition(
    name=ToolName.GET_CALENDAR_EVENT,
    integration=Integration.CALENDAR,
    description="Get detailed information about a specific calendar event by its ID.",
    input_schema={
        "type": "object",
        "properties": {
            "eventId": {"type": "string", "description": "The Google Calendar event ID"},
            "calendarId": _CALENDAR_ID,
        },
        "required": ["eventId"],
    },
)

CREATE_CALENDAR_EVENT = ToolDefinition(
    name=ToolName.CREATE_CALENDAR_EVENT,
    integration=Integration.CALENDAR,
    description=(
        "Create a new event on the user's Google Calendar. Requires at minimum a "
        "summary and a start time."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "summary": {"type": "string", "description": "Event title"},
            "description": {"type": "string", "description": "Event description (optional)"},
            "location": {"type": "string", "description": "Event location (optional)"},
            "startDateTime": {
                "type": "string",
                "description": "Start time in ISO 8601 format (e.g., '2024-01-15T10:00:00-07:00')",
            },
            "endDateTime": {
                "type": "string",
                "description": "End time in ISO 8601 format. Defaults to 1 hour after start.",
            },
            "attendees": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Attendee email addresses (optional)",
            },
            "calendarId": _CALENDAR_ID,
        },
        "required": ["summary", "startDateTime"],
    },
)

UPDATE_CALENDAR_EVENT = ToolDefinition(
    name=ToolName.UPDATE_CALENDAR_EVENT,
    integration=Integration.CALENDAR,
    description="Update an existing calendar event. Only the fields provided are changed.",
    input_schema={
        "type": "object",
        "properties": {
            "eventId": {"type": "string", "description": "The event ID to update"},
            "summary": {"type": "string", "description": "New event title"},
            "description": {"type": "string", "description": "New event description"},
            "location": {"type": "string", "description": "New event location"},
            "startDateTime": {"type": "string", "description": "New start time (ISO 8601)"},
            "endDateTime": {"type": "string", "description": "New end time (ISO 8601)"},
            "calendarId": _CALENDAR_ID,
        },
        "required": ["eventId"],
    },
)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _when(slot: dict[str, Any] | None) -> str | None:
    slot = slot or {}
    return slot.get("dateTime") or slot.get("date")


def _attendees(event: dict[str, Any]) -> list[dict[str, Any]] | None:
    attendees = event.get("attendees")
    if not attendees:
        return None
    return [
        {"email": a.get("email"), "name": a.get("displayName"), "status": a.get("responseStatus")}
        for a in attendees
    ]


def summarize_event(event: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": event.get("id"),
        "summary": event.get("summary") or "(No title)",
        "description": event.get("description"),
        "location": event.get("location"),
        "start": _when(event.get("start")),
        "end": _when(event.get("end")),
        "isAllDay": not (event.get("start") or {}).get("dateTime"),
        "attendees": _attendees(event),
        "link": event.get("htmlLink"),
    }


async def _client(ctx: ToolContext) -> CalendarClient | None:
    token = await ctx.access_token(Provider.GOOGLE)
    return CalendarClient(ctx.http, token) if token else None


async def list_calendar_events(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    now = datetime.now(UTC)
    time_min = args.get("timeMin") or now.isoformat().replace("+00:00", "Z")
    time_max = args.get("timeMax") or (now + DEFAULT_WINDOW).isoformat().replace("+00:00", "Z")
    limit = clamp_limit(args.get("maxResults"), default=10, maximum=MAX_RESULTS)

    try:
        items = await client.list_events(
            args.get("calendarId") or "primary",
            time_min=time_min,
            time_max=time_max,
            max_results=limit,
        )
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="retrieve calendar events")

    events = [summarize_event(e) for e in items]
    return ToolResult.ok({
        "events": events,
        "total": len(events),
        "timeRange": {"from": time_min, "to": time_max},
    })


async def get_calendar_event(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        event = await client.get_event(args.get("calendarId") or "primary", args["eventId"])
    except ProviderAPIError as exc:
        return provider_failure(
            exc, label=LABEL, action="retrieve event", not_found="Event not found",
        )

    detail = summarize_event(event)
    detail.update(
        organizer=event.get("organizer"),
        status=event.get("status"),
        created=event.get("created"),
        updated=event.get("updated"),
    )
    return ToolResult.ok(detail)


async def create_calendar_event(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    try:
        start = parse_datetime(args["startDateTime"])
        end = (
            parse_datetime(args["endDateTime"])
            if args.get("endDateTime")
            else start + DEFAULT_DURATION
        )
    except ValueError:
        return ToolResult.fail("startDateTime and endDateTime must be ISO 8601 timestamps")

    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    body: dict[str, Any] = {
        "summary": args["summary"],
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }
    if args.get("description"):
        body["description"] = args["description"]
    if args.get("location"):
        body["location"] = args["location"]
    if args.get("attendees"):
        body["attendees"] = [{"email": email} for email in args["attendees"]]

    try:
        event = await client.create_event(args.get("calendarId") or "primary", body)
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="create calendar event")

    return ToolResult.ok({
        "id": event.get("id"),
        "summary": event.get("summary"),
        "start": _when(event.get("start")),
        "end": _when(event.get("end")),
        "link": event.get("htmlLink"),
        "message": f'Event "{args["summary"]}" created successfully',
    })


async def update_calendar_event(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    changes: dict[str, Any] = {}
    if args.get("summary"):
        changes["summary"] = args["summary"]
    for key in ("description", "location"):
        if args.get(key) is not None:
            changes[key] = args[key]
    try:
        if args.get("startDateTime"):
            changes["start"] = {"dateTime": parse_datetime(args["startDateTime"]).isoformat()}
        if args.get("endDateTime"):
            changes["end"] = {"dateTime": parse_datetime(args["endDateTime"]).isoformat()}
    except ValueError:
        return ToolResult.fail("startDateTime and endDateTime must be ISO 8601 timestamps")

    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        event = await client.update_event(
            args.get("calendarId") or "primary", args["eventId"], changes,
        )
    except ProviderAPIError as exc:
        return provider_failure(
            exc, label=LABEL, action="update calendar event", not_found="Event not found",
        )

    return ToolResult.ok({
        "id": event.get("id"),
        "summary": event.get("summary"),
        "start": _when(event.get("start")),
        "end": _when(event.get("end")),
        "link": event.get("htmlLink"),
        "message": f'Event "{event.get("summary")}" updated successfully',
    })


TOOLS = [
    (LIST_CALENDAR_EVENTS, list_calendar_events),
    (GET_CALENDAR_EVENT, get_calendar_event),
    (CREATE_CALENDAR_EVENT, create_calendar_event),
    (UPDATE_CALENDAR_EVENT, update_calendar_event),
]
