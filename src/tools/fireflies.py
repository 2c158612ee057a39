"""Fireflies.ai tools: list, read and search meeting transcripts.

Results are returned as Markdown text rather than JSON; the model reads
them more reliably and the formatting carries straight into its answers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from src.services.fireflies_client import FirefliesClient
from src.services.http_client import ProviderAPIError
from src.services.providers import Provider
from src.tools.capabilities import Integration
from src.tools.registry import (
    ToolContext,
    ToolDefinition,
    ToolName,
    ToolResult,
    clamp_limit,
    provider_failure,
)

LABEL = "Fireflies.ai"
MAX_LIMIT = 50
PREVIEW_SENTENCES = 20


LIST_FIREFLIES_TRANSCRIPTS = ToolDefinition(
    name=ToolName.LIST_FIREFLIES_TRANSCRIPTS,
    integration=Integration.FIREFLIES,
    description=(
        "List recent meeting transcripts from Fireflies.ai with titles, dates, "
        "durations and participants."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "limit": {
                "type": "number",
                "description": "Maximum number of transcripts to return (1-50, default 10)",
            },
            "fromDate": {
                "type": "string",
                "description": "Only return transcripts after this date (ISO 8601, e.g. 2024-01-01)",
            },
        },
        "required": [],
    },
)

GET_FIREFLIES_TRANSCRIPT = ToolDefinition(
    name=ToolName.GET_FIREFLIES_TRANSCRIPT,
    integration=Integration.FIREFLIES,
    description=(
        "Get a meeting transcript with its summary, action items, keywords and the "
        "opening of the conversation."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "transcriptId": {"type": "string", "description": "The transcript ID"},
        },
        "required": ["transcriptId"],
    },
)

SEARCH_FIREFLIES_TRANSCRIPTS = ToolDefinition(
    name=ToolName.SEARCH_FIREFLIES_TRANSCRIPTS,
    integration=Integration.FIREFLIES,
    description="Search meeting transcripts by keyword across titles and spoken content.",
    input_schema={
        "type": "object",
        "properties": {
            "keyword": {"type": "string", "description": "The search term"},
            "limit": {
                "type": "number",
                "description": "Maximum number of results to return (default 10)",
            },
        },
        "required": ["keyword"],
    },
)


def _parse_date(value: Any) -> datetime | None:
    # The API returns epoch milliseconds; older records carry ISO strings.
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _minutes(duration: Any) -> int:
    try:
        return round(float(duration) / 60)
    except (TypeError, ValueError):
        return 0


def format_transcript_list(transcripts: list[dict[str, Any]]) -> str:
    if not transcripts:
        return "No transcripts found."

    entries = []
    for i, t in enumerate(transcripts, start=1):
        date = _parse_date(t.get("date"))
        participants = ", ".join(t.get("participants") or []) or "Unknown"
        entries.append(
            f"{i}. **{t.get('title') or 'Untitled meeting'}**\n"
            f"   - ID: {t.get('id')}\n"
            f"   - Date: {date.strftime('%a, %b %d, %Y') if date else 'Unknown'}\n"
            f"   - Duration: {_minutes(t.get('duration'))} minutes\n"
            f"   - Participants: {participants}"
        )
    return "\n\n".join(entries)


def format_transcript_detail(t: dict[str, Any]) -> str:
    date = _parse_date(t.get("date"))
    participants = ", ".join(t.get("participants") or []) or "Unknown"
    sections = [
        f"# {t.get('title') or 'Untitled meeting'}\n\n"
        f"**Date:** {date.strftime('%A, %B %d, %Y') if date else 'Unknown'}\n"
        f"**Duration:** {_minutes(t.get('duration'))} minutes\n"
        f"**Participants:** {participants}\n"
        f"**Host:** {t.get('host_email') or 'Unknown'}"
    ]

    summary = t.get("summary") or {}
    if summary.get("overview"):
        sections.append(f"## Summary\n{summary['overview']}")
    if summary.get("action_items"):
        items = summary["action_items"]
        if isinstance(items, str):
            items = [line for line in items.splitlines() if line.strip()]
        sections.append("## Action Items\n" + "\n".join(f"- {item}" for item in items))
    if summary.get("keywords"):
        sections.append("## Keywords\n" + ", ".join(summary["keywords"]))

    sentences = t.get("sentences") or []
    if sentences:
        preview = sentences[:PREVIEW_SENTENCES]
        lines = "\n".join(f"**{s.get('speaker_name')}:** {s.get('text')}" for s in preview)
        block = f"## Transcript Preview (first {len(preview)} statements)\n{lines}"
        if len(sentences) > PREVIEW_SENTENCES:
            block += (
                f"\n\n*... and {len(sentences) - PREVIEW_SENTENCES} more statements. "
                "Use the transcript URL to read the rest.*"
            )
        sections.append(block)

    sections.append(
        "---\n"
        f"**Transcript URL:** {t.get('transcript_url') or 'Not available'}\n"
        f"**Audio URL:** {t.get('audio_url') or 'Not available'}"
    )
    return "\n\n".join(sections)


async def _client(ctx: ToolContext) -> FirefliesClient | None:
    api_key = await ctx.access_token(Provider.FIREFLIES)
    return FirefliesClient(ctx.http, api_key) if api_key else None


def _not_connected() -> ToolResult:
    return ToolResult.fail(f"{LABEL} is not connected. Please add your API key in Settings.")


async def list_fireflies_transcripts(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return _not_connected()

    try:
        transcripts = await client.list_transcripts(
            limit=clamp_limit(args.get("limit"), default=10, maximum=MAX_LIMIT),
            from_date=args.get("fromDate"),
        )
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="list transcripts")
    return ToolResult.ok(format_transcript_list(transcripts))


async def get_fireflies_transcript(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return _not_connected()

    transcript_id = args["transcriptId"]
    not_found = f'Transcript with ID "{transcript_id}" not found.'
    try:
        transcript = await client.get_transcript(transcript_id)
    except ProviderAPIError as exc:
        return provider_failure(
            exc, label=LABEL, action="get transcript", not_found=not_found,
        )
    if not transcript:
        return ToolResult.fail(not_found)
    return ToolResult.ok(format_transcript_detail(transcript))


async def search_fireflies_transcripts(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return _not_connected()

    keyword = args["keyword"]
    try:
        transcripts = await client.search_transcripts(
            keyword, limit=clamp_limit(args.get("limit"), default=10, maximum=MAX_LIMIT),
        )
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="search transcripts")

    if not transcripts:
        return ToolResult.ok(f'No transcripts found matching "{keyword}".')
    return ToolResult.ok(
        f'Found {len(transcripts)} transcript(s) matching "{keyword}":\n\n'
        + format_transcript_list(transcripts)
    )


TOOLS = [
    (LIST_FIREFLIES_TRANSCRIPTS, list_fireflies_transcripts),
    (GET_FIREFLIES_TRANSCRIPT, get_fireflies_transcript),
    (SEARCH_FIREFLIES_TRANSCRIPTS, search_fireflies_transcripts),
]
