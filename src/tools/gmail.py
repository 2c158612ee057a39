"""Gmail tools: search, read and send email."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any

from src.services.google_client import GmailClient
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
    truncate,
)

LABEL = "Gmail"
MAX_RESULTS = 50
MAX_BODY_CHARS = 5000

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


SEARCH_EMAILS = ToolDefinition(
    name=ToolName.SEARCH_EMAILS,
    integration=Integration.GMAIL,
    description=(
        "Search the user's Gmail inbox using a query string. Returns a list of matching "
        "emails with subject, sender, date, and snippet. Use standard Gmail search "
        "operators like 'from:', 'to:', 'subject:', 'is:unread', 'newer_than:', etc."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Gmail search query (e.g., 'from:john@example.com', 'is:unread')",
            },
            "maxResults": {
                "type": "number",
                "description": "Maximum number of emails to return (default: 10, max: 50)",
            },
        },
        "required": ["query"],
    },
)

GET_EMAIL = ToolDefinition(
    name=ToolName.GET_EMAIL,
    integration=Integration.GMAIL,
    description=(
        "Get the full details of a specific email by its ID. Returns subject, sender, "
        "recipients, date, and body content."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "emailId": {"type": "string", "description": "The Gmail message ID"},
        },
        "required": ["emailId"],
    },
)

SEND_EMAIL = ToolDefinition(
    name=ToolName.SEND_EMAIL,
    integration=Integration.GMAIL,
    description=(
        "Send an email on behalf of the user. The email is sent immediately, so confirm "
        "with the user before sending."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "to": {"type": "string", "description": "Recipient email address"},
            "subject": {"type": "string", "description": "Email subject line"},
            "body": {"type": "string", "description": "Email body content (plain text)"},
            "cc": {"type": "string", "description": "CC email address (optional)"},
            "bcc": {"type": "string", "description": "BCC email address (optional)"},
        },
        "required": ["to", "subject", "body"],
    },
)


def _header(message: dict[str, Any], name: str) -> str:
    for header in (message.get("payload") or {}).get("headers") or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def _decode(data: str) -> str:
    try:
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode(
            "utf-8", errors="replace",
        )
    except (binascii.Error, ValueError):
        return ""


def extract_body(message: dict[str, Any]) -> str:
    """Plain-text body of a ``format=full`` message; HTML is tag-stripped."""
    payload = message.get("payload") or {}
    data = (payload.get("body") or {}).get("data")
    if data:
        return _decode(data)

    parts = payload.get("parts") or []
    plain = next((p for p in parts if p.get("mimeType") == "text/plain"), None)
    html = next((p for p in parts if p.get("mimeType") == "text/html"), None)
    part = plain or html
    if not part or not (part.get("body") or {}).get("data"):
        return ""

    body = _decode(part["body"]["data"])
    if part is html:
        body = _SPACE_RE.sub(" ", _TAG_RE.sub(" ", body)).strip()
    return body


async def _client(ctx: ToolContext) -> GmailClient | None:
    token = await ctx.access_token(Provider.GOOGLE)
    return GmailClient(ctx.http, token) if token else None


async def search_emails(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    query = args["query"]
    limit = clamp_limit(args.get("maxResults"), default=10, maximum=MAX_RESULTS)
    try:
        messages = await client.search_messages(query, limit)
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="search emails")

    emails = [
        {
            "id": m.get("id"),
            "threadId": m.get("threadId"),
            "subject": _header(m, "Subject"),
            "from": _header(m, "From"),
            "to": _header(m, "To"),
            "date": _header(m, "Date"),
            "snippet": m.get("snippet"),
        }
        for m in messages
    ]
    return ToolResult.ok({"emails": emails, "total": len(emails), "query": query})


async def get_email(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        message = await client.get_message(args["emailId"])
    except ProviderAPIError as exc:
        return provider_failure(
            exc, label=LABEL, action="retrieve email", not_found="Email not found",
        )

    return ToolResult.ok({
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "subject": _header(message, "Subject"),
        "from": _header(message, "From"),
        "to": _header(message, "To"),
        "cc": _header(message, "Cc"),
        "date": _header(message, "Date"),
        "body": truncate(extract_body(message), MAX_BODY_CHARS),
        "snippet": message.get("snippet"),
    })


async def send_email(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    client = await _client(ctx)
    if client is None:
        return not_connected(LABEL)

    try:
        sent = await client.send_message(
            to=args["to"],
            subject=args["subject"],
            body=args["body"],
            cc=args.get("cc"),
            bcc=args.get("bcc"),
        )
    except ProviderAPIError as exc:
        return provider_failure(exc, label=LABEL, action="send email")

    return ToolResult.ok({
        "messageId": sent.get("id"),
        "threadId": sent.get("threadId"),
        "message": f"Email sent successfully to {args['to']}",
    })


TOOLS = [
    (SEARCH_EMAILS, search_emails),
    (GET_EMAIL, get_email),
    (SEND_EMAIL, send_email),
]
