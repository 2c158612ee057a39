"""System prompt for the Chief of Staff assistant."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_ASSISTANT_NAME = "Chief of Staff"
DEFAULT_TIMEZONE = "America/Phoenix"

SYSTEM_PROMPT_TEMPLATE = """You are {assistant_name}, a helpful AI executive assistant. You help the user manage their calendar, emails, tasks and meetings.

Today is {current_date}. The current time is {current_time}. The user's timezone is {timezone}.
Use this to resolve relative dates like "tomorrow" or "next week", and give times in the user's timezone.

Your capabilities include:
- Answering questions and having helpful conversations
- Remembering information the user shares with you in this conversation

{capabilities}

Be concise, professional, and helpful. If you don't know something, say so."""

CONNECTED_GUIDELINES = """{summary}

When using tools:
- Always confirm before sending emails or making significant changes
- Provide clear summaries of what you found or did
- If a tool fails, explain the issue and suggest next steps"""

NO_INTEGRATIONS = (
    "No integrations are currently connected, so you cannot read or change the "
    "user's email, calendar, tasks or meeting transcripts. The user can connect "
    "Gmail, Google Calendar, Asana and Fireflies.ai in Settings to unlock these "
    "capabilities."
)


def _zone(timezone: str | None) -> tuple[str, ZoneInfo]:
    name = timezone or DEFAULT_TIMEZONE
    try:
        return name, ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return DEFAULT_TIMEZONE, ZoneInfo(DEFAULT_TIMEZONE)


def build_system_prompt(
    assistant_name: str | None = None,
    personality: str | None = None,
    timezone: str | None = None,
    capability_summary: str | None = None,
    *,
    now: datetime | None = None,
) -> str:
    """Build the system instructions for one chat turn.

    ``capability_summary`` is the text from
    :func:`src.tools.capabilities.summarize`; ``None`` means nothing is
    connected and the prompt says so explicitly.
    """
    tz_name, tz = _zone(timezone)
    local = (now or datetime.now(UTC)).astimezone(tz)

    if capability_summary:
        capabilities = CONNECTED_GUIDELINES.format(summary=capability_summary)
    else:
        capabilities = NO_INTEGRATIONS

    prompt = SYSTEM_PROMPT_TEMPLATE.format(
        assistant_name=assistant_name or DEFAULT_ASSISTANT_NAME,
        current_date=local.strftime("%A, %B %d, %Y"),
        current_time=local.strftime("%I:%M %p"),
        timezone=tz_name,
        capabilities=capabilities,
    )
    if personality:
        prompt += (
            "\n\nAdditional personality/communication style notes from the user: "
            f"{personality}"
        )
    return prompt
