"""Which tool families a user can use right now, and how to describe them.

A :class:`CapabilitySnapshot` is computed fresh for every chat turn from
the stored credentials.  It is never persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from src.services.credentials import CredentialStore
from src.services.providers import Provider

logger = logging.getLogger(__name__)

_GMAIL_SCOPE_MARKERS = ("gmail.readonly", "gmail.modify", "gmail.send", "mail.google.com")


class Integration(str, Enum):
    """A tool family.  Google is split by scope into Gmail and Calendar."""

    GMAIL = "gmail"
    CALENDAR = "calendar"
    ASANA = "asana"
    FIREFLIES = "fireflies"

    @property
    def provider(self) -> Provider:
        if self in (Integration.GMAIL, Integration.CALENDAR):
            return Provider.GOOGLE
        return Provider(self.value)

    def is_granted(self, scopes: tuple[str, ...]) -> bool:
        """Scope check for providers with per-scope granularity."""
        if self is Integration.GMAIL:
            return any(marker in scope for scope in scopes for marker in _GMAIL_SCOPE_MARKERS)
        if self is Integration.CALENDAR:
            return any("calendar" in scope for scope in scopes)
        return True


@dataclass(frozen=True)
class CapabilitySnapshot:
    """Connected providers mapped to their granted scopes."""

    connected: dict[Provider, tuple[str, ...]] = field(default_factory=dict)

    def is_connected(self, provider: Provider) -> bool:
        return provider in self.connected

    def allows(self, integration: Integration) -> bool:
        scopes = self.connected.get(integration.provider)
        if scopes is None:
            return False
        return integration.is_granted(scopes)

    @property
    def integrations(self) -> list[Integration]:
        return [i for i in Integration if self.allows(i)]


async def resolve_capabilities(user_id: str, credentials: CredentialStore) -> CapabilitySnapshot:
    """Read each provider's connection; a failed lookup counts as not connected."""
    connected: dict[Provider, tuple[str, ...]] = {}
    for provider in Provider:
        try:
            info = await credentials.get_connection(user_id, provider)
        except Exception:
            logger.warning(
                "Could not read %s connection for user %s; treating as disconnected",
                provider.value, user_id, exc_info=True,
            )
            continue
        if info is not None:
            connected[provider] = info.scopes
    return CapabilitySnapshot(connected=connected)


_SUMMARY_LINES = {
    Integration.GMAIL: (
        "- Search and read Gmail emails",
        "- Send emails on your behalf (with confirmation)",
    ),
    Integration.CALENDAR: (
        "- View and manage Google Calendar events",
        "- Create and update calendar events",
    ),
    Integration.ASANA: (
        "- View and manage Asana tasks",
        "- Create new tasks and mark tasks complete",
    ),
    Integration.FIREFLIES: (
        "- Access Fireflies.ai meeting transcripts",
        "- Search and retrieve meeting summaries, action items, and keywords",
    ),
}


def summarize(snapshot: CapabilitySnapshot) -> str | None:
    """Capability text for the system prompt, or ``None`` when nothing is usable."""
    lines = [line for i in snapshot.integrations for line in _SUMMARY_LINES[i]]
    if not lines:
        return None
    return "Connected integrations allow me to:\n" + "\n".join(lines)
