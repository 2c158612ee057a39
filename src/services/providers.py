"""The external providers a user can connect."""

from __future__ import annotations

from enum import Enum


class Provider(str, Enum):
    """Credential owners.  One stored credential per (user, provider)."""

    GOOGLE = "google"
    ASANA = "asana"
    FIREFLIES = "fireflies"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def uses_oauth(self) -> bool:
        return self is not Provider.FIREFLIES


_LABELS = {
    Provider.GOOGLE: "Google",
    Provider.ASANA: "Asana",
    Provider.FIREFLIES: "Fireflies.ai",
}
