"""Google Calendar v3 and Gmail v1 REST clients.

Both return the provider's JSON largely untouched; shaping the payload
for the model happens in ``src/tools/google_calendar.py`` and ``src/tools/gmail.py``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from email.message import EmailMessage
from typing import Any
from urllib.parse import quote

from src.services.http_client import ProviderAPIError, ProviderClient

logger = logging.getLogger(__name__)

_METADATA_HEADERS = ("From", "To", "Subject", "Date")


class CalendarClient(ProviderClient):
    service = "google_calendar"
    base_url = "https://www.googleapis.com/calendar/v3"

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            path += f"/{quote(event_id, safe='')}"
        return path

    async def list_events(
        self,
        calendar_id: str,
        *,
        time_min: str,
        time_max: str,
        max_results: int,
    ) -> list[dict[str, Any]]:
        """Return single (expanded) events in the window, ordered by start."""
        data = await self._request(
            "GET",
            self._events_path(calendar_id),
            params={
                "timeMin": time_min,
                "timeMax": time_max,
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return (data or {}).get("items", [])

    async def get_event(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        return await self._request("GET", self._events_path(calendar_id, event_id))

    async def create_event(self, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", self._events_path(calendar_id), json_body=body)

    async def update_event(
        self, calendar_id: str, event_id: str, changes: dict[str, Any],
    ) -> dict[str, Any]:
        """Read the event, overlay *changes*, and write the whole event back."""
        current = await self.get_event(calendar_id, event_id)
        merged = {
            "summary": current.get("summary"),
            "description": current.get("description"),
            "location": current.get("location"),
            "start": current.get("start"),
            "end": current.get("end"),
        }
        merged.update(changes)
        return await self._request(
            "PUT", self._events_path(calendar_id, event_id), json_body=merged,
        )


class GmailClient(ProviderClient):
    service = "gmail"
    base_url = "https://gmail.googleapis.com/gmail/v1"

    async def search_messages(self, query: str, max_results: int) -> list[dict[str, Any]]:
        """Search and fetch header metadata for each hit.

        Messages whose metadata fetch fails are dropped from the result.
        """
        data = await self._request(
            "GET", "/users/me/messages", params={"q": query, "maxResults": max_results},
        )
        refs = (data or {}).get("messages", [])
        if not refs:
            return []

        results = await asyncio.gather(
            *(self._get_metadata(ref["id"]) for ref in refs),
            return_exceptions=True,
        )
        messages = []
        for ref, result in zip(refs, results, strict=True):
            if isinstance(result, ProviderAPIError):
                logger.warning("Skipping Gmail message %s: %s", ref["id"], result)
                continue
            if isinstance(result, BaseException):
                raise result
            messages.append(result)
        return messages

    async def _get_metadata(self, message_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/users/me/messages/{quote(message_id, safe='')}",
            params=[("format", "metadata")] + [("metadataHeaders", h) for h in _METADATA_HEADERS],
        )

    async def get_message(self, message_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/users/me/messages/{quote(message_id, safe='')}",
            params={"format": "full"},
        )

    async def send_message(
        self,
        *,
        to: str,
        subject: str,
        body: str,
        cc: str | None = None,
        bcc: str | None = None,
    ) -> dict[str, Any]:
        message = EmailMessage()
        message["To"] = to
        if cc:
            message["Cc"] = cc
        if bcc:
            message["Bcc"] = bcc
        message["Subject"] = subject
        message.set_content(body)

        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")
        return await self._request("POST", "/users/me/messages/send", json_body={"raw": raw})
