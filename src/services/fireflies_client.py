"""Fireflies.ai GraphQL client (API-key bearer auth)."""

from __future__ import annotations

import logging
from typing import Any

from src.services.http_client import ProviderAPIError, ProviderClient

logger = logging.getLogger(__name__)

ENDPOINT = "https://api.fireflies.ai/graphql"

_TRANSCRIPT_FIELDS = """
    id
    title
    date
    duration
    participants
    host_email
    organizer_email
    transcript_url
    audio_url
"""

LIST_TRANSCRIPTS = f"""
query Transcripts($limit: Int, $fromDate: DateTime) {{
  transcripts(limit: $limit, fromDate: $fromDate) {{{_TRANSCRIPT_FIELDS}  }}
}}
"""

SEARCH_TRANSCRIPTS = f"""
query SearchTranscripts($keyword: String!, $limit: Int) {{
  transcripts(keyword: $keyword, limit: $limit, scope: all) {{{_TRANSCRIPT_FIELDS}  }}
}}
"""

GET_TRANSCRIPT = f"""
query Transcript($transcriptId: String!) {{
  transcript(id: $transcriptId) {{{_TRANSCRIPT_FIELDS}
    summary {{ overview action_items keywords }}
    sentences {{ speaker_name text start_time }}
  }}
}}
"""

VERIFY_USER = "query { user { email name } }"


class FirefliesClient(ProviderClient):
    service = "fireflies"
    base_url = ENDPOINT

    async def query(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST a GraphQL document; GraphQL-level errors become ProviderAPIError."""
        result = await self._request(
            "POST", ENDPOINT,
            json_body={"query": document, "variables": variables or {}},
            idempotent=True,
        )
        errors = (result or {}).get("errors") or []
        if errors:
            message = errors[0].get("message") or "Fireflies API error"
            logger.warning("Fireflies GraphQL error: %s", message)
            raise ProviderAPIError(message)
        return (result or {}).get("data") or {}

    async def list_transcripts(
        self, *, limit: int, from_date: str | None = None,
    ) -> list[dict[str, Any]]:
        variables: dict[str, Any] = {"limit": limit}
        if from_date:
            variables["fromDate"] = from_date
        data = await self.query(LIST_TRANSCRIPTS, variables)
        return data.get("transcripts") or []

    async def search_transcripts(self, keyword: str, *, limit: int) -> list[dict[str, Any]]:
        data = await self.query(SEARCH_TRANSCRIPTS, {"keyword": keyword, "limit": limit})
        return data.get("transcripts") or []

    async def get_transcript(self, transcript_id: str) -> dict[str, Any] | None:
        data = await self.query(GET_TRANSCRIPT, {"transcriptId": transcript_id})
        return data.get("transcript")

    async def verify_api_key(self) -> bool:
        """``True`` when the key can run a trivial ``user`` query."""
        try:
            await self.query(VERIFY_USER)
        except ProviderAPIError:
            return False
        return True
