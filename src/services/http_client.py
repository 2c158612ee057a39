"""Shared async HTTP plumbing for provider API clients.

Every provider client (Google, Asana, Fireflies) goes through
:meth:`ProviderClient._request`, which adds the bearer token, applies the
configured timeout, and retries timeouts, connection errors and 5xx
responses with exponential backoff.  Non-idempotent requests (POST, PATCH)
are only retried when the connection was never established, so a send or
create that reached the provider is not repeated.  4xx responses are raised immediately
as :class:`ProviderAPIError` so tool handlers can translate them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from src.config import HTTP_TIMEOUT_SECONDS
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
# The request never left the client.
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class ProviderAPIError(Exception):
    """Raised when a provider API call fails (after retries, for 5xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def create_http_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build the process-wide async HTTP client."""
    return httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS, transport=transport)


class ProviderClient:
    """Base class for a provider API scoped to one access token."""

    service = "provider"
    base_url = ""

    def __init__(self, http: httpx.AsyncClient, access_token: str) -> None:
        self._http = http
        self._access_token = access_token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
        json_body: Any = None,
        idempotent: bool | None = None,
    ) -> Any:
        """Execute a request with exponential-backoff retries.

        *idempotent* defaults from the HTTP method; read-only POSTs (GraphQL
        queries) pass ``True`` to get full retries.

        Returns the decoded JSON body, or ``None`` for empty responses.
        """
        if idempotent is None:
            idempotent = method.upper() in IDEMPOTENT_METHODS
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        operation = f"{method} {httpx.URL(url).path}"
        headers = {"Authorization": f"Bearer {self._access_token}"}

        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = await self._http.request(
                    method, url, params=params, json=json_body, headers=headers,
                )
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code >= 400:
                    metrics.record_failure(
                        self.service, operation,
                        error_type=str(response.status_code), latency_ms=elapsed,
                    )
                    # Bodies can echo request data; log the status only.
                    logger.warning(
                        "%s %s returned %d", self.service, operation, response.status_code,
                    )
                    raise ProviderAPIError(
                        f"{self.service} returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                metrics.record_success(self.service, operation, latency_ms=elapsed)
                if not response.content:
                    return None
                return response.json()

            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_error = exc
                metrics.record_failure(self.service, operation, error_type=type(exc).__name__)
                if not idempotent and not isinstance(exc, NOT_SENT_ERRORS):
                    logger.warning(
                        "%s %s failed after sending (%s); not retrying",
                        self.service, operation, type(exc).__name__,
                    )
                    raise ProviderAPIError(
                        f"{self.service} request failed: {exc}",
                    ) from exc
                logger.warning(
                    "%s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    self.service,
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except ProviderAPIError as exc:
                if idempotent and exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "%s server error on attempt %d/%d. Retrying…",
                        self.service, attempt, MAX_RETRIES,
                    )
                else:
                    raise  # 4xx, and 5xx on non-idempotent requests

            if attempt < MAX_RETRIES:
                await asyncio.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        status = getattr(last_error, "status_code", None)
        raise ProviderAPIError(
            f"{self.service} request failed after {MAX_RETRIES} attempts: {last_error}",
            status_code=status,
        )
