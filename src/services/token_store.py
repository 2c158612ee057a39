"""Valid-access-token acquisition with transparent refresh.

Each lookup evaluates the stored credential afresh:

* more than the safety margin before expiry (or no expiry): return it;
* inside the margin or past expiry with a refresh token: refresh once;
* no credential, no refresh token, or a failed refresh: ``None``.

Refreshes for the same (user, provider) are serialised by an in-process
``asyncio.Lock``; a request that waited on the lock re-reads the
credential and reuses the token the first request stored.  Locks are held
weakly, so an idle (user, provider) pair keeps no lock alive.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import httpx

from src.config import TOKEN_REFRESH_MARGIN_SECONDS
from src.services import oauth
from src.services.credentials import Credential, CredentialStore
from src.services.providers import Provider

logger = logging.getLogger(__name__)

Refresher = Callable[[httpx.AsyncClient, Provider, str], Awaitable[oauth.TokenResponse]]


class TokenStore:
    """Hands out usable access tokens for provider API calls."""

    def __init__(
        self,
        credentials: CredentialStore,
        http: httpx.AsyncClient,
        *,
        refresher: Refresher = oauth.refresh_access_token,
        margin: timedelta = timedelta(seconds=TOKEN_REFRESH_MARGIN_SECONDS),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._credentials = credentials
        self._http = http
        self._refresher = refresher
        self._margin = margin
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[tuple[str, Provider], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    def _needs_refresh(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        return credential.expires_at - self._clock() < self._margin

    async def get_valid_access_token(self, user_id: str, provider: Provider) -> str | None:
        """Return a usable access token, or ``None`` if re-auth is needed.

        Never raises for credential or provider problems.
        """
        credential = await self._credentials.get(user_id, provider)
        if credential is None:
            logger.info("No %s credential for user %s", provider.value, user_id)
            return None
        if not self._needs_refresh(credential):
            return credential.access_token
        if not credential.refresh_token:
            logger.warning(
                "%s token for user %s is expiring and has no refresh token",
                provider.value, user_id,
            )
            return None

        lock = self._locks.setdefault((user_id, provider), asyncio.Lock())
        async with lock:
            # Another request may have refreshed while we waited.
            current = await self._credentials.get(user_id, provider)
            if current is None:
                return None
            if not self._needs_refresh(current):
                return current.access_token
            if not current.refresh_token:
                return None
            return await self._refresh(current)

    async def _refresh(self, credential: Credential) -> str | None:
        provider = credential.provider
        try:
            tokens = await self._refresher(self._http, provider, credential.refresh_token)
        except oauth.OAuthError as exc:
            logger.warning(
                "Token refresh failed for %s (user %s): %s",
                provider.value, credential.user_id, exc,
            )
            return None

        expires_at = (
            self._clock() + timedelta(seconds=tokens.expires_in)
            if tokens.expires_in
            else None
        )
        stored = await self._credentials.update_tokens(
            credential.user_id,
            provider,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=expires_at,
        )
        if not stored:
            logger.info(
                "%s credential for user %s was removed during refresh",
                provider.value, credential.user_id,
            )
            return None

        logger.info("Refreshed %s token for user %s", provider.value, credential.user_id)
        return tokens.access_token
