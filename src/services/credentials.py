"""Encrypted credential storage, one row per (user, provider).

Callers hand plaintext tokens to this store and get plaintext tokens back;
only base64 envelopes from :mod:`src.services.encryption` reach the
database.  Updates are plain upserts keyed by (user, provider) with
last-writer-wins semantics.

Encryption and decryption run in a worker thread; scrypt key derivation is
CPU-bound and would otherwise stall the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import delete, select

from src.db.connection import Database
from src.db.models import IntegrationCredential
from src.services.encryption import CredentialDecryptionError, decrypt, encrypt
from src.services.providers import Provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Decrypted credential, held in memory for a single request only."""

    user_id: str
    provider: Provider
    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: datetime | None = None
    scopes: tuple[str, ...] = ()
    connected_email: str | None = None


@dataclass(frozen=True)
class ConnectionInfo:
    """Token-free view of a connection, safe to return to the UI."""

    provider: Provider
    scopes: tuple[str, ...]
    connected_email: str | None
    connected_at: datetime | None


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _encrypt_pair(access_token: str, refresh_token: str | None) -> tuple[str, str | None]:
    return encrypt(access_token), encrypt(refresh_token) if refresh_token else None


def _decrypt_pair(access_encrypted: str, refresh_encrypted: str | None) -> tuple[str, str | None]:
    return decrypt(access_encrypted), decrypt(refresh_encrypted) if refresh_encrypted else None


class CredentialStore:
    """CRUD over ``user_integrations`` with encryption at the boundary."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, user_id: str, provider: Provider) -> Credential | None:
        """Return the decrypted credential, or ``None`` if absent or unreadable."""
        async with self._db.session() as session:
            row = await session.scalar(
                select(IntegrationCredential).where(
                    IntegrationCredential.user_id == user_id,
                    IntegrationCredential.provider == provider.value,
                )
            )
            if row is None:
                return None
            encrypted = (row.access_token_encrypted, row.refresh_token_encrypted)
            expires_at = _as_utc(row.token_expires_at)
            scopes = tuple(row.scopes or ())
            connected_email = row.connected_email

        try:
            access_token, refresh_token = await asyncio.to_thread(_decrypt_pair, *encrypted)
        except CredentialDecryptionError:
            logger.error(
                "Stored %s credential for user %s could not be decrypted",
                provider.value, user_id,
            )
            return None

        return Credential(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scopes=scopes,
            connected_email=connected_email,
        )

    async def get_connection(self, user_id: str, provider: Provider) -> ConnectionInfo | None:
        """Token-free lookup; never decrypts."""
        async with self._db.session() as session:
            row = await session.scalar(
                select(IntegrationCredential).where(
                    IntegrationCredential.user_id == user_id,
                    IntegrationCredential.provider == provider.value,
                )
            )
            if row is None:
                return None
            return ConnectionInfo(
                provider=provider,
                scopes=tuple(row.scopes or ()),
                connected_email=row.connected_email,
                connected_at=_as_utc(row.created_at),
            )

    async def upsert(
        self,
        user_id: str,
        provider: Provider,
        *,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        scopes: list[str] | tuple[str, ...] = (),
        connected_email: str | None = None,
    ) -> None:
        """Create or replace the credential for (user, provider)."""
        access_encrypted, refresh_encrypted = await asyncio.to_thread(
            _encrypt_pair, access_token, refresh_token,
        )

        async with self._db.session() as session:
            row = await session.scalar(
                select(IntegrationCredential).where(
                    IntegrationCredential.user_id == user_id,
                    IntegrationCredential.provider == provider.value,
                )
            )
            if row is None:
                row = IntegrationCredential(user_id=user_id, provider=provider.value)
                session.add(row)
            row.access_token_encrypted = access_encrypted
            row.refresh_token_encrypted = refresh_encrypted
            row.token_expires_at = expires_at
            row.scopes = list(scopes)
            row.connected_email = connected_email

        logger.info("Stored %s credential for user %s", provider.value, user_id)

    async def update_tokens(
        self,
        user_id: str,
        provider: Provider,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> bool:
        """Persist refreshed tokens.

        The access token and expiry are always replaced; the refresh token
        only when the provider issued a new one.  Returns ``False`` if the
        credential was deleted in the meantime.
        """
        access_encrypted, refresh_encrypted = await asyncio.to_thread(
            _encrypt_pair, access_token, refresh_token,
        )
        async with self._db.session() as session:
            row = await session.scalar(
                select(IntegrationCredential).where(
                    IntegrationCredential.user_id == user_id,
                    IntegrationCredential.provider == provider.value,
                )
            )
            if row is None:
                return False
            row.access_token_encrypted = access_encrypted
            if refresh_encrypted:
                row.refresh_token_encrypted = refresh_encrypted
            row.token_expires_at = expires_at
            row.updated_at = datetime.now(UTC)
            return True

    async def delete(self, user_id: str, provider: Provider) -> bool:
        """Remove the credential.  Idempotent; returns whether a row existed."""
        async with self._db.session() as session:
            result = await session.execute(
                delete(IntegrationCredential).where(
                    IntegrationCredential.user_id == user_id,
                    IntegrationCredential.provider == provider.value,
                )
            )
            removed = bool(result.rowcount)
        if removed:
            logger.info("Disconnected %s for user %s", provider.value, user_id)
        return removed
