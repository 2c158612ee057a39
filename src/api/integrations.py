"""Integration management: status, OAuth connect/callback, API keys, disconnect.

The OAuth callback never answers with an error page.  Every outcome is a
redirect to ``SETTINGS_REDIRECT_URL`` carrying either
``success=<provider>_connected`` or ``error=<code>``, and a credential is
only written once the whole exchange has succeeded.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from src import config
from src.api.auth import get_current_user_id
from src.api.routes import get_components
from src.api.schemas import FirefliesKeyRequest, IntegrationStatus, StatusResponse
from src.bootstrap import Components
from src.services import oauth
from src.services.fireflies_client import FirefliesClient
from src.services.providers import Provider

logger = logging.getLogger(__name__)

router = APIRouter()


def _settings_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{config.SETTINGS_REDIRECT_URL}?{urlencode(params)}", status_code=302)


def _oauth_provider(provider: Provider) -> oauth.OAuthProviderConfig:
    if not provider.uses_oauth:
        raise HTTPException(status_code=404, detail=f"{provider.label} does not use OAuth")
    return oauth.get_oauth_config(provider)


@router.get("/integrations", response_model=list[IntegrationStatus])
async def list_integrations(
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    """Connection status for every provider."""
    statuses = []
    for provider in Provider:
        info = await components.credentials.get_connection(user_id, provider)
        configured = oauth.get_oauth_config(provider).is_configured if provider.uses_oauth else True
        statuses.append(
            IntegrationStatus(
                provider=provider.value,
                label=provider.label,
                connected=info is not None,
                connected_email=info.connected_email if info else None,
                connected_at=info.connected_at if info else None,
                scopes=list(info.scopes) if info else [],
                configured=configured,
            )
        )
    return statuses


@router.get("/oauth/{provider}")
async def start_oauth(provider: Provider, user_id: str = Depends(get_current_user_id)):
    """Redirect the browser to the provider's consent page."""
    cfg = _oauth_provider(provider)
    if not cfg.is_configured:
        raise HTTPException(status_code=503, detail=f"{provider.label} OAuth not configured")
    return RedirectResponse(oauth.build_authorization_url(provider, user_id), status_code=302)


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: Provider,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    """Finish the authorization-code flow and store the credential."""
    cfg = _oauth_provider(provider)

    if error:
        logger.warning("%s OAuth returned error %s for user %s", provider.label, error, user_id)
        return _settings_redirect(error=error)
    if not code or not state:
        return _settings_redirect(error="missing_params")
    if not oauth.verify_state(state, user_id):
        logger.warning("%s OAuth state mismatch for user %s", provider.label, user_id)
        return _settings_redirect(error="invalid_state")

    try:
        tokens = await oauth.exchange_code(components.http, provider, code)
    except oauth.OAuthError as exc:
        logger.warning("%s code exchange failed: %s", provider.label, exc)
        return _settings_redirect(error="token_exchange_failed")

    try:
        email = await oauth.fetch_account_email(components.http, provider, tokens.access_token)
        expires_at = (
            datetime.now(UTC) + timedelta(seconds=tokens.expires_in)
            if tokens.expires_in
            else None
        )
        await components.credentials.upsert(
            user_id,
            provider,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=expires_at,
            scopes=tokens.scopes or cfg.scopes,
            connected_email=email,
        )
    except SQLAlchemyError:
        logger.exception("Could not store %s credential for user %s", provider.label, user_id)
        return _settings_redirect(error="database_error")
    except Exception:
        logger.exception("%s OAuth callback failed for user %s", provider.label, user_id)
        return _settings_redirect(error="unknown_error")

    return _settings_redirect(success=f"{provider.value}_connected")


@router.put("/integrations/fireflies", response_model=StatusResponse)
async def connect_fireflies(
    body: FirefliesKeyRequest,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    """Verify a Fireflies.ai API key and store it encrypted."""
    api_key = body.api_key.strip()
    if not await FirefliesClient(components.http, api_key).verify_api_key():
        raise HTTPException(
            status_code=400,
            detail="Invalid Fireflies API key. Please check the key and try again.",
        )
    await components.credentials.upsert(user_id, Provider.FIREFLIES, access_token=api_key)
    return StatusResponse(message="Fireflies.ai connected")


@router.delete("/integrations/{provider}", response_model=StatusResponse)
async def disconnect(
    provider: Provider,
    user_id: str = Depends(get_current_user_id),
    components: Components = Depends(get_components),
):
    """Remove the stored credential.  Succeeds whether or not one existed."""
    await components.credentials.delete(user_id, provider)
    return StatusResponse(message=f"{provider.label} disconnected")
