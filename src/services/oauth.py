"""OAuth 2.0 authorization-code helpers for Google and Asana.

Covers the four provider round-trips the service needs: building the
consent URL, exchanging the callback code, refreshing an access token, and
looking up the connected account's email.  The ``state`` parameter is a
signed envelope binding the flow to the user who started it.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass, field
from urllib.parse import urlencode

import httpx

from src import config
from src.services.providers import Provider

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """A token endpoint rejected the request or could not be reached."""


@dataclass(frozen=True)
class OAuthProviderConfig:
    provider: Provider
    client_id: str
    client_secret: str = field(repr=False)
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    scopes: tuple[str, ...]
    extra_authorize_params: dict[str, str] = field(default_factory=dict)

    @property
    def redirect_uri(self) -> str:
        return f"{config.APP_URL}/api/oauth/{self.provider.value}/callback"

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class TokenResponse:
    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_in: int | None = None
    scopes: tuple[str, ...] = ()


GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
)


def get_oauth_config(provider: Provider) -> OAuthProviderConfig:
    """Return the OAuth client configuration for *provider*.

    Raises:
        ValueError: *provider* does not use OAuth.
    """
    if provider is Provider.GOOGLE:
        return OAuthProviderConfig(
            provider=provider,
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            authorization_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
            token_endpoint="https://oauth2.googleapis.com/token",
            userinfo_endpoint="https://www.googleapis.com/oauth2/v2/userinfo",
            scopes=GOOGLE_SCOPES,
            # Offline access plus forced consent so Google issues a refresh token.
            extra_authorize_params={"access_type": "offline", "prompt": "consent"},
        )
    if provider is Provider.ASANA:
        return OAuthProviderConfig(
            provider=provider,
            client_id=config.ASANA_CLIENT_ID,
            client_secret=config.ASANA_CLIENT_SECRET,
            authorization_endpoint="https://app.asana.com/-/oauth_authorize",
            token_endpoint="https://app.asana.com/-/oauth_token",
            userinfo_endpoint="https://app.asana.com/api/1.0/users/me",
            scopes=("default",),
        )
    raise ValueError(f"{provider.value} does not use OAuth")


# ── Signed state ────────────────────────────────────────────────────

def _sign(payload: str) -> str:
    key = config.ENCRYPTION_KEY.encode("utf-8")
    return hmac.new(key, payload.encode("ascii"), hashlib.sha256).hexdigest()


def create_state(user_id: str) -> str:
    """Build ``<base64url(json)>.<hmac>`` carrying the user id and a nonce."""
    body = json.dumps({"user_id": user_id, "nonce": secrets.token_hex(16)})
    payload = base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{payload}.{_sign(payload)}"


def verify_state(state: str, user_id: str) -> bool:
    """Return ``True`` only if *state* is ours, intact, and issued to *user_id*."""
    payload, _, signature = state.partition(".")
    if not payload or not signature:
        return False
    if not hmac.compare_digest(_sign(payload), signature):
        return False
    try:
        padded = payload + "=" * (-len(payload) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded))
    except (ValueError, TypeError):
        return False
    return isinstance(data, dict) and data.get("user_id") == user_id


# ── Provider round-trips ────────────────────────────────────────────

def build_authorization_url(provider: Provider, user_id: str) -> str:
    cfg = get_oauth_config(provider)
    params = {
        "client_id": cfg.client_id,
        "redirect_uri": cfg.redirect_uri,
        "response_type": "code",
        "scope": " ".join(cfg.scopes),
        "state": create_state(user_id),
        **cfg.extra_authorize_params,
    }
    return f"{cfg.authorization_endpoint}?{urlencode(params)}"


async def _post_token_endpoint(
    http: httpx.AsyncClient, cfg: OAuthProviderConfig, form: dict[str, str],
) -> TokenResponse:
    form = {"client_id": cfg.client_id, "client_secret": cfg.client_secret, **form}
    try:
        response = await http.post(cfg.token_endpoint, data=form)
    except httpx.HTTPError as exc:
        raise OAuthError(f"{cfg.provider.label} token endpoint unreachable: {exc}") from exc

    if response.status_code >= 400:
        logger.warning(
            "%s token endpoint returned %d", cfg.provider.label, response.status_code,
        )
        raise OAuthError(f"{cfg.provider.label} token request failed ({response.status_code})")

    try:
        data = response.json()
    except ValueError as exc:
        raise OAuthError(f"{cfg.provider.label} token response was not JSON") from exc
    if not isinstance(data, dict) or not data.get("access_token"):
        raise OAuthError(f"{cfg.provider.label} token response had no access_token")

    expires_in = data.get("expires_in")
    try:
        expires_in = int(expires_in) if expires_in else None
    except (TypeError, ValueError) as exc:
        raise OAuthError(
            f"{cfg.provider.label} token response had an invalid expires_in",
        ) from exc
    return TokenResponse(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or None,
        expires_in=expires_in,
        scopes=tuple((data.get("scope") or "").split()),
    )


async def exchange_code(http: httpx.AsyncClient, provider: Provider, code: str) -> TokenResponse:
    cfg = get_oauth_config(provider)
    return await _post_token_endpoint(http, cfg, {
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": cfg.redirect_uri,
    })


async def refresh_access_token(
    http: httpx.AsyncClient, provider: Provider, refresh_token: str,
) -> TokenResponse:
    """Exchange *refresh_token* for a new access token.

    Raises:
        OAuthError: network failure or the provider rejected the token.
    """
    cfg = get_oauth_config(provider)
    return await _post_token_endpoint(http, cfg, {
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    })


async def fetch_account_email(
    http: httpx.AsyncClient, provider: Provider, access_token: str,
) -> str | None:
    """Best-effort lookup of the connected account's email address."""
    cfg = get_oauth_config(provider)
    try:
        response = await http.get(
            cfg.userinfo_endpoint, headers={"Authorization": f"Bearer {access_token}"},
        )
    except httpx.HTTPError:
        logger.warning("Could not fetch %s account info", cfg.provider.label)
        return None
    if response.status_code >= 400:
        return None

    try:
        data = response.json()
    except ValueError:
        logger.warning("%s account info was not JSON", cfg.provider.label)
        return None
    if not isinstance(data, dict):
        return None
    if provider is Provider.ASANA:
        return (data.get("data") or {}).get("email")
    return data.get("email")
