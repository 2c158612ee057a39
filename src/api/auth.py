"""Caller identity for the API.

Authentication is done by the identity gateway in front of this service,
which forwards the verified user id in ``AUTH_USER_HEADER``.  When
``AUTH_GATEWAY_SECRET`` is set, requests must also carry it in
``X-Auth-Gateway-Secret`` so only the gateway can assert identities.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request, status

from src import config

logger = logging.getLogger(__name__)

GATEWAY_SECRET_HEADER = "X-Auth-Gateway-Secret"


async def get_current_user_id(request: Request) -> str:
    """FastAPI dependency: the authenticated user id, or 401."""
    if config.AUTH_GATEWAY_SECRET:
        presented = request.headers.get(GATEWAY_SECRET_HEADER, "")
        if not hmac.compare_digest(presented, config.AUTH_GATEWAY_SECRET):
            logger.warning("Rejected request without a valid gateway secret")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    user_id = request.headers.get(config.AUTH_USER_HEADER, "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id
