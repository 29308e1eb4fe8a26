"""Admin authentication for the session listing and trace endpoints.

  ADMIN_API_KEY set, token matches    -> allow
  ADMIN_API_KEY set, token wrong      -> 401
  ADMIN_API_KEY unset, DEBUG=true     -> allow
  ADMIN_API_KEY unset, DEBUG=false    -> 403

HTTP endpoints take the token as a Bearer header. The trace WebSocket takes
it as ``?token=`` because browsers cannot set headers on a WebSocket.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booker.config import settings

log = logging.getLogger("booker.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


def _admin_status(token: str | None) -> int | None:
    """None when access is granted, otherwise the HTTP status to refuse with."""
    key = settings.admin_api_key
    if not key:
        return None if settings.debug else status.HTTP_403_FORBIDDEN
    if not token or not secrets.compare_digest(token, key):
        return status.HTTP_401_UNAUTHORIZED
    return None


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    refused = _admin_status(credentials.credentials if credentials else None)
    if refused == status.HTTP_403_FORBIDDEN:
        raise HTTPException(
            status_code=refused,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )
    if refused == status.HTTP_401_UNAUTHORIZED:
        log.warning("Rejected admin request with a missing or invalid token")
        raise HTTPException(
            status_code=refused,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def authorize_admin_ws(websocket: WebSocket, token: str) -> bool:
    """Close ``websocket`` and return False unless ``token`` grants admin access."""
    refused = _admin_status(token)
    if refused is None:
        return True
    if refused == status.HTTP_403_FORBIDDEN:
        await websocket.close(code=4003, reason="Admin API key not configured")
    else:
        log.warning("Rejected trace stream with a missing or invalid token")
        await websocket.close(code=4001, reason="Unauthorized")
    return False
