"""Shared-secret access guard for both transports.

The secret is looked up on every check so a rotated `API_KEY` takes
effect immediately, including for already-open WebSocket connections.
"""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header, HTTPException, WebSocket

from scorehub.config import get_settings
from scorehub.errors import ProtocolError

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY = "apiKey"


def is_authorized(token: Optional[str]) -> bool:
    """Return True if `token` matches the configured API key."""
    if not token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), get_settings().api_key.encode("utf-8"))


def check_token(token: Optional[str]) -> None:
    if not token:
        raise ProtocolError("API key is required", code="UNAUTHORIZED")
    if not is_authorized(token):
        raise ProtocolError("Invalid API key", code="UNAUTHORIZED")


async def require_api_key(x_api_key: Optional[str] = Header(None, alias=API_KEY_HEADER)) -> None:
    """FastAPI dependency guarding every HTTP route."""
    if not is_authorized(x_api_key):
        raise HTTPException(status_code=401, detail="api key missing or invalid")


def handshake_token(websocket: WebSocket) -> Optional[str]:
    """Credential presented when the WebSocket was opened (header, then query)."""
    return websocket.headers.get(API_KEY_HEADER) or websocket.query_params.get(API_KEY_QUERY)
