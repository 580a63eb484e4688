"""
Identity and engine dependencies for FastAPI.

The service never authenticates users itself: it trusts the
(user id, display name) pair carried by the identity provider's token.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import async_sessionmaker

from rideshare_backend.app.core.exceptions import AuthenticationError
from rideshare_backend.app.core.jwt import decode_access_token
from rideshare_backend.app.db.session import get_session_factory
from rideshare_backend.app.domain.lobby.lobby_engine import LobbyEngine
from rideshare_backend.app.domain.lobby.types import Identity

# HTTP Bearer security scheme (errors are raised below for a uniform 401)
security = HTTPBearer(auto_error=False)

# Column widths of the *_id / *_name columns
MAX_USER_ID_LENGTH = 128
MAX_DISPLAY_NAME_LENGTH = 255


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """
    FastAPI dependency resolving the caller's identity from the bearer token.

    Reads:
        sub: stable user id
        name: display name (falls back to the user id)

    Raises:
        AuthenticationError: 401 if the token is missing, invalid or has no subject
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")
    user_id = str(user_id)
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise AuthenticationError("Invalid token payload")

    # Display names are informational; long ones are cut to fit the store
    display_name = str(payload.get("name") or user_id)[:MAX_DISPLAY_NAME_LENGTH]
    return Identity(user_id=user_id, display_name=display_name)


def get_lobby_engine(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> LobbyEngine:
    """FastAPI dependency for the lobby engine bound to the ride store."""
    return LobbyEngine(session_factory)
