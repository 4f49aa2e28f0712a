"""Agent bearer-token authentication."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dispatch_console.core.config import get_settings

LOGGER = logging.getLogger(__name__)

DEFAULT_TAB_ID = "default"


@dataclass
class AuthAgent:
    """Authenticated agent (identity-provider account)."""

    uid: str
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_jwt_payload(cls, payload: dict) -> "AuthAgent":
        # {"sub": "<firebase uid>", "email": "...", "name": "..."}
        return cls(
            uid=payload.get("user_id") or payload.get("sub", ""),
            email=payload.get("email"),
            name=payload.get("name"),
        )


class JWTAuthError(Exception):
    pass


def verify_agent_token(token: str) -> AuthAgent:
    """Verify an agent bearer token.

    Raises:
        JWTAuthError: token missing a subject, expired or invalid
    """
    settings = get_settings()

    if not settings.auth_jwt_secret:
        LOGGER.warning("AUTH_JWT_SECRET not configured, authentication disabled")
        raise JWTAuthError("Authentication not configured")

    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise JWTAuthError("Token has expired")
    except jwt.InvalidTokenError as e:
        LOGGER.debug(f"Invalid JWT token: {e}")
        raise JWTAuthError("Invalid token")

    agent = AuthAgent.from_jwt_payload(payload)
    if not agent.uid:
        raise JWTAuthError("Token has no subject")
    return agent


_bearer_scheme = HTTPBearer(auto_error=False)


async def require_agent(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthAgent:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_agent_token(credentials.credentials)
    except JWTAuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_tab_id(x_console_tab: Optional[str] = Header(None, alias="X-Console-Tab")) -> str:
    """Console tab that scopes session state."""
    tab_id = (x_console_tab or "").strip() or DEFAULT_TAB_ID
    return tab_id
