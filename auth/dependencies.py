"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Tokens are read in priority order:
  1. Cookie ("__at__" / "__rt__") -- set by every successful sign-in.
  2. Authorization: Bearer <token> header -- API clients holding the
     authorization token from a response body.

The refresh token only travels as a cookie or in an X-Refresh-Token header;
it is never accepted as a Bearer token.

Layer rule: no imports from api/ or cache/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.models import SecurityToken
from auth.service import AuthenticationService
from auth.tokens import AUTHORIZATION_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE
from core.config import Settings


def get_service(request: Request) -> AuthenticationService:
    """Return the AuthenticationService wired into app.state by the lifespan."""
    return request.app.state.auth_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def authorization_token(request: Request) -> Optional[str]:
    """Return the raw authorization token, or None if the request carries none.

    Verification is the token service's job; a missing token surfaces there
    as InvalidOrNullToken.
    """
    token: Optional[str] = request.cookies.get(AUTHORIZATION_TOKEN_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def security_token(request: Request) -> SecurityToken:
    """Collect the token pair presented with a refresh request."""
    refresh = request.cookies.get(REFRESH_TOKEN_COOKIE) or request.headers.get("X-Refresh-Token", "")
    return SecurityToken(
        authorization_token=authorization_token(request) or "",
        refresh_token=refresh,
    )
