from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .settings import get_settings

_security = HTTPBasic(auto_error=False)

OWNER_HEADER = "X-Owner-Id"


def _unauthorized(detail: str, basic: bool) -> HTTPException:
    headers = {"WWW-Authenticate": "Basic"} if basic else None
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=headers)


# PUBLIC_INTERFACE
def get_owner_id(
    creds: Optional[HTTPBasicCredentials] = Depends(_security),
    x_owner_id: Optional[str] = Header(default=None, alias=OWNER_HEADER),
) -> str:
    """
    FastAPI dependency resolving the owner every core call is scoped to.

    Behavior:
    - If ENABLE_BASIC_AUTH is true: credentials are checked against
      BASIC_AUTH_USERNAME/BASIC_AUTH_PASSWORD and the username is the owner.
      Missing or invalid credentials raise 401 with WWW-Authenticate: Basic.
    - Otherwise an upstream gateway is trusted to pass the authenticated
      identity in the X-Owner-Id header; a missing header is a 401.
    """
    settings = get_settings()

    if not settings.enable_basic_auth:
        owner = (x_owner_id or "").strip()
        if not owner:
            raise _unauthorized("Not authenticated", basic=False)
        return owner

    if creds is None or not creds.username or creds.password is None:
        raise _unauthorized("Not authenticated", basic=True)

    expected_user = settings.basic_auth_username
    expected_pass = settings.basic_auth_password
    if expected_user is None or expected_pass is None:
        # Misconfiguration: auth enabled but username/password not provided
        raise _unauthorized("Server authentication not configured", basic=True)

    user_ok = secrets.compare_digest(creds.username, expected_user)
    pass_ok = secrets.compare_digest(creds.password, expected_pass)
    if not (user_ok and pass_ok):
        raise _unauthorized("Invalid authentication credentials", basic=True)
    return creds.username
