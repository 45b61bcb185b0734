"""
Authentication for the guard console and admin API.

The console is a single shared account, so HTTP Basic auth against
ADMIN_USER / ADMIN_PASS is all that is needed. The LINE webhook is not
covered here; it is authenticated by its request signature.
"""

import os
import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

# auto_error=False so a missing header yields our 401 (with the realm)
_basic = HTTPBasic(realm="Guard Area", auto_error=False)


def _expected_credentials() -> tuple[str, str]:
    return os.getenv("ADMIN_USER", "guard"), os.getenv("ADMIN_PASS", "change_me")


async def require_admin(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> str:
    """
    Verify the Basic auth credentials on an admin request.

    Returns:
        The authenticated username.

    Raises:
        HTTPException: 401 if credentials are missing or wrong
    """
    unauthorized = HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": 'Basic realm="Guard Area"'},
    )
    if credentials is None:
        raise unauthorized

    expected_user, expected_pass = _expected_credentials()
    user_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"), expected_user.encode("utf-8")
    )
    pass_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), expected_pass.encode("utf-8")
    )
    if not (user_ok and pass_ok):
        raise unauthorized

    return credentials.username
