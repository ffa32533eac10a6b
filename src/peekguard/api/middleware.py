"""Middleware: API key authentication."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from peekguard.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def _presented_key(
    credentials: HTTPAuthorizationCredentials | None,
    header_key: str | None,
) -> str | None:
    if credentials is not None:
        return credentials.credentials
    return header_key


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    x_peekguard_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check the presented key against PEEKGUARD_API_KEY.

    The key is accepted as ``Authorization: Bearer <key>`` or as an
    ``X-PeekGuard-Key`` header (frame uploaders that cannot set Authorization).
    With no key configured every request passes.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return

    presented = _presented_key(credentials, x_peekguard_key)
    if presented is None or not secrets.compare_digest(presented.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
