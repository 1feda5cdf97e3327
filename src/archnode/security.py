from __future__ import annotations

import hmac
from collections.abc import Awaitable, Callable

from fastapi import Header, HTTPException, status


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


def bearer_token_guard(expected_token: Callable[[], str]) -> Callable[..., Awaitable[None]]:
    """
    Build a FastAPI dependency that accepts only `Authorization: Bearer <token>`.

    `expected_token` is read on every request, so a reloaded state file takes
    effect without rebuilding the app.
    """

    async def _dependency(authorization: str | None = Header(default=None)) -> None:
        token = _extract_bearer(authorization)
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized.")
        if not hmac.compare_digest(token.encode("utf-8"), expected_token().encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized.")

    return _dependency
