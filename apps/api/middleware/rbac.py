"""Attach the caller behind the ``Authorization`` header to each request.

Ticket routes read ``request.state.user`` through ``get_current_user``.
Malformed or unknown credentials are rejected here with 401 before any
ticket handler runs; health probes are served without looking at them.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from apps.api.dependencies.auth import resolve_user_from_token

PUBLIC_PATH_PREFIXES: tuple[str, ...] = ("/ping",)

_INVALID_CREDENTIALS = "Invalid authentication credentials"


def _bearer_token(header: str | None) -> str | None:
    """Extract the token from a ``Bearer <token>`` header, ``None`` when absent."""

    if not header:
        return None
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        raise HTTPException(status_code=401, detail=_INVALID_CREDENTIALS)
    return credentials.strip()


class RBACMiddleware(BaseHTTPMiddleware):
    """Resolve the helpdesk user for every non-public request."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path.startswith(PUBLIC_PATH_PREFIXES):
            return await call_next(request)

        try:
            request.state.user = resolve_user_from_token(_bearer_token(request.headers.get("Authorization")))
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        return await call_next(request)
