"""
Session token middleware

Extracts the caller's marketplace token so it can be forwarded to the
backend. Token validation is the backend's job; this layer only requires
that one is present.
"""
import hashlib
from typing import Callable, List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from snapfest.core.logging_config import logger


def session_key_for(token: str) -> str:
    """Stable, non-reversible key identifying a token's session"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]


class SessionTokenMiddleware(BaseHTTPMiddleware):
    """
    Attach ``access_token`` and ``session_key`` to ``request.state``

    The token comes from an ``Authorization: Bearer`` header or, failing
    that, the ``access_token`` cookie.
    """

    EXEMPTED_URLS: List[str] = [
        "/",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/health",
    ]

    EXEMPTED_PREFIXES: List[str] = [
        "/docs/",
    ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.access_token = None
        request.state.session_key = None

        if self._is_exempted(request.url.path):
            return await call_next(request)

        token = self._extract_token(request)
        if not token:
            logger.debug(f"Session token not found for {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Not authenticated", "status_code": status.HTTP_401_UNAUTHORIZED},
            )

        request.state.access_token = token
        request.state.session_key = session_key_for(token)
        return await call_next(request)

    def _is_exempted(self, path: str) -> bool:
        if path in self.EXEMPTED_URLS:
            return True
        return any(path.startswith(prefix) for prefix in self.EXEMPTED_PREFIXES)

    @staticmethod
    def _extract_token(request: Request) -> Optional[str]:
        header = request.headers.get("Authorization") or ""
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
        return request.cookies.get("access_token") or None
