"""
Bearer-token guard for protected routes.

Runs outside the response cache so a cached report is never served to an
unauthenticated caller.
"""

from typing import Any, Dict, FrozenSet, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context

from .tokens import TokenLifecycleManager

PROTECTED_PREFIX = "/api/"
PUBLIC_PATHS: FrozenSet[str] = frozenset({
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/refresh-token",
})


def is_protected(path: str) -> bool:
    path = path.rstrip("/") or "/"
    return path.startswith(PROTECTED_PREFIX) and path not in PUBLIC_PATHS


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer`` header."""
    if not authorization:
        raise AuthenticationError("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header format")
    return token.strip()


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Reject protected requests without a valid access token."""

    def __init__(self, app, tokens: TokenLifecycleManager):
        super().__init__(app)
        self.tokens = tokens
        self.logger = get_logger("reporting.auth_guard")

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or not is_protected(request.url.path):
            return await call_next(request)

        try:
            token = bearer_token(request.headers.get("Authorization"))
            claims = self.tokens.verify_access_token(token)
        except AuthenticationError as e:
            self.logger.warning("Request rejected", path=request.url.path, reason=e.message)
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_response().model_dump(exclude_none=True),
                headers={"WWW-Authenticate": "Bearer"},
            )

        user_info: Dict[str, Any] = {"user_id": str(claims["sub"])}
        request.state.user_info = user_info
        set_user_context(user_info["user_id"])
        return await call_next(request)
