"""
Route protection based on the session cookie.

``AuthGuardMiddleware`` redirects unauthenticated requests for protected
paths to the login page. The FastAPI dependencies give individual routes
the same check with a 401 or a redirect.
"""

import logging
from typing import Iterable, Optional

from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import RedirectResponse, Response
from starlette.types import ASGIApp

from ..models import Identity
from .cookies import RequestCookieStore
from .flow import NO_STORE_HEADERS, AuthFlow
from .session import SessionCodec

logger = logging.getLogger(__name__)


def matches_pattern(path: str, pattern: str) -> bool:
    """``/app/*`` matches by prefix; any other pattern must match exactly."""
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return path == pattern


def is_protected(path: str, patterns: Iterable[str]) -> bool:
    return any(matches_pattern(path, pattern) for pattern in patterns)


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """
    Redirect to ``login_path`` when a protected path is requested without a
    valid session. Unprotected paths pass straight through.
    """

    def __init__(
        self,
        app: ASGIApp,
        codec: SessionCodec,
        protected_paths: Iterable[str],
        login_path: str = "/login",
    ):
        super().__init__(app)
        self.codec = codec
        self.protected_paths = tuple(protected_paths)
        self.login_path = login_path

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not is_protected(path, self.protected_paths):
            return await call_next(request)

        if self.codec.read(RequestCookieStore(request.cookies)) is not None:
            return await call_next(request)

        logger.info("Redirecting unauthenticated request", extra={"path": path})
        return RedirectResponse(url=self.login_path, status_code=302, headers=NO_STORE_HEADERS)


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_auth_flow(request: Request) -> AuthFlow:
    return request.app.state.auth_flow


async def get_optional_user(request: Request) -> Optional[Identity]:
    """
    Identity from the session cookie, or None.

    Usage:
        @app.get("/optional-auth")
        async def route(user: Optional[Identity] = Depends(get_optional_user)):
            ...
    """
    return get_auth_flow(request).current_user(RequestCookieStore(request.cookies))


async def require_user(request: Request) -> Identity:
    """
    Identity from the session cookie; 401 when there is none.

    Usage:
        @app.get("/protected")
        async def protected_route(user: Identity = Depends(require_user)):
            return {"user_id": user.subject}
    """
    identity = await get_optional_user(request)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers=dict(NO_STORE_HEADERS),
        )
    return identity


async def require_user_or_redirect(request: Request) -> Identity:
    """Like ``require_user`` but sends browsers to the login page instead of a 401."""
    identity = await get_optional_user(request)
    if identity is None:
        login_path = get_auth_flow(request).config.login_path
        raise HTTPException(
            status_code=status.HTTP_302_FOUND,
            detail="Login required",
            headers={"Location": login_path, **NO_STORE_HEADERS},
        )
    return identity
