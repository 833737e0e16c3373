"""
Authentication routes for OIDC login and callback handling.

This module exposes the authorization code flow with Microsoft Entra ID
over HTTP. All protocol logic lives in ``AuthFlow``; the handlers only
translate query parameters and cookies in, and results out.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from starlette.responses import Response

from ..models import Identity, SessionResponse
from .cookies import RequestCookieStore
from .flow import AuthFlow, AuthFlowResult
from .guard import get_auth_flow, require_user


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


def to_response(result: AuthFlowResult, cookies: RequestCookieStore) -> Response:
    """Render a flow result and attach the cookies it queued."""
    if result.is_redirect:
        response: Response = RedirectResponse(url=result.location, status_code=result.status_code)
    elif result.media_type == "application/json":
        response = JSONResponse(content=result.body, status_code=result.status_code)
    else:
        response = PlainTextResponse(content=result.body or "", status_code=result.status_code)

    response.headers.update(result.headers)
    return cookies.apply(response)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(
    request: Request,
    redirect: Optional[str] = Query(None, description="Same-origin path to return to after login"),
    flow: AuthFlow = Depends(get_auth_flow),
):
    """
    Initiate OIDC login flow by redirecting to Microsoft Entra ID.

    Sets short-lived state, nonce and (optionally) redirect cookies that
    the callback uses to correlate the round trip.
    """
    cookies = RequestCookieStore(request.cookies)
    return to_response(flow.begin_login(cookies, redirect=redirect), cookies)


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Entra ID"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    flow: AuthFlow = Depends(get_auth_flow),
):
    """
    Handle OAuth callback from Microsoft Entra ID.

    Returns:
        302 into the application with the session cookie set,
        400 for missing or mismatched correlation,
        500 when the provider exchange or token validation fails
    """
    cookies = RequestCookieStore(request.cookies)
    result = await flow.handle_callback(
        cookies,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )
    return to_response(result, cookies)


# =============================================================================
# Logout / Session Endpoints
# =============================================================================

@auth_router.get("/logout", response_class=RedirectResponse)
async def logout(
    request: Request,
    redirect: Optional[str] = Query(None, description="Same-origin path to go to after logout"),
    flow: AuthFlow = Depends(get_auth_flow),
):
    cookies = RequestCookieStore(request.cookies)
    return to_response(flow.logout(cookies, redirect=redirect), cookies)


@auth_router.get("/session", response_model=SessionResponse)
async def session(request: Request, flow: AuthFlow = Depends(get_auth_flow)):
    """Current identity as ``{"user": ...}`` or ``{"user": null}``; never cached."""
    cookies = RequestCookieStore(request.cookies)
    return to_response(flow.session(cookies), cookies)


@auth_router.get("/me")
async def me(user: Identity = Depends(require_user)) -> Dict[str, Any]:
    return user.to_public_dict()
