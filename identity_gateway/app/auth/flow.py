"""
Authentication flow for the OIDC authorization code grant.

The flow spans two HTTP round trips (login redirect, provider callback)
and keeps no server-side state between them: the in-progress login lives
in short-lived ``state``/``nonce`` cookies carried by the browser.

States::

    IDLE --begin_login--> LOGIN_INITIATED --(browser returns)--> CALLBACK_PENDING
    CALLBACK_PENDING --exchange/validate/resolve/mint--> AUTHENTICATED
    CALLBACK_PENDING --any failure--> FAILED

Results are framework-neutral ``AuthFlowResult`` values; the HTTP layer
turns them into responses and applies queued cookies.
"""

import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..config import AuthConfig
from ..models import Identity
from .cookies import (
    ANTI_FORGERY_COOKIE_NAMES,
    ANTI_FORGERY_MAX_AGE,
    NONCE_COOKIE_NAME,
    REDIRECT_COOKIE_NAME,
    STATE_COOKIE_NAME,
    CookieStore,
)
from .errors import (
    AuthError,
    MissingNonceError,
    MissingParameterError,
    ProviderError,
    StateMismatchError,
)
from .providers import AuthProvider, create_auth_provider
from .session import SessionCodec

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store"}


# =============================================================================
# State Machine
# =============================================================================

class LoginState(str, Enum):
    IDLE = "idle"
    LOGIN_INITIATED = "login_initiated"
    CALLBACK_PENDING = "callback_pending"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class Transition:
    source: LoginState
    target: LoginState
    requires: Tuple[str, ...]


# Correlating values each transition needs to have seen.
TRANSITIONS: Tuple[Transition, ...] = (
    Transition(LoginState.IDLE, LoginState.LOGIN_INITIATED, ()),
    Transition(LoginState.LOGIN_INITIATED, LoginState.CALLBACK_PENDING, ("state_cookie", "nonce_cookie")),
    Transition(LoginState.CALLBACK_PENDING, LoginState.AUTHENTICATED, ("code", "state", "nonce")),
    Transition(LoginState.CALLBACK_PENDING, LoginState.FAILED, ()),
    Transition(LoginState.IDLE, LoginState.FAILED, ()),
)


def can_transition(source: LoginState, target: LoginState) -> bool:
    return any(t.source == source and t.target == target for t in TRANSITIONS)


def advance(source: LoginState, target: LoginState) -> LoginState:
    if not can_transition(source, target):
        raise ValueError(f"Illegal login transition {source.value} -> {target.value}")
    return target


def callback_state(cookies: CookieStore) -> LoginState:
    """State of an incoming callback, derived from the correlation cookies it carries."""
    if cookies.get(STATE_COOKIE_NAME) and cookies.get(NONCE_COOKIE_NAME):
        return LoginState.CALLBACK_PENDING
    return LoginState.IDLE


@dataclass
class AuthFlowResult:
    """Outcome of one flow step, independent of the web framework."""

    status_code: int
    state: LoginState
    location: Optional[str] = None
    body: Any = None
    media_type: str = "text/plain"
    headers: Dict[str, str] = field(default_factory=lambda: dict(NO_STORE_HEADERS))
    error: Optional[AuthError] = None

    @property
    def is_redirect(self) -> bool:
        return self.location is not None


# =============================================================================
# Helpers
# =============================================================================

def generate_token() -> str:
    """256 bits of URL-safe randomness for state and nonce values."""
    return secrets.token_urlsafe(32)


def is_safe_redirect(url: Optional[str]) -> bool:
    """
    Accept only same-origin relative paths.

    Rejects absolute URLs, protocol-relative ``//host`` URLs and the
    ``/\\host`` form browsers also treat as protocol-relative.
    """
    if not url or not url.startswith("/"):
        return False
    if url.startswith("//") or url.startswith("/\\"):
        return False
    return not any(ord(ch) < 0x20 or ch == "\x7f" for ch in url)


def _constant_time_equals(a: str, b: str) -> bool:
    return secrets.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


# =============================================================================
# Flow
# =============================================================================

class AuthFlow:
    """
    Login, callback, logout and session introspection.

    Holds only immutable collaborators, so one instance serves every
    request concurrently.
    """

    def __init__(
        self,
        config: AuthConfig,
        provider: Optional[AuthProvider] = None,
        codec: Optional[SessionCodec] = None,
    ):
        self.config = config
        self.provider = provider or create_auth_provider(config)
        self.codec = codec or SessionCodec(config)

    # =========================================================================
    # Begin Login
    # =========================================================================

    def begin_login(self, cookies: CookieStore, redirect: Optional[str] = None) -> AuthFlowResult:
        """
        Redirect to the provider with fresh state and nonce cookies.

        An optional same-origin ``redirect`` is remembered for after the
        callback; unsafe values are ignored.
        """
        state = generate_token()
        nonce = generate_token()

        cookies.set(STATE_COOKIE_NAME, state, ANTI_FORGERY_MAX_AGE)
        cookies.set(NONCE_COOKIE_NAME, nonce, ANTI_FORGERY_MAX_AGE)
        if is_safe_redirect(redirect):
            cookies.set(REDIRECT_COOKIE_NAME, redirect, ANTI_FORGERY_MAX_AGE)
        elif redirect:
            logger.warning("Ignoring unsafe post-login redirect", extra={"redirect": redirect})

        logger.info("Login initiated", extra={"provider": self.config.provider})
        return AuthFlowResult(
            status_code=302,
            state=advance(LoginState.IDLE, LoginState.LOGIN_INITIATED),
            location=self.provider.authorization_url(state, nonce),
        )

    # =========================================================================
    # Callback
    # =========================================================================

    async def handle_callback(
        self,
        cookies: CookieStore,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> AuthFlowResult:
        """
        Complete the login started by ``begin_login``.

        Correlation is checked before any provider call or provider error is
        reported. The state, nonce and redirect cookies are cleared whatever
        the outcome.
        """
        current = callback_state(cookies)
        redirect_target = cookies.get(REDIRECT_COOKIE_NAME)
        try:
            identity = await self._complete_login(cookies, code, state, error, error_description)
        except AuthError as e:
            self._clear_anti_forgery(cookies)
            return self._failure(e, current)

        self._clear_anti_forgery(cookies)
        cookies.put(self.codec.mint(identity))

        location = redirect_target if is_safe_redirect(redirect_target) else self.config.post_login_redirect_path
        logger.info(
            "Login completed",
            extra={"user_id": identity.subject, "role_count": len(identity.roles)},
        )
        return AuthFlowResult(
            status_code=302,
            state=advance(current, LoginState.AUTHENTICATED),
            location=location,
        )

    async def _complete_login(
        self,
        cookies: CookieStore,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
        error_description: Optional[str],
    ) -> Identity:
        # A provider error callback carries no code, but it must still carry state.
        if not state or (not code and not error):
            raise MissingParameterError("Missing code or state")

        expected_state = cookies.get(STATE_COOKIE_NAME)
        if not expected_state or not _constant_time_equals(expected_state, state):
            logger.warning("Callback state does not match state cookie")
            raise StateMismatchError("Invalid state")

        if error:
            raise ProviderError(error_description or error)

        nonce = cookies.get(NONCE_COOKIE_NAME)
        if not nonce:
            raise MissingNonceError("Missing nonce")

        tokens = await self.provider.exchange_code(code)
        claims = await self.provider.validate_id_token(tokens.id_token, nonce)
        return await self.provider.resolve_identity(claims, tokens)

    def _failure(self, error: AuthError, current: LoginState) -> AuthFlowResult:
        if isinstance(error, ProviderError):
            logger.error(f"Authentication failed: {error}", extra={"error_type": type(error).__name__})
            body = f"Authentication failed: {error}"
        else:
            logger.warning(f"Rejected callback: {error}", extra={"error_type": type(error).__name__})
            body = str(error)
        return AuthFlowResult(
            status_code=error.status_code,
            state=advance(current, LoginState.FAILED),
            body=body,
            error=error,
        )

    def _clear_anti_forgery(self, cookies: CookieStore) -> None:
        for name in ANTI_FORGERY_COOKIE_NAMES:
            cookies.clear(name)

    # =========================================================================
    # Logout
    # =========================================================================

    def logout(self, cookies: CookieStore, redirect: Optional[str] = None) -> AuthFlowResult:
        """Clear the session and any in-progress login, then redirect. Never validates the session."""
        cookies.put(self.codec.empty())
        self._clear_anti_forgery(cookies)

        location = redirect if is_safe_redirect(redirect) else self.config.logout_redirect_path
        return AuthFlowResult(status_code=302, state=LoginState.IDLE, location=location)

    # =========================================================================
    # Session Introspection
    # =========================================================================

    def current_user(self, cookies: CookieStore) -> Optional[Identity]:
        return self.codec.read(cookies)

    def session(self, cookies: CookieStore) -> AuthFlowResult:
        """Report the current identity as ``{"user": ... | null}``. Never fails."""
        identity = self.current_user(cookies)
        return AuthFlowResult(
            status_code=200,
            state=LoginState.AUTHENTICATED if identity else LoginState.IDLE,
            body={"user": identity.to_public_dict() if identity else None},
            media_type="application/json",
        )
