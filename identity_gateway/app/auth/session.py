"""
JWT Session Management Module
==============================

Issues and verifies the stateless session JWT that carries a resolved
identity between requests. Sessions are HS256-signed with the configured
secret and live entirely in a browser cookie; there is no server-side
session store, so a session cannot be revoked before it expires.

Verification never raises: a tampered, expired or malformed session is
reported as "no session", exactly like a missing cookie.
"""

import logging
import time
from typing import Any, Dict, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from pydantic import ValidationError

from ..config import AuthConfig
from ..models import Identity, SessionPayload
from .cookies import Cookie, CookieStore

logger = logging.getLogger(__name__)

SESSION_JWT_ALGORITHM = "HS256"


class SessionCodec:
    """
    Mint, verify and discard session tokens.

    Example:
        >>> codec = SessionCodec(config)
        >>> cookie = codec.mint(identity)
        >>> codec.verify(cookie.value).subject == identity.subject
        True
    """

    def __init__(self, config: AuthConfig):
        self.secret = config.jwt_secret
        self.cookie_name = config.session_cookie_name
        self.default_max_age = config.session_max_age

    # =========================================================================
    # Token Creation
    # =========================================================================

    def encode(self, identity: Identity, max_age_seconds: Optional[int] = None, now: Optional[int] = None) -> str:
        """
        Encode ``identity`` into a signed session JWT.

        Args:
            identity: Resolved identity to carry
            max_age_seconds: Lifetime; defaults to the configured session max age
            now: Issue time in Unix seconds (defaults to the current time)

        Returns:
            Encoded JWT string
        """
        max_age = self.default_max_age if max_age_seconds is None else max_age_seconds
        issued_at = int(time.time()) if now is None else int(now)

        session = SessionPayload.from_identity(identity, issued_at=issued_at, max_age=max_age)
        payload: Dict[str, Any] = session.model_dump()
        payload.update({
            "sub": session.userId,
            "iat": session.issuedAt,
            "exp": session.expiresAt,
        })

        token = jwt.encode(payload, self.secret, algorithm=SESSION_JWT_ALGORITHM)

        logger.debug(
            "Created session JWT",
            extra={"user_id": identity.subject, "expires_in_seconds": max_age},
        )
        return token

    def mint(self, identity: Identity, max_age_seconds: Optional[int] = None, now: Optional[int] = None) -> Cookie:
        """Encode ``identity`` and wrap it in the session cookie."""
        max_age = self.default_max_age if max_age_seconds is None else max_age_seconds
        return Cookie(
            name=self.cookie_name,
            value=self.encode(identity, max_age_seconds=max_age, now=now),
            max_age=max_age,
        )

    def empty(self) -> Cookie:
        """Session cookie with no payload that expires immediately (logout)."""
        return Cookie(name=self.cookie_name, value="", max_age=0)

    # =========================================================================
    # Token Verification
    # =========================================================================

    def verify(self, token: Optional[str]) -> Optional[Identity]:
        """
        Verify a session JWT and return the identity it carries.

        Returns:
            The identity, or None when the token is empty, badly signed,
            expired, malformed, or lacks ``userId``.
        """
        if not token:
            return None

        try:
            decoded = jwt.decode(
                token,
                self.secret,
                algorithms=[SESSION_JWT_ALGORITHM],
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "require": ["exp", "iat"],
                },
            )
        except ExpiredSignatureError:
            logger.info("Session JWT expired")
            return None
        except InvalidTokenError as e:
            logger.warning(f"Invalid session JWT: {e}")
            return None

        try:
            session = SessionPayload.model_validate(decoded)
        except ValidationError:
            logger.warning("Session JWT payload is malformed or missing userId")
            return None

        return session.to_identity()

    def read(self, cookies: CookieStore) -> Optional[Identity]:
        """Verify the session cookie found in ``cookies``, if any."""
        return self.verify(cookies.get(self.cookie_name))


__all__ = [
    "SESSION_JWT_ALGORITHM",
    "SessionCodec",
]
