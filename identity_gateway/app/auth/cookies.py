"""
Cookie read/write abstraction for the authentication flow.

The flow never touches request or response objects directly; it reads
incoming cookies and queues outgoing ones through a ``CookieStore``. The
HTTP layer applies the queued writes to the framework response.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict
from starlette.responses import Response


STATE_COOKIE_NAME = "ajp_identity_state"
NONCE_COOKIE_NAME = "ajp_identity_nonce"
REDIRECT_COOKIE_NAME = "ajp_identity_redirect"
ANTI_FORGERY_COOKIE_NAMES = (STATE_COOKIE_NAME, NONCE_COOKIE_NAME, REDIRECT_COOKIE_NAME)
ANTI_FORGERY_MAX_AGE = 60 * 5  # 5 minutes


class Cookie(BaseModel):
    """An outgoing cookie with the attributes every auth cookie shares."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    max_age: int
    http_only: bool = True
    secure: bool = True
    same_site: str = "lax"
    path: str = "/"

    @property
    def is_expired(self) -> bool:
        return self.max_age <= 0


def expired_cookie(name: str) -> Cookie:
    """Cookie that instructs the browser to discard ``name`` immediately."""
    return Cookie(name=name, value="", max_age=0)


class CookieStore(ABC):
    """Key-value view of the browser's cookies for a single request."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        """Return the incoming value of ``name``, or None when absent or empty."""

    @abstractmethod
    def put(self, cookie: Cookie) -> None:
        """Queue ``cookie`` to be sent back to the browser."""

    def set(self, name: str, value: str, max_age: int) -> None:
        self.put(Cookie(name=name, value=value, max_age=max_age))

    def clear(self, name: str) -> None:
        self.put(expired_cookie(name))

    @property
    @abstractmethod
    def pending(self) -> List[Cookie]:
        """Outgoing cookies in the order they were queued (last write per name wins)."""


class RequestCookieStore(CookieStore):
    """
    ``CookieStore`` backed by an incoming cookie mapping.

    Values are percent-encoded on the way out and decoded on the way in so
    redirect paths survive the cookie syntax unchanged.
    """

    def __init__(self, cookies: Optional[Mapping[str, str]] = None):
        self._incoming: Dict[str, str] = dict(cookies or {})
        self._outgoing: Dict[str, Cookie] = {}

    def get(self, name: str) -> Optional[str]:
        raw = self._incoming.get(name)
        if not raw:
            return None
        return unquote(raw)

    def put(self, cookie: Cookie) -> None:
        self._outgoing.pop(cookie.name, None)
        self._outgoing[cookie.name] = cookie

    @property
    def pending(self) -> List[Cookie]:
        return list(self._outgoing.values())

    def apply(self, response: Response) -> Response:
        """Write every queued cookie onto ``response`` as a Set-Cookie header."""
        for cookie in self._outgoing.values():
            response.set_cookie(
                key=cookie.name,
                value=quote(cookie.value, safe=""),
                max_age=cookie.max_age,
                path=cookie.path,
                secure=cookie.secure,
                httponly=cookie.http_only,
                samesite=cookie.same_site,
            )
        return response
