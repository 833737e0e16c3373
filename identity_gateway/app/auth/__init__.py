"""
Authentication Package

This package handles authentication and role resolution for the gateway
using Microsoft Entra ID and OpenID Connect (OIDC).

Key responsibilities:
- OIDC login flow initiation and callback handling
- ID token validation using JWKS from Microsoft Entra ID
- Best-effort role enrichment from Microsoft Graph
- Stateless session JWT issuance and validation

Modules:
- errors: Exception hierarchy (protocol vs. provider failures)
- session: Session JWT codec (mint, verify, empty)
- utils: JWKS fetching, caching, and ID token verification utilities
- providers: Identity provider contract and the Entra ID implementation
- cookies: Cookie read/write abstraction used by the flow
- flow: The login/callback/logout/session state machine
- guard: Route protection middleware and dependencies
- routes: FastAPI endpoints (/auth/login, /auth/callback, ...)

The authentication flow:
1. Browser hits /auth/login, gets state/nonce cookies and a redirect
2. User authenticates with Microsoft Entra ID
3. Entra ID redirects to /auth/callback with an authorization code
4. Gateway exchanges the code, validates the ID token, resolves roles
5. Gateway sets a signed session cookie and redirects into the app
"""

from .errors import (
    AuthError,
    ConfigurationError,
    MissingNonceError,
    MissingParameterError,
    ProtocolError,
    ProviderError,
    ProviderExchangeError,
    StateMismatchError,
    TokenValidationError,
)

__all__ = [
    "AuthError",
    "ConfigurationError",
    "ProtocolError",
    "MissingParameterError",
    "StateMismatchError",
    "MissingNonceError",
    "ProviderError",
    "ProviderExchangeError",
    "TokenValidationError",
]
