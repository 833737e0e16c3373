"""Exception hierarchy for the authentication flow.

Protocol errors are the caller's fault and map to 4xx responses; provider
errors come from the identity provider and map to 5xx responses. Directory
enrichment failures are not exceptions at all, see ``EnrichmentResult``.
"""


class AuthError(Exception):
    """Base exception for all authentication errors."""

    status_code = 500


class ConfigurationError(AuthError):
    """Raised at startup when a required configuration value is missing or invalid."""


# =============================================================================
# Protocol errors (4xx)
# =============================================================================

class ProtocolError(AuthError):
    """Raised when the callback request does not correlate with a login attempt."""

    status_code = 400


class MissingParameterError(ProtocolError):
    """Raised when the callback lacks the ``code`` or ``state`` query parameter."""


class StateMismatchError(ProtocolError):
    """Raised when the callback ``state`` does not match the state cookie."""


class MissingNonceError(ProtocolError):
    """Raised when the nonce cookie is absent at callback time."""


# =============================================================================
# Provider errors (5xx)
# =============================================================================

class ProviderError(AuthError):
    """Raised when the identity provider rejects or fails the login."""

    status_code = 500


class ProviderExchangeError(ProviderError):
    """Raised when the authorization code to token exchange fails."""


class TokenValidationError(ProviderError):
    """Raised when the ID token fails signature, issuer, audience, nonce or subject checks."""


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
