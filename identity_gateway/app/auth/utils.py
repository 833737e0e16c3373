"""
Authentication utilities for OIDC token verification and JWKS management.

This module handles:
- Fetching and caching the provider's JWKS (JSON Web Key Set)
- Verifying ID tokens (signature, issuer, audience, expiry)
- Nonce comparison and claim extraction helpers
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from jose import jwk, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError


ID_TOKEN_ALGORITHMS = ["RS256"]
CLOCK_SKEW_LEEWAY_SECONDS = 10


@asynccontextmanager
async def http_client(
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yield ``client`` when one was injected, otherwise a short-lived client
    that is closed on exit.
    """
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


# =============================================================================
# JWKS Cache
# =============================================================================

class JWKSCache:
    """
    JWKS document cached for ``ttl_seconds``.

    The JWKS endpoint provides the public keys used to verify ID token
    signatures. Keys are looked up by ``kid``; an unknown ``kid`` forces one
    refresh in case the provider rotated its keys.
    """

    def __init__(
        self,
        jwks_uri: str,
        ttl_seconds: int = 3600,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.jwks_uri = jwks_uri
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._client = client
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    async def fetch(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Return the JWKS document, fetching it when stale or forced.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable or errors
            ValueError: If the response is not a JWKS document
        """
        now = time.monotonic()
        if not force_refresh and self._jwks is not None and (now - self._fetched_at) < self.ttl_seconds:
            return self._jwks

        async with http_client(self._client, self.timeout) as client:
            response = await client.get(self.jwks_uri)
            response.raise_for_status()
            jwks_data = response.json()

        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._fetched_at = now
        return jwks_data

    async def get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Find the key with ``kid``, refreshing the cache once if it is unknown."""
        key = find_key(await self.fetch(), kid)
        if key is None:
            key = find_key(await self.fetch(force_refresh=True), kid)
        return key


def find_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
    for key in jwks.get("keys", []):
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def get_token_kid(token: str) -> str:
    """
    Read the key ID from a JWT header without verifying the token.

    Raises:
        JWTError: If the header is malformed or has no ``kid``
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise JWTError(f"Failed to decode token header: {e}")

    kid = unverified_header.get("kid")
    if not kid:
        raise JWTError("Token header missing 'kid' (Key ID)")
    return kid


# =============================================================================
# ID Token Verification
# =============================================================================

async def verify_id_token(
    id_token: str,
    jwks_cache: JWKSCache,
    audience: str,
    issuer: str,
) -> Dict[str, Any]:
    """
    Verify and decode an ID token.

    This function performs comprehensive validation:
    1. Fetches JWKS and finds the public key matching the token's ``kid``
    2. Verifies the token signature
    3. Validates standard claims (iss, aud, exp, nbf, iat)

    Returns:
        Dictionary of verified token claims

    Raises:
        JWTError: If token is invalid, expired, or signature doesn't match
        httpx.HTTPError: If JWKS endpoint is unreachable
        ValueError: If the JWKS document is invalid
    """
    kid = get_token_kid(id_token)
    signing_key = await jwks_cache.get_key(kid)
    if not signing_key:
        raise JWTError(
            "Unable to find matching signing key in JWKS. "
            "Token may be from a different tenant or keys may have rotated."
        )

    try:
        public_key = jwk.construct(signing_key, algorithm=ID_TOKEN_ALGORITHMS[0])
    except Exception as e:
        raise JWTError(f"Failed to construct public key from JWK: {e}")

    try:
        return jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=audience,
            issuer=issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iat": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_sub": True,
                "verify_jti": False,
                "verify_at_hash": False,
                "require_aud": True,
                "require_iss": True,
                "require_exp": True,
                "leeway": CLOCK_SKEW_LEEWAY_SECONDS,
            },
        )
    except ExpiredSignatureError:
        raise JWTError("ID token has expired")
    except JWTClaimsError as e:
        raise JWTError(f"Invalid token claims: {e}")
    except JWTError as e:
        raise JWTError(f"Token verification failed: {e}")


# =============================================================================
# Claim Helpers
# =============================================================================

def validate_nonce(claims: Dict[str, Any], expected_nonce: Optional[str]) -> bool:
    """
    Compare the token nonce with the nonce issued at login.

    Both absent is accepted; otherwise the values must be equal, so a nonce
    missing on either side while the other is set is a mismatch.
    """
    token_nonce = claims.get("nonce") or None
    expected_nonce = expected_nonce or None

    if token_nonce is None and expected_nonce is None:
        return True
    return token_nonce == expected_nonce


def extract_email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    """
    Extract an email-like identifier from ID token claims.

    Prefers the ``email`` claim, then ``preferred_username`` (usually the
    UPN in Entra ID).
    """
    for claim_name in ("email", "preferred_username"):
        value = claims.get(claim_name)
        if isinstance(value, str) and value:
            return value
    return None


def get_user_display_name(claims: Dict[str, Any]) -> Optional[str]:
    name = claims.get("name")
    return name if isinstance(name, str) and name else None


def normalize_string_list(value: Any) -> List[str]:
    """Turn a singular-or-list claim into a list of strings, dropping anything else."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return []
