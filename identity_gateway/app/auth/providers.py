"""
Identity provider clients.

``AuthProvider`` is the contract the authentication flow depends on:
build the authorize URL, exchange the code, validate the ID token and map
it to an ``Identity``. ``AzureAuthProvider`` implements it for Microsoft
Entra ID, including best-effort role enrichment from Microsoft Graph.

A second provider family is a second ``AuthProvider`` subclass registered
in ``PROVIDERS``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple, Type
from urllib.parse import urlencode

import httpx
from jose.exceptions import JWTError
from pydantic import BaseModel, ConfigDict, ValidationError

from ..config import AuthConfig
from ..models import Identity, TokenSet, ValidatedClaims
from .errors import ConfigurationError, ProviderExchangeError, TokenValidationError
from .utils import (
    JWKSCache,
    extract_email_from_claims,
    get_user_display_name,
    http_client,
    normalize_string_list,
    validate_nonce,
    verify_id_token,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Enrichment Result
# =============================================================================

class EnrichmentResult(BaseModel):
    """
    Outcome of a best-effort directory lookup.

    A failed lookup contributes nothing; it is never raised.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    roles: Tuple[str, ...] = ()
    groups: Tuple[str, ...] = ()
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, roles: Iterable[str] = (), groups: Iterable[str] = ()) -> "EnrichmentResult":
        return cls(ok=True, roles=tuple(_dedupe(roles)), groups=tuple(_dedupe(groups)))

    @classmethod
    def failed(cls, error: str) -> "EnrichmentResult":
        return cls(ok=False, error=error)


def _dedupe(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


# =============================================================================
# Provider Contract
# =============================================================================

class AuthProvider(ABC):
    """Capabilities every identity provider family must offer."""

    def __init__(self, config: AuthConfig):
        self.config = config

    @abstractmethod
    def authorization_url(self, state: str, nonce: str) -> str:
        """Build the provider authorize URL. No network call."""

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens (single attempt)."""

    @abstractmethod
    async def validate_id_token(self, id_token: str, expected_nonce: Optional[str]) -> ValidatedClaims:
        """Verify signature, issuer, audience, nonce and subject of an ID token."""

    @abstractmethod
    async def resolve_identity(self, claims: ValidatedClaims, tokens: Optional[TokenSet] = None) -> Identity:
        """Map validated claims (and optional directory lookups) to an ``Identity``."""


# =============================================================================
# Microsoft Entra ID
# =============================================================================

class AzureAuthProvider(AuthProvider):
    """
    Microsoft Entra ID (Azure AD) v2.0 endpoints.

    Role resolution:
    1. ``roles`` and ``groups`` claims embedded in the ID token
    2. App role assignments from Graph, filtered to the configured
       service principal and mapped through ``role_mapping``
    3. Group memberships from Graph, mapped through ``group_role_mapping``
       by substring; only when no role was found so far, unless the
       group strategy is ``union``
    """

    def __init__(
        self,
        config: AuthConfig,
        client: Optional[httpx.AsyncClient] = None,
        jwks_cache: Optional[JWKSCache] = None,
    ):
        super().__init__(config)
        self.azure = config.azure
        self._client = client
        self.timeout = config.http_timeout_seconds
        self.jwks_cache = jwks_cache or JWKSCache(
            self.jwks_uri,
            ttl_seconds=config.jwks_cache_seconds,
            timeout=self.timeout,
            client=client,
        )

    # =========================================================================
    # Endpoints
    # =========================================================================

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.azure.authority}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.azure.authority}/oauth2/v2.0/token"

    @property
    def jwks_uri(self) -> str:
        return f"{self.azure.authority}/discovery/v2.0/keys"

    @property
    def app_role_assignments_url(self) -> str:
        return f"{self.azure.graph_base_url}/me/appRoleAssignments"

    @property
    def group_memberships_url(self) -> str:
        return (
            f"{self.azure.graph_base_url}/me/transitiveMemberOf/microsoft.graph.group"
            "?$select=displayName,id"
        )

    @property
    def scope(self) -> str:
        return " ".join(self.azure.scopes)

    # =========================================================================
    # Authorization Request
    # =========================================================================

    def authorization_url(self, state: str, nonce: str) -> str:
        params = {
            "client_id": self.azure.client_id,
            "response_type": "code",
            "redirect_uri": self.azure.redirect_uri,
            "response_mode": "query",
            "scope": self.scope,
            "state": state,
            "nonce": nonce,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    # =========================================================================
    # Token Exchange
    # =========================================================================

    async def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange authorization code for ID and access tokens.

        Raises:
            ProviderExchangeError: On transport failure, a non-success
                response, or a response without id_token and access_token
        """
        payload = {
            "client_id": self.azure.client_id,
            "client_secret": self.azure.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.azure.redirect_uri,
            "scope": self.scope,
        }

        try:
            async with http_client(self._client, self.timeout) as client:
                response = await client.post(
                    self.token_endpoint,
                    data=payload,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            raise ProviderExchangeError(f"Unable to reach token endpoint: {e}") from e

        if not response.is_success:
            raise ProviderExchangeError(
                f"Azure token exchange failed ({response.status_code}): {_error_detail(response)}"
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise ProviderExchangeError("Azure token response is not valid JSON") from e

        if not isinstance(token_data, dict) or not token_data.get("id_token") or not token_data.get("access_token"):
            raise ProviderExchangeError("Azure token response missing id_token or access_token")

        try:
            return TokenSet(
                id_token=token_data["id_token"],
                access_token=token_data["access_token"],
                refresh_token=token_data.get("refresh_token"),
                expires_in=token_data.get("expires_in", token_data.get("ext_expires_in")),
                token_type=token_data.get("token_type"),
                raw=token_data,
            )
        except ValidationError as e:
            raise ProviderExchangeError(f"Azure token response is malformed: {e}") from e

    # =========================================================================
    # ID Token Validation
    # =========================================================================

    async def validate_id_token(self, id_token: str, expected_nonce: Optional[str]) -> ValidatedClaims:
        try:
            claims = await verify_id_token(
                id_token,
                self.jwks_cache,
                audience=self.azure.client_id,
                issuer=self.azure.issuer,
            )
        except JWTError as e:
            raise TokenValidationError(str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TokenValidationError(f"Unable to load signing keys: {e}") from e

        if not validate_nonce(claims, expected_nonce):
            raise TokenValidationError("Invalid nonce in ID token")

        if not claims.get("sub"):
            raise TokenValidationError("ID token missing sub claim")

        try:
            return ValidatedClaims.model_validate(claims)
        except ValidationError as e:
            raise TokenValidationError(f"ID token claims are malformed: {e}") from e

    # =========================================================================
    # Identity Resolution
    # =========================================================================

    async def resolve_identity(self, claims: ValidatedClaims, tokens: Optional[TokenSet] = None) -> Identity:
        claim_data = claims.model_dump()
        roles = set(normalize_string_list(claims.roles))
        groups = set(normalize_string_list(claims.groups))

        access_token = tokens.access_token if tokens else None
        if self.azure.should_fetch_app_roles and access_token:
            app_roles = await self.fetch_app_roles(access_token)
            roles.update(app_roles.roles)

            wants_groups = not roles or self.azure.group_role_strategy == "union"
            if self.azure.group_role_mapping and wants_groups:
                group_roles = await self.fetch_group_roles(access_token)
                roles.update(group_roles.roles)
                groups.update(group_roles.groups)

        return Identity(
            subject=claims.sub,
            display_name=get_user_display_name(claim_data),
            email=extract_email_from_claims(claim_data),
            roles=frozenset(roles),
            groups=frozenset(groups),
        )

    async def fetch_app_roles(self, access_token: str) -> EnrichmentResult:
        """App role assignments on the configured service principal."""
        try:
            assignments = await self._graph_collection(self.app_role_assignments_url, access_token)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"App role lookup failed: {e}",
                extra={"service_principal_id": self.azure.service_principal_id},
            )
            return EnrichmentResult.failed(str(e))

        roles = []
        for assignment in assignments:
            if assignment.get("resourceId") != self.azure.service_principal_id:
                continue
            role = map_role(assignment.get("appRoleId"), self.azure.role_mapping)
            if role:
                roles.append(role)

        logger.debug("Resolved app roles from Graph", extra={"role_count": len(roles)})
        return EnrichmentResult.succeeded(roles=roles)

    async def fetch_group_roles(self, access_token: str) -> EnrichmentResult:
        """Transitive group memberships mapped to roles by name substring."""
        try:
            memberships = await self._graph_collection(self.group_memberships_url, access_token)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Group membership lookup failed: {e}")
            return EnrichmentResult.failed(str(e))

        groups = []
        for group in memberships:
            name = group.get("displayName") or group.get("id")
            if isinstance(name, str) and name:
                groups.append(name)

        roles = [
            role
            for role in (map_group_role(name, self.azure.group_role_mapping) for name in groups)
            if role
        ]
        logger.debug(
            "Resolved group roles from Graph",
            extra={"group_count": len(groups), "role_count": len(roles)},
        )
        return EnrichmentResult.succeeded(roles=roles, groups=groups)

    async def _graph_collection(self, url: str, access_token: str) -> List[Dict]:
        """
        GET a Graph collection and return its ``value`` entries.

        Raises:
            httpx.HTTPError: On transport failure or non-success status
            ValueError: If the body is not a Graph collection
        """
        async with http_client(self._client, self.timeout) as client:
            response = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            raise ValueError("Graph response is not a JSON object")
        value = data.get("value", [])
        if not isinstance(value, list):
            raise ValueError("Graph response 'value' is not a list")
        return [item for item in value if isinstance(item, dict)]


def map_role(app_role_id: Optional[str], role_mapping: Dict[str, str]) -> Optional[str]:
    """Map an app role ID through ``role_mapping``; unmapped IDs pass through."""
    if not isinstance(app_role_id, str) or not app_role_id:
        return None
    return role_mapping.get(app_role_id, app_role_id)


def map_group_role(group_name: str, group_role_mapping: Dict[str, str]) -> Optional[str]:
    """
    First mapping entry whose key is a substring of ``group_name``.

    Matching is case-sensitive and follows the mapping's insertion order.
    """
    for key, role in group_role_mapping.items():
        if key in group_name:
            return role
    return None


def _error_detail(response: httpx.Response) -> str:
    if response.headers.get("content-type", "").startswith("application/json"):
        try:
            error_data = response.json()
        except ValueError:
            error_data = None
        if isinstance(error_data, dict):
            return error_data.get("error_description") or error_data.get("error") or "Token exchange failed"
    return response.text or "Token exchange failed"


# =============================================================================
# Provider Registry
# =============================================================================

PROVIDERS: Dict[str, Type[AuthProvider]] = {
    "azure": AzureAuthProvider,
}


def create_auth_provider(config: AuthConfig, client: Optional[httpx.AsyncClient] = None) -> AuthProvider:
    """
    Instantiate the provider selected by ``config.provider``.

    Raises:
        ConfigurationError: If the provider family is not supported
    """
    provider_cls = PROVIDERS.get(config.provider)
    if provider_cls is None:
        raise ConfigurationError(f"Unsupported provider: {config.provider}")
    return provider_cls(config, client=client)
