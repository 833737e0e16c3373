"""
Configuration module for the Identity Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider (Microsoft Entra ID), session JWT signing, directory
role enrichment, and the HTTP surface.

Environment variables are loaded from .env file or system environment.

The validated ``Settings`` are turned into an immutable ``AuthConfig`` by
``get_auth_config()``. Everything in the auth package reads the ``AuthConfig``;
only this module knows about environment variables.
"""

import json
import re
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .auth.errors import ConfigurationError


DEFAULT_SCOPES: Tuple[str, ...] = ("openid", "profile", "email")
DEFAULT_SESSION_COOKIE = "ajp_identity_session"
DEFAULT_SESSION_MAX_AGE = 60 * 60 * 8  # 8 hours
SUPPORTED_PROVIDERS = ("azure",)
GROUP_ROLE_STRATEGIES = ("fallback", "union")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the identity provider (OIDC), session JWTs,
    directory enrichment and the HTTP surface is defined here.
    """

    # =========================================================================
    # Identity Provider Configuration (OIDC Authentication)
    # =========================================================================

    AUTH_PROVIDER: str = Field(
        default="azure",
        description="Identity provider family (only 'azure' is implemented)",
    )

    AZURE_TENANT_ID: str = Field(
        ...,
        description="Entra ID tenant ID (GUID or verified domain)",
        min_length=1,
    )

    AZURE_CLIENT_ID: str = Field(
        ...,
        description="Entra ID application (client) ID",
        min_length=1,
    )

    AZURE_CLIENT_SECRET: str = Field(
        ...,
        description="Entra ID client secret (confidential client)",
        min_length=1,
    )

    AZURE_REDIRECT_URI: str = Field(
        ...,
        description="OAuth redirect URI registered in Entra ID (e.g., https://app.example.com/auth/callback)",
        min_length=1,
    )

    AZURE_SCOPES: Optional[str] = Field(
        None,
        description="Comma- or space-separated scopes (default: openid profile email)",
    )

    AZURE_AUTHORITY_HOST: str = Field(
        default="https://login.microsoftonline.com",
        description="Entra ID authority host",
    )

    # =========================================================================
    # Directory (Microsoft Graph) Role Enrichment
    # =========================================================================

    AZURE_SERVICE_PRINCIPAL_ID: Optional[str] = Field(
        None,
        description="Object ID of the enterprise application; enables app role lookup",
    )

    AZURE_ROLE_MAPPING: Optional[str] = Field(
        None,
        description="JSON object mapping app role IDs to application role names",
    )

    AZURE_GROUP_ROLE_MAPPING: Optional[str] = Field(
        None,
        description="JSON object mapping group name substrings to application role names",
    )

    AZURE_FETCH_APP_ROLES: Optional[bool] = Field(
        None,
        description="Toggle app role lookup (default: on when a service principal is set)",
    )

    AZURE_GROUP_ROLE_STRATEGY: str = Field(
        default="fallback",
        description="'fallback' queries groups only when no app roles were found; 'union' always does",
    )

    GRAPH_API_BASE_URL: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph base URL",
    )

    # =========================================================================
    # Session JWT Configuration
    # =========================================================================

    SESSION_JWT_SECRET: str = Field(
        ...,
        description="Secret key for signing session JWTs (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default=DEFAULT_SESSION_COOKIE,
        description="Name of the cookie carrying the session JWT",
        min_length=1,
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=DEFAULT_SESSION_MAX_AGE,
        description="Session lifetime in seconds",
        ge=60,
        le=60 * 60 * 24 * 7,
    )

    # =========================================================================
    # Redirect / Routing Configuration
    # =========================================================================

    POST_LOGIN_REDIRECT_PATH: str = Field(
        default="/",
        description="Where to send the browser after a successful login",
    )

    LOGOUT_REDIRECT_PATH: str = Field(
        default="/login",
        description="Where to send the browser after logout",
    )

    LOGIN_PATH: str = Field(
        default="/login",
        description="Where the route guard redirects unauthenticated requests",
    )

    PROTECTED_PATHS: Optional[str] = Field(
        None,
        description="Comma-separated path patterns requiring a session ('/app/*' matches a prefix)",
    )

    # =========================================================================
    # JWKS / HTTP Client Configuration
    # =========================================================================

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache Entra ID JWKS keys in seconds",
        ge=300,  # Min 5 minutes
        le=86400,  # Max 24 hours
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to the identity provider and Graph",
        gt=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=8080, description="Port to bind the server", ge=1, le=65535)

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def scopes_list(self) -> List[str]:
        """Requested scopes, falling back to the OIDC defaults."""
        if not self.AZURE_SCOPES:
            return list(DEFAULT_SCOPES)
        scopes = [s for s in re.split(r"[,\s]+", self.AZURE_SCOPES) if s]
        return scopes or list(DEFAULT_SCOPES)

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def protected_paths_list(self) -> List[str]:
        if not self.PROTECTED_PATHS:
            return []
        return [path.strip() for path in self.PROTECTED_PATHS.split(",") if path.strip()]

    @property
    def role_mapping(self) -> Dict[str, str]:
        return _parse_mapping(self.AZURE_ROLE_MAPPING)

    @property
    def group_role_mapping(self) -> Dict[str, str]:
        return _parse_mapping(self.AZURE_GROUP_ROLE_MAPPING)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("AUTH_PROVIDER")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {v}. Expected one of {list(SUPPORTED_PROVIDERS)}")
        return v

    @field_validator("AZURE_ROLE_MAPPING", "AZURE_GROUP_ROLE_MAPPING")
    @classmethod
    def validate_mapping(cls, v: Optional[str]) -> Optional[str]:
        """
        Validate that a mapping variable holds a JSON object of strings.

        Raises:
            ValueError: If the value is not a JSON object with string values
        """
        if v is None or not v.strip():
            return None
        _parse_mapping(v)
        return v

    @field_validator("AZURE_GROUP_ROLE_STRATEGY")
    @classmethod
    def validate_group_strategy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in GROUP_ROLE_STRATEGIES:
            raise ValueError(f"AZURE_GROUP_ROLE_STRATEGY must be one of {list(GROUP_ROLE_STRATEGIES)}, got: {v}")
        return v

    @field_validator("AZURE_AUTHORITY_HOST", "GRAPH_API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def _parse_mapping(raw: Optional[str]) -> Dict[str, str]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Role mapping must be a JSON object: {e}") from e
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(val, str) for k, val in data.items()
    ):
        raise ValueError("Role mapping must be a JSON object of string keys and values")
    return data


# =============================================================================
# Immutable Auth Configuration
# =============================================================================

class AzureAuthConfig(BaseModel):
    """Provider-specific settings for Microsoft Entra ID."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: Tuple[str, ...] = DEFAULT_SCOPES
    authority_host: str = "https://login.microsoftonline.com"
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    service_principal_id: Optional[str] = None
    role_mapping: Dict[str, str] = Field(default_factory=dict)
    group_role_mapping: Dict[str, str] = Field(default_factory=dict)
    fetch_app_roles_from_graph: Optional[bool] = None
    group_role_strategy: str = "fallback"

    @property
    def authority(self) -> str:
        return f"{self.authority_host}/{self.tenant_id}"

    @property
    def issuer(self) -> str:
        return f"{self.authority}/v2.0"

    @property
    def should_fetch_app_roles(self) -> bool:
        """App roles are fetched when a service principal is set, unless explicitly disabled."""
        return bool(self.service_principal_id) and self.fetch_app_roles_from_graph is not False


class AuthConfig(BaseModel):
    """
    Immutable configuration shared by the provider client, the session codec
    and the authentication flow.

    Built once per process and read concurrently; never mutated.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = "azure"
    azure: AzureAuthConfig
    jwt_secret: str
    session_cookie_name: str = DEFAULT_SESSION_COOKIE
    session_max_age: int = DEFAULT_SESSION_MAX_AGE
    post_login_redirect_path: str = "/"
    logout_redirect_path: str = "/login"
    login_path: str = "/login"
    protected_paths: Tuple[str, ...] = ()
    jwks_cache_seconds: int = 3600
    http_timeout_seconds: float = 10.0


def create_auth_config(
    *,
    tenant_id: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    jwt_secret: str,
    provider: str = "azure",
    scopes: Optional[List[str]] = None,
    post_login_redirect_path: Optional[str] = None,
    session_cookie_name: Optional[str] = None,
    **overrides,
) -> AuthConfig:
    """
    Build and validate an ``AuthConfig`` from plain values.

    Missing required values fail fast with ``ConfigurationError`` so that
    misconfiguration is caught before any request is served.

    Example:
        >>> config = create_auth_config(
        ...     tenant_id="contoso", client_id="app", client_secret="s3cret",
        ...     redirect_uri="https://app.example.com/auth/callback",
        ...     jwt_secret="x" * 32,
        ... )
        >>> config.azure.scopes
        ('openid', 'profile', 'email')
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported provider: {provider}")

    for name, value in (
        ("jwt_secret", jwt_secret),
        ("azure.tenant_id", tenant_id),
        ("azure.client_id", client_id),
        ("azure.client_secret", client_secret),
        ("azure.redirect_uri", redirect_uri),
    ):
        if not value:
            raise ConfigurationError(f"Missing required config value: {name}")

    azure_fields = {
        key: overrides.pop(key)
        for key in list(overrides)
        if key in AzureAuthConfig.model_fields
    }
    try:
        azure = AzureAuthConfig(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=tuple(scopes) if scopes else DEFAULT_SCOPES,
            **azure_fields,
        )
        return AuthConfig(
            provider=provider,
            azure=azure,
            jwt_secret=jwt_secret,
            session_cookie_name=session_cookie_name or DEFAULT_SESSION_COOKIE,
            post_login_redirect_path=post_login_redirect_path or "/",
            **overrides,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid auth configuration: {e}") from e


def auth_config_from_settings(settings: Settings) -> AuthConfig:
    """Translate environment ``Settings`` into an ``AuthConfig``."""
    return create_auth_config(
        provider=settings.AUTH_PROVIDER,
        tenant_id=settings.AZURE_TENANT_ID,
        client_id=settings.AZURE_CLIENT_ID,
        client_secret=settings.AZURE_CLIENT_SECRET,
        redirect_uri=settings.AZURE_REDIRECT_URI,
        jwt_secret=settings.SESSION_JWT_SECRET,
        scopes=settings.scopes_list,
        post_login_redirect_path=settings.POST_LOGIN_REDIRECT_PATH,
        session_cookie_name=settings.SESSION_COOKIE_NAME,
        authority_host=settings.AZURE_AUTHORITY_HOST,
        graph_base_url=settings.GRAPH_API_BASE_URL,
        service_principal_id=settings.AZURE_SERVICE_PRINCIPAL_ID or None,
        role_mapping=settings.role_mapping,
        group_role_mapping=settings.group_role_mapping,
        fetch_app_roles_from_graph=settings.AZURE_FETCH_APP_ROLES,
        group_role_strategy=settings.AZURE_GROUP_ROLE_STRATEGY,
        session_max_age=settings.SESSION_MAX_AGE_SECONDS,
        logout_redirect_path=settings.LOGOUT_REDIRECT_PATH,
        login_path=settings.LOGIN_PATH,
        protected_paths=tuple(settings.protected_paths_list),
        jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
        http_timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    )


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ConfigurationError: If required environment variables are missing
                            or invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid environment configuration: {e}") from e


@lru_cache()
def get_auth_config() -> AuthConfig:
    """Cached ``AuthConfig`` built from the environment."""
    return auth_config_from_settings(get_settings())


def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This can be called during application startup to surface warnings
    without refusing to start.

    Returns:
        Dictionary with validation status and any warnings.
    """
    # Imported here: the auth package imports this module.
    from .auth.guard import is_protected

    settings = settings or get_settings()
    errors = []
    warnings = []

    if is_protected(settings.LOGIN_PATH, settings.protected_paths_list):
        errors.append(f"LOGIN_PATH {settings.LOGIN_PATH} is itself protected (redirect loop)")

    for name, path in (
        ("POST_LOGIN_REDIRECT_PATH", settings.POST_LOGIN_REDIRECT_PATH),
        ("LOGOUT_REDIRECT_PATH", settings.LOGOUT_REDIRECT_PATH),
    ):
        if not path.startswith("/") or path.startswith("//"):
            warnings.append(f"{name} is not a same-origin relative path: {path}")

    if not settings.AZURE_REDIRECT_URI.startswith("https://") and "localhost" not in settings.AZURE_REDIRECT_URI:
        warnings.append("AZURE_REDIRECT_URI is not HTTPS (session cookies are Secure-only)")

    if settings.AZURE_SERVICE_PRINCIPAL_ID and settings.AZURE_FETCH_APP_ROLES is False:
        warnings.append("AZURE_SERVICE_PRINCIPAL_ID is set but app role lookup is disabled")

    if settings.group_role_mapping and not settings.AZURE_SERVICE_PRINCIPAL_ID:
        warnings.append("AZURE_GROUP_ROLE_MAPPING has no effect without AZURE_SERVICE_PRINCIPAL_ID")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "provider": settings.AUTH_PROVIDER,
        "scopes": settings.scopes_list,
        "session_max_age_seconds": settings.SESSION_MAX_AGE_SECONDS,
    }


if __name__ == "__main__":
    """
    Run this module directly to validate your .env configuration:
        python -m identity_gateway.app.config
    """
    print("=" * 80)
    print("IDENTITY GATEWAY CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()
    except ConfigurationError as e:
        print(f"\n✗ Configuration error: {e}")
        print("""
Required variables:
  - AZURE_TENANT_ID
  - AZURE_CLIENT_ID
  - AZURE_CLIENT_SECRET
  - AZURE_REDIRECT_URI
  - SESSION_JWT_SECRET
        """)
    else:
        print("\nIdentity Provider:")
        print(f"  Provider:       {config.AUTH_PROVIDER}")
        print(f"  Tenant ID:      {config.AZURE_TENANT_ID}")
        print(f"  Client ID:      {config.AZURE_CLIENT_ID}")
        print(f"  Redirect URI:   {config.AZURE_REDIRECT_URI}")
        print(f"  Scopes:         {' '.join(config.scopes_list)}")

        print("\nSession Management:")
        print(f"  Cookie name:    {config.SESSION_COOKIE_NAME}")
        print(f"  Max age:        {config.SESSION_MAX_AGE_SECONDS} seconds")
        print(f"  JWKS Cache:     {config.JWKS_CACHE_SECONDS} seconds")

        status = validate_configuration(config)
        print()
        if status["valid"]:
            print("✓ All critical checks passed!")
        else:
            for error in status["errors"]:
                print(f"  - {error}")
        for warning in status["warnings"]:
            print(f"  ⚠ {warning}")
