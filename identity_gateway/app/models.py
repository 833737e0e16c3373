"""
Data Models Module

This module defines Pydantic models for the identities, tokens and
responses that flow through the gateway.

Models are organized by functional area:
- Identity models (resolved user, session payload)
- Provider models (token set, validated ID token claims)
- Response models (session introspection, health, errors)
"""

from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Identity Models
# ============================================================================

class Identity(BaseModel):
    """
    Resolved user, created once per successful callback.

    Immutable after creation and never persisted server-side; the only
    place it outlives a request is inside the signed session cookie.
    """

    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., min_length=1, description="Provider-issued stable identifier")
    display_name: Optional[str] = Field(None, description="User display name")
    email: Optional[str] = Field(None, description="Email or principal name")
    roles: FrozenSet[str] = Field(default_factory=frozenset, description="Application roles")
    groups: FrozenSet[str] = Field(default_factory=frozenset, description="Directory groups")

    def to_public_dict(self) -> Dict[str, Any]:
        """
        JSON shape exposed to the UI.

        ``roles`` and ``groups`` are omitted when empty.
        """
        data: Dict[str, Any] = {
            "id": self.subject,
            "name": self.display_name,
            "email": self.email,
        }
        if self.roles:
            data["roles"] = sorted(self.roles)
        if self.groups:
            data["groups"] = sorted(self.groups)
        return data


class SessionPayload(BaseModel):
    """Claims carried by the session JWT."""

    model_config = ConfigDict(extra="ignore")

    userId: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None
    roles: Optional[List[str]] = None
    groups: Optional[List[str]] = None
    issuedAt: int
    expiresAt: int

    @classmethod
    def from_identity(cls, identity: Identity, issued_at: int, max_age: int) -> "SessionPayload":
        return cls(
            userId=identity.subject,
            name=identity.display_name,
            email=identity.email,
            roles=sorted(identity.roles) or None,
            groups=sorted(identity.groups) or None,
            issuedAt=issued_at,
            expiresAt=issued_at + max_age,
        )

    def to_identity(self) -> Identity:
        return Identity(
            subject=self.userId,
            display_name=self.name,
            email=self.email,
            roles=frozenset(self.roles or ()),
            groups=frozenset(self.groups or ()),
        )


# ============================================================================
# Provider Models
# ============================================================================

class TokenSet(BaseModel):
    """Result of exchanging an authorization code at the token endpoint."""

    id_token: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)


class ValidatedClaims(BaseModel):
    """
    Claims of an ID token that passed signature and claim validation.

    Profile claims are kept as sent; non-string values are skipped when the
    identity is built rather than failing the login.
    """

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., min_length=1)
    name: Any = None
    email: Any = None
    preferred_username: Any = None
    nonce: Optional[str] = None
    roles: Any = None
    groups: Any = None


# ============================================================================
# Response Models
# ============================================================================

class SessionResponse(BaseModel):
    """Body of GET /auth/session."""

    user: Optional[Dict[str, Any]] = Field(None, description="Current identity or null")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
