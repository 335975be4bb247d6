"""
Data Models Module

This module defines Pydantic models for the data flowing through the
authentication gateway.

Models are organized by functional area:
- Provider models (profile and exchanged credentials)
- Session models (server-side session record)
- Response models (JSON bodies returned by the gateway)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth_gateway.exceptions import ProtocolError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Provider Models
# ============================================================================

class ProviderProfile(BaseModel):
    """User profile returned by the identity provider, passed through unmodified."""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(default="spotify", description="Identity provider name")
    id: str = Field(..., description="Provider user identifier")
    display_name: Optional[str] = Field(None, description="User display name")
    username: Optional[str] = Field(None, description="Provider username")
    email: Optional[str] = Field(None, description="Email address reported by the provider")
    profile_url: Optional[str] = Field(None, description="Public profile URL")
    country: Optional[str] = Field(None, description="Country code")
    product: Optional[str] = Field(None, description="Subscription level")
    photos: List[str] = Field(default_factory=list, description="Profile image URLs")
    user_id: Optional[str] = Field(None, description="Internal user id when linked to a User")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Provider JSON as received")

    @classmethod
    def from_spotify(cls, data: Dict[str, Any]) -> "ProviderProfile":
        """
        Build a profile from the Spotify /v1/me response.

        Raises:
            pydantic.ValidationError: If 'id' or another field has the wrong type
            ProtocolError: If 'external_urls' or 'images' are not JSON objects/arrays
        """
        external_urls = data.get("external_urls") or {}
        if not isinstance(external_urls, dict):
            raise ProtocolError("Profile field 'external_urls' must be an object")

        images = data.get("images") or []
        if not isinstance(images, list):
            raise ProtocolError("Profile field 'images' must be an array")

        return cls(
            id=data.get("id"),
            display_name=data.get("display_name"),
            username=data.get("id"),
            email=data.get("email"),
            profile_url=external_urls.get("spotify") or data.get("href"),
            country=data.get("country"),
            product=data.get("product"),
            photos=[image["url"] for image in images if isinstance(image, dict) and image.get("url")],
            raw=data,
        )


# Principal placed into the session; in the minimal flow it is the profile itself
Principal = ProviderProfile


class ProviderCredentials(BaseModel):
    """Credentials produced by one successful token exchange."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1, repr=False)
    refresh_token: str = Field(..., min_length=1, repr=False)
    expires_in_seconds: int = Field(..., description="Access token lifetime in seconds")
    profile: ProviderProfile


class VerificationEvent(BaseModel):
    """Lifecycle notification emitted after credentials are verified."""

    model_config = ConfigDict(frozen=True)

    event: str = Field(default="auth.provider.verified")
    credentials: ProviderCredentials
    timestamp: datetime = Field(default_factory=utcnow)


# ============================================================================
# Session Models
# ============================================================================

class Session(BaseModel):
    """Server-side session record correlated with a browser cookie."""

    id: str = Field(..., description="Opaque session identifier")
    principal: Optional[ProviderProfile] = Field(None, description="Authenticated principal")
    created_at: datetime = Field(default_factory=utcnow)
    last_seen_at: datetime = Field(default_factory=utcnow)

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None


# ============================================================================
# Response Models
# ============================================================================

class PrincipalResponse(BaseModel):
    """Body returned by the callback route after a successful login."""
    user: ProviderProfile


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error details")
