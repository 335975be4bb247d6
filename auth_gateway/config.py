"""
Configuration module for the Spotify Auth Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the Spotify OAuth client, the public origin/base path used to derive the
callback URL, session cookie management and the HTTP server.

Environment variables are loaded from .env file or system environment.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from auth_gateway.exceptions import ConfigError


PROVIDER_NAME = "spotify"
AUTH_PATH = f"/auth/{PROVIDER_NAME}"
AUTH_CALLBACK_PATH = f"{AUTH_PATH}/callback"
LOGOUT_PATH = "/logout"
API_PATH = "/api"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the Spotify client, session cookies, provider
    endpoints and the HTTP server are defined here.
    """

    # =========================================================================
    # Spotify OAuth Client Configuration
    # =========================================================================

    SPOTIFY_CLIENT_ID: str = Field(
        ...,
        description="Spotify application client ID",
        min_length=1,
    )

    SPOTIFY_CLIENT_SECRET: str = Field(
        ...,
        description="Spotify application client secret",
        min_length=1,
    )

    SPOTIFY_SCOPES: str = Field(
        default="user-read-email,user-read-private",
        description="Comma-separated list of scopes requested at login",
    )

    SPOTIFY_SHOW_DIALOG: bool = Field(
        default=False,
        description="Force Spotify to show the consent dialog on every login",
    )

    # =========================================================================
    # Provider Endpoints
    # =========================================================================

    SPOTIFY_AUTHORIZE_URL: HttpUrl = Field(
        default="https://accounts.spotify.com/authorize",
        description="Spotify authorization endpoint",
    )

    SPOTIFY_TOKEN_URL: HttpUrl = Field(
        default="https://accounts.spotify.com/api/token",
        description="Spotify token endpoint",
    )

    SPOTIFY_PROFILE_URL: HttpUrl = Field(
        default="https://api.spotify.com/v1/me",
        description="Spotify current user profile endpoint",
    )

    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for each provider round trip in seconds",
        gt=0,
        le=60,
    )

    # =========================================================================
    # Public URL Configuration
    # =========================================================================

    PUBLIC_ORIGIN: HttpUrl = Field(
        ...,
        description="Public origin of the gateway (e.g., https://gateway.example.com)",
    )

    BASE_PATH: str = Field(
        default="",
        description="Path prefix the gateway is served under (e.g., /spotify)",
    )

    FAILURE_REDIRECT: str = Field(
        default="/login",
        description="Where the browser is sent when authentication fails",
        min_length=1,
    )

    LOGIN_SUCCESS_REDIRECT: Optional[str] = Field(
        None,
        description="Where the browser is sent after login (default: respond with the principal as JSON)",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret key for signing the session cookie (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="gateway_session",
        description="Name of the session cookie",
        min_length=1,
    )

    SESSION_HTTPS_ONLY: bool = Field(
        default=False,
        description="Mark the session cookie as Secure",
    )

    SESSION_LIFETIME_MINUTES: int = Field(
        default=60,
        description="Session lifetime in minutes since the last login",
        ge=5,
        le=1440,  # Max 24 hours
    )

    SESSION_PURGE_INTERVAL_SECONDS: int = Field(
        default=300,
        description="How often expired session records are purged from the in-memory store",
        ge=1,
        le=3600,
    )

    OAUTH_STATE_CHECK: bool = Field(
        default=True,
        description="Require a valid signed state parameter on the callback",
    )

    OAUTH_STATE_MAX_AGE_SECONDS: int = Field(
        default=600,
        description="Validity of the OAuth state parameter in seconds",
        ge=30,
        le=3600,
    )

    # =========================================================================
    # Gateway Server Configuration
    # =========================================================================

    GATEWAY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    GATEWAY_PORT: int = Field(
        default=3333,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

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
        """
        Parse and return SPOTIFY_SCOPES as a clean list.

        Returns:
            Scopes in declaration order without duplicates.
        """
        return list(_dedupe(
            scope.strip()
            for scope in re.split(r"[,\s]+", self.SPOTIFY_SCOPES or "")
            if scope.strip()
        ))

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def base_path(self) -> str:
        """BASE_PATH normalized to '' or '/segment[/segment...]'."""
        return normalize_base_path(self.BASE_PATH)

    @property
    def post_logout_path(self) -> str:
        return f"{self.base_path}{API_PATH}"

    def get_auth_config(self) -> "AuthConfig":
        """
        Build the immutable OAuth client configuration.

        Raises:
            ConfigError: If the origin cannot produce a callback URL
        """
        return AuthConfig(
            client_id=self.SPOTIFY_CLIENT_ID,
            client_secret=self.SPOTIFY_CLIENT_SECRET,
            scopes=tuple(self.scopes_list),
            origin=str(self.PUBLIC_ORIGIN),
            base_path=self.BASE_PATH,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("BASE_PATH")
    @classmethod
    def validate_base_path(cls, v: str) -> str:
        """
        Reject base paths that cannot be used as a URL path prefix.

        Raises:
            ValueError: If the path contains a query, fragment or whitespace
        """
        if any(ch in v for ch in "?#") or re.search(r"\s", v):
            raise ValueError(
                f"Invalid BASE_PATH: '{v}'. "
                "Expected a plain path prefix such as '/spotify'"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()


# =============================================================================
# OAuth Client Configuration
# =============================================================================

@dataclass(frozen=True)
class AuthConfig:
    """
    Immutable OAuth client configuration.

    The callback URL is derived from ``origin`` by replacing its path with
    ``base_path + "/auth/spotify/callback"``. The same path is used to mount
    the callback route, so the value registered with the provider and the
    value the gateway listens on cannot drift apart.
    """

    client_id: str
    client_secret: str = field(repr=False)
    scopes: Tuple[str, ...]
    origin: str
    base_path: str = ""

    def __post_init__(self):
        if not self.client_id or not self.client_secret:
            raise ConfigError("Spotify client ID and client secret are required")

        # Normalize in place; the dataclass is frozen
        object.__setattr__(self, "base_path", normalize_base_path(self.base_path))
        object.__setattr__(self, "scopes", tuple(_dedupe(self.scopes)))

        # Fail fast on an unusable origin
        _ = self.callback_url

    @property
    def callback_path(self) -> str:
        return f"{self.base_path}{AUTH_CALLBACK_PATH}"

    @property
    def callback_url(self) -> str:
        """
        Absolute callback URL registered with the provider.

        Raises:
            ConfigError: If origin is not an absolute http(s) URL
        """
        return build_callback_url(self.origin, self.base_path)


def normalize_base_path(base_path: Optional[str]) -> str:
    """
    Normalize a base path to '' or a prefix with one leading slash and no
    trailing slash, collapsing repeated slashes.

    Example:
        >>> normalize_base_path("app//v1/")
        '/app/v1'
        >>> normalize_base_path("/")
        ''
    """
    if not base_path:
        return ""

    path = "/" + base_path.strip().strip("/")
    path = re.sub(r"/{2,}", "/", path)
    return "" if path == "/" else path


def build_callback_url(origin: str, base_path: str = "") -> str:
    """
    Compute the callback URL from the public origin and base path.

    Any path, query or fragment on the origin is discarded.

    Raises:
        ConfigError: If origin is not an absolute http(s) URL
    """
    try:
        parts = urlsplit(str(origin).strip())
    except ValueError as e:
        raise ConfigError(f"Invalid origin URL: {origin}") from e

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigError(
            f"Invalid origin URL: '{origin}'. "
            "Expected an absolute http(s) URL such as 'https://gateway.example.com'"
        )

    path = f"{normalize_base_path(base_path)}{AUTH_CALLBACK_PATH}"
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def _dedupe(items):
    seen = set()
    for item in items:
        if item not in seen:
            seen.add(item)
            yield item


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This is called during application startup to ensure all required
    configuration is present and valid.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []
    callback_url = None

    try:
        callback_url = settings.get_auth_config().callback_url
    except ConfigError as e:
        errors.append(str(e))

    if not settings.scopes_list:
        warnings.append("SPOTIFY_SCOPES is empty (only public profile data will be available)")

    origin = str(settings.PUBLIC_ORIGIN)
    if origin.startswith("https://") and not settings.SESSION_HTTPS_ONLY:
        warnings.append("PUBLIC_ORIGIN is https but SESSION_HTTPS_ONLY is disabled")

    if "localhost" in origin or "127.0.0.1" in origin:
        warnings.append("PUBLIC_ORIGIN points to localhost (callback will not work behind a proxy)")

    if not settings.OAUTH_STATE_CHECK:
        warnings.append("OAUTH_STATE_CHECK is disabled (callback is not protected against CSRF)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "callback_url": callback_url,
        "session_lifetime_minutes": settings.SESSION_LIFETIME_MINUTES,
    }


if __name__ == "__main__":
    """
    Run this module directly to validate your .env configuration:
        python -m auth_gateway.config
    """
    print("=" * 80)
    print("GATEWAY CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()
        status = validate_configuration(config)

        print(f"  Client ID:      {config.SPOTIFY_CLIENT_ID}")
        print(f"  Scopes:         {', '.join(config.scopes_list)}")
        print(f"  Callback URL:   {status['callback_url']}")
        print(f"  Base path:      {config.base_path or '/'}")
        print(f"  Listening on:   {config.GATEWAY_HOST}:{config.GATEWAY_PORT}")

        if status["valid"]:
            print("\n✓ All critical checks passed!")
        else:
            print("\n✗ Configuration errors found:")
            for error in status["errors"]:
                print(f"  - {error}")

        for warning in status["warnings"]:
            print(f"  ⚠ {warning}")

    except Exception as e:
        print(f"\n✗ Configuration error: {e}")
        print("""
Required variables:
  - SPOTIFY_CLIENT_ID
  - SPOTIFY_CLIENT_SECRET
  - PUBLIC_ORIGIN
  - SESSION_SECRET
        """)
