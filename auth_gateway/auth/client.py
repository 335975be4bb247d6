"""
Spotify identity client.

This module handles:
- Building the Spotify authorization URL (pure, no network I/O)
- Exchanging an authorization code for tokens and fetching the profile
- Issuing and verifying the signed OAuth state parameter
"""

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlencode

import httpx
import jwt
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError as PydanticValidationError

from auth_gateway.config import AuthConfig, Settings
from auth_gateway.exceptions import ProtocolError, ProviderError
from auth_gateway.models import ProviderCredentials, ProviderProfile

logger = logging.getLogger(__name__)


DEFAULT_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
DEFAULT_TOKEN_URL = "https://accounts.spotify.com/api/token"
DEFAULT_PROFILE_URL = "https://api.spotify.com/v1/me"

REQUIRED_TOKEN_FIELDS = ("access_token", "refresh_token", "expires_in")

STATE_ALGORITHM = "HS256"
STATE_ISSUER = "spotify-auth-gateway"
STATE_AUDIENCE = "spotify-callback"


# =============================================================================
# Identity Client
# =============================================================================

class SpotifyIdentityClient:
    """
    OAuth2 authorization-code client for Spotify.

    Args:
        config: OAuth client configuration (client id/secret, scopes, callback)
        authorize_url: Provider authorization endpoint
        token_url: Provider token endpoint
        profile_url: Provider profile endpoint
        timeout: Bound for each provider round trip in seconds
        show_dialog: Ask Spotify to always show the consent dialog
        http_client: Optional shared httpx client; a short-lived client is
                     opened per exchange when omitted
    """

    def __init__(
        self,
        config: AuthConfig,
        authorize_url: str = DEFAULT_AUTHORIZE_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        profile_url: str = DEFAULT_PROFILE_URL,
        timeout: float = 10.0,
        show_dialog: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.authorize_url = str(authorize_url)
        self.token_url = str(token_url)
        self.profile_url = str(profile_url)
        self.timeout = timeout
        self.show_dialog = show_dialog
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "SpotifyIdentityClient":
        return cls(
            config=settings.get_auth_config(),
            authorize_url=str(settings.SPOTIFY_AUTHORIZE_URL),
            token_url=str(settings.SPOTIFY_TOKEN_URL),
            profile_url=str(settings.SPOTIFY_PROFILE_URL),
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            show_dialog=settings.SPOTIFY_SHOW_DIALOG,
            http_client=http_client,
        )

    # -------------------------------------------------------------------------
    # Authorization URL
    # -------------------------------------------------------------------------

    def build_authorization_url(
        self,
        scopes: Optional[Iterable[str]] = None,
        state: Optional[str] = None,
    ) -> str:
        """
        Build the provider authorization URL.

        Deterministic for a given configuration, scopes and state.

        Args:
            scopes: Scopes to request (defaults to the configured scopes)
            state: Optional opaque state echoed back on the callback

        Returns:
            Authorization URL to redirect the browser to
        """
        requested = self.config.scopes if scopes is None else tuple(scopes)

        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.config.callback_url,
        }
        if requested:
            # Spotify expects space-separated scopes
            params["scope"] = " ".join(requested)
        if state:
            params["state"] = state
        if self.show_dialog:
            params["show_dialog"] = "true"

        return f"{self.authorize_url}?{urlencode(params)}"

    # -------------------------------------------------------------------------
    # Code Exchange
    # -------------------------------------------------------------------------

    async def exchange_code_for_credentials(self, code: str) -> ProviderCredentials:
        """
        Exchange an authorization code for tokens and the user profile.

        Args:
            code: Authorization code received on the callback

        Returns:
            Complete provider credentials

        Raises:
            ProviderError: If the provider rejects the code, the network call
                           fails or times out
            ProtocolError: If a response is malformed or a credential field
                           is missing
        """
        if not code:
            raise ProviderError("Missing authorization code")

        try:
            async with self._client() as client:
                token_data = await self._request_tokens(client, code)
                profile_data = await self._fetch_profile(client, token_data["access_token"])
        except httpx.TimeoutException as e:
            logger.warning(f"Spotify request timed out after {self.timeout}s")
            raise ProviderError("Identity provider timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"Spotify request failed: {e}")
            raise ProviderError(f"Unable to reach identity provider: {e}") from e

        try:
            profile = ProviderProfile.from_spotify(profile_data)
            credentials = ProviderCredentials(
                access_token=token_data["access_token"],
                refresh_token=token_data["refresh_token"],
                expires_in_seconds=token_data["expires_in"],
                profile=profile,
            )
        except PydanticValidationError as e:
            raise ProtocolError(f"Malformed provider response: {e.error_count()} invalid field(s)") from e

        logger.info(
            "Exchanged authorization code with Spotify",
            extra={
                "provider_user_id": profile.id,
                "expires_in": credentials.expires_in_seconds,
            }
        )

        return credentials

    async def _request_tokens(self, client: httpx.AsyncClient, code: str) -> Dict[str, Any]:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.callback_url,
        }

        response = await client.post(
            self.token_url,
            data=payload,
            auth=(self.config.client_id, self.config.client_secret),
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            timeout=self.timeout,
        )

        if not response.is_success:
            error_data = _safe_json(response)
            error_code = error_data.get("error") if isinstance(error_data.get("error"), str) else None
            error_msg = error_data.get("error_description") or error_code or "Token exchange failed"
            raise ProviderError(
                f"Token exchange failed: {error_msg}",
                status_code=response.status_code,
                error_code=error_code,
            )

        token_data = _json_object(response, "token")

        missing = [name for name in REQUIRED_TOKEN_FIELDS if token_data.get(name) in (None, "")]
        if missing:
            raise ProtocolError(f"Token response missing {', '.join(missing)}")

        return token_data

    async def _fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> Dict[str, Any]:
        response = await client.get(
            self.profile_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            timeout=self.timeout,
        )

        if not response.is_success:
            raise ProviderError(
                f"Profile request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        profile_data = _json_object(response, "profile")
        if not profile_data.get("id"):
            raise ProtocolError("Profile response missing id")

        return profile_data

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    if not response.headers.get("content-type", "").startswith("application/json"):
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _json_object(response: httpx.Response, what: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ProtocolError(f"Invalid JSON in {what} response") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Unexpected {what} response: expected a JSON object")

    return data


# =============================================================================
# OAuth State
# =============================================================================

def issue_state(secret: str, max_age_seconds: int = 600) -> str:
    """
    Issue a signed, short-lived state parameter.

    The state is self-contained so the initiate route does not have to
    write to the session.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "nonce": secrets.token_urlsafe(16),
        "iat": now,
        "exp": now + timedelta(seconds=max_age_seconds),
        "iss": STATE_ISSUER,
        "aud": STATE_AUDIENCE,
    }
    return jwt.encode(payload, secret, algorithm=STATE_ALGORITHM)


def verify_state(state: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Verify a state parameter issued by ``issue_state``.

    Raises:
        ProtocolError: If the state is missing, tampered with or expired
    """
    if not state:
        raise ProtocolError("Missing state parameter")

    try:
        return jwt.decode(
            state,
            secret,
            algorithms=[STATE_ALGORITHM],
            audience=STATE_AUDIENCE,
            issuer=STATE_ISSUER,
            options={"require": ["exp", "iat", "nonce"]},
        )
    except InvalidTokenError as e:
        raise ProtocolError(f"Invalid state parameter: {e}") from e
