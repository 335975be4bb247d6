"""
Authentication routes for the Spotify authorization code flow.

The router is mounted under BASE_PATH and drives the identity client, the
verifier and the session manager through the OAuth state machine:

    GET /auth/spotify            -> redirect to Spotify
    GET /auth/spotify/callback   -> exchange, verify, establish session
    GET /logout                  -> clear session, redirect to /api
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from auth_gateway.auth.client import SpotifyIdentityClient, issue_state, verify_state
from auth_gateway.auth.session import SessionManager, get_session_manager, require_principal
from auth_gateway.auth.verify import ProviderVerifier
from auth_gateway.config import (
    API_PATH,
    AUTH_CALLBACK_PATH,
    AUTH_PATH,
    LOGOUT_PATH,
    Settings,
)
from auth_gateway.exceptions import RECOVERABLE_AUTH_ERRORS, ProtocolError
from auth_gateway.models import MessageResponse, PrincipalResponse, Principal

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

gateway_router = APIRouter()

CALLBACK_ROUTE_NAME = "auth_spotify_callback"


# =============================================================================
# Dependencies
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_identity_client(request: Request) -> SpotifyIdentityClient:
    return request.app.state.identity_client


def get_verifier(request: Request) -> ProviderVerifier:
    return request.app.state.verifier


def _failure_redirect(settings: Settings) -> RedirectResponse:
    return RedirectResponse(url=settings.FAILURE_REDIRECT, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Initiate Endpoint
# =============================================================================

@gateway_router.get(AUTH_PATH, response_class=RedirectResponse, tags=["authentication"])
async def login(
    settings: Settings = Depends(get_app_settings),
    client: SpotifyIdentityClient = Depends(get_identity_client),
):
    """
    Initiate the login flow by redirecting to Spotify.

    The state parameter is a signed token, so the session is not touched
    until the callback succeeds.

    Returns:
        RedirectResponse to the Spotify authorization endpoint
    """
    state = None
    if settings.OAUTH_STATE_CHECK:
        state = issue_state(settings.SESSION_SECRET, settings.OAUTH_STATE_MAX_AGE_SECONDS)

    authorization_url = client.build_authorization_url(state=state)

    return RedirectResponse(url=authorization_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Callback Endpoint
# =============================================================================

@gateway_router.get(
    AUTH_CALLBACK_PATH,
    name=CALLBACK_ROUTE_NAME,
    response_model=PrincipalResponse,
    tags=["authentication"],
)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Spotify"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authorization failed"),
    settings: Settings = Depends(get_app_settings),
    client: SpotifyIdentityClient = Depends(get_identity_client),
    verifier: ProviderVerifier = Depends(get_verifier),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Handle the OAuth callback from Spotify.

    This endpoint:
    1. Redirects to the failure page if Spotify reports an error
    2. Validates the state parameter
    3. Exchanges the authorization code for credentials
    4. Verifies the credentials into a principal
    5. Establishes the session

    Any failure in steps 1-4 ends in a redirect to FAILURE_REDIRECT; provider
    details are only logged.

    Returns:
        The principal as JSON, or a redirect to LOGIN_SUCCESS_REDIRECT
    """
    if error:
        logger.info("Authorization denied by provider", extra={"provider_error": error})
        return _failure_redirect(settings)

    if not code:
        logger.warning("Callback received without authorization code")
        return _failure_redirect(settings)

    if settings.OAUTH_STATE_CHECK:
        try:
            verify_state(state, settings.SESSION_SECRET)
        except ProtocolError as e:
            logger.warning(f"Callback state rejected: {e}")
            return _failure_redirect(settings)

    try:
        credentials = await client.exchange_code_for_credentials(code)
        principal = await verifier.verify(credentials)
    except RECOVERABLE_AUTH_ERRORS as e:
        logger.warning(
            f"Authentication failed: {e}",
            extra={"exception_type": type(e).__name__}
        )
        return _failure_redirect(settings)

    if await request.is_disconnected():
        logger.warning("Client disconnected before session establishment")
        return _failure_redirect(settings)

    await manager.establish(request.session, principal)

    if settings.LOGIN_SUCCESS_REDIRECT:
        return RedirectResponse(url=settings.LOGIN_SUCCESS_REDIRECT, status_code=status.HTTP_302_FOUND)

    return JSONResponse(content={"user": principal.model_dump(mode="json")})


# =============================================================================
# Logout Endpoint
# =============================================================================

@gateway_router.get(LOGOUT_PATH, response_class=RedirectResponse, tags=["authentication"])
async def logout(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    manager: SessionManager = Depends(get_session_manager),
):
    """Clear the session and redirect to the API landing endpoint."""
    await manager.clear(request.session)
    return RedirectResponse(url=settings.post_logout_path, status_code=status.HTTP_302_FOUND)


# =============================================================================
# API Endpoints
# =============================================================================

@gateway_router.get(API_PATH, response_model=MessageResponse, tags=["api"])
async def api_root():
    return {"message": "Welcome to spotify-auth-gateway!"}


@gateway_router.get(f"{API_PATH}/me", response_model=PrincipalResponse, tags=["api"])
async def current_user(principal: Principal = Depends(require_principal)):
    """Return the principal of the authenticated session (401 when anonymous)."""
    return {"user": principal}
