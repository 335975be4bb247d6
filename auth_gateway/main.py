"""
FastAPI Gateway Application Factory
===================================

Entry point for the Spotify authentication gateway: signs browsers in with
Spotify (OAuth2 authorization code grant) and keeps a server-side session
behind an opaque, signed, HttpOnly cookie.

Routes (relative to BASE_PATH):
    - /auth/spotify           : Start the login flow
    - /auth/spotify/callback  : OAuth callback
    - /logout                 : End the session
    - /api                    : Landing endpoint
    - /api/me                 : Current principal (requires a session)
    - /health                 : Health check (not prefixed)

Environment Variables Required:
    - SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET: Spotify application credentials
    - PUBLIC_ORIGIN: Public origin the callback URL is derived from
    - SESSION_SECRET: Secret for signing the session cookie
    - BASE_PATH: Optional path prefix
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn auth_gateway.main:create_app --factory --reload --port 3333

    Production:
        auth-gateway
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Iterable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.sessions import SessionMiddleware
from starlette.routing import NoMatchFound

from auth_gateway import __version__
from auth_gateway.auth.client import SpotifyIdentityClient
from auth_gateway.auth.routes import CALLBACK_ROUTE_NAME, gateway_router
from auth_gateway.auth.session import (
    InMemorySessionStore,
    SessionManager,
    SessionStore,
    purge_sessions_periodically,
)
from auth_gateway.auth.verify import Observer, ProviderVerifier
from auth_gateway.config import AuthConfig, Settings, get_settings, validate_configuration
from auth_gateway.exceptions import ConfigError
from auth_gateway.models import ErrorResponse, HealthResponse

logger = logging.getLogger("auth_gateway.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Log the callback URL and configuration warnings
        - Start the expired session purge task

    Shutdown tasks:
        - Stop the purge task
        - Wait for pending verification observers
    """
    settings: Settings = app.state.settings

    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    logger.info(
        "Gateway service started",
        extra={
            "callback_url": report["callback_url"],
            "base_path": settings.base_path,
            "version": __version__,
        }
    )

    store = app.state.session_manager.store
    purge_task = None
    if hasattr(store, "purge_expired"):
        purge_task = asyncio.create_task(
            purge_sessions_periodically(store, settings.SESSION_PURGE_INTERVAL_SECONDS)
        )
    app.state.session_purge_task = purge_task

    yield

    logger.info("Shutting down gateway service")
    if purge_task is not None:
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass
    await app.state.verifier.drain()
    logger.info("Gateway service shutdown complete")


def load_settings() -> Settings:
    """
    Load settings from the environment.

    Raises:
        ConfigError: If required variables are missing or invalid
    """
    try:
        return get_settings()
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def check_callback_route(app: FastAPI, auth_config: AuthConfig, client: SpotifyIdentityClient) -> None:
    """
    Ensure the callback URL sent to the provider matches the mounted route.

    Raises:
        ConfigError: If the paths differ or the route is not mounted
    """
    try:
        mounted = str(app.url_path_for(CALLBACK_ROUTE_NAME))
    except NoMatchFound as e:
        raise ConfigError("Callback route is not mounted") from e

    expected = {auth_config.callback_path, client.config.callback_path}
    if expected != {mounted}:
        raise ConfigError(
            f"Callback path mismatch: provider redirect uses {sorted(expected)}, "
            f"route listens on {mounted}"
        )


def create_app(
    settings: Optional[Settings] = None,
    *,
    identity_client: Optional[SpotifyIdentityClient] = None,
    verifier: Optional[ProviderVerifier] = None,
    session_store: Optional[SessionStore] = None,
    observers: Optional[Iterable[Observer]] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Session and CORS middleware
        - Gateway routes mounted under BASE_PATH
        - Exception handlers

    Raises:
        ConfigError: If configuration is missing or inconsistent

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = load_settings()

    report = validate_configuration(settings)
    if not report["valid"]:
        raise ConfigError("; ".join(report["errors"]))

    auth_config = settings.get_auth_config()

    app = FastAPI(
        title="Spotify Auth Gateway",
        description="Spotify OAuth2 login with server-side sessions",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.identity_client = identity_client or SpotifyIdentityClient.from_settings(settings)
    app.state.verifier = verifier or ProviderVerifier(observers)
    app.state.session_manager = SessionManager(
        session_store or InMemorySessionStore(),
        lifetime=timedelta(minutes=settings.SESSION_LIFETIME_MINUTES),
    )

    # Signed cookie carrying only the opaque session id
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        session_cookie=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_LIFETIME_MINUTES * 60,
        same_site="lax",
        https_only=settings.SESSION_HTTPS_ONLY,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(gateway_router, prefix=settings.base_path)

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service="auth-gateway", version=__version__)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
                detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
            ).model_dump()
        )

    check_callback_route(app, auth_config, app.state.identity_client)

    return app


def run() -> None:
    """Console entry point: serve the gateway with uvicorn."""
    settings = load_settings()

    uvicorn.run(
        "auth_gateway.main:create_app",
        factory=True,
        host=settings.GATEWAY_HOST,
        port=settings.GATEWAY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
