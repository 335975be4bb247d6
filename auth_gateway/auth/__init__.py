"""
Authentication Package

This package implements the Spotify authorization code flow and the session
lifecycle of the gateway.

Modules:
- client: Authorization URL construction, code exchange, OAuth state tokens
- verify: Verification of exchanged credentials and observer notification
- session: Session store and session manager, principal dependencies
- routes: Initiate, callback and logout endpoints

The authentication flow:
1. Browser calls /auth/spotify and is redirected to Spotify
2. User approves the application on Spotify
3. Spotify redirects back to /auth/spotify/callback with a code
4. Gateway exchanges the code, verifies the profile, establishes the session
5. Downstream handlers read the principal from the session
"""

from .routes import gateway_router

__all__ = [
    "gateway_router",
]
