"""
Spotify Auth Gateway

Signs a browser in with Spotify using the OAuth2 authorization code grant,
keeps a server-side session for it and exposes the authenticated principal
to downstream request handlers.

Modules:
- config: Environment configuration and callback URL derivation
- models: Provider, session and response models
- users: User domain smart constructors and the UserService protocol
- auth: Identity client, verification, session management and routes
- main: Application factory
"""

__version__ = "1.0.0"
