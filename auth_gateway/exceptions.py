"""
Gateway Exceptions
==================

Error taxonomy for the authentication gateway.

- ConfigError: malformed origin/callback or missing credentials (fatal at startup)
- ProviderError: provider rejected the code, network failure or timeout
- ProtocolError: provider response is malformed
- VerificationError: application rejected an otherwise valid profile
- ValidationError: a domain value failed its smart constructor

ProviderError, ProtocolError and VerificationError are recoverable and are
collapsed into a single failure redirect by the callback route.
"""


class GatewayError(Exception):
    """Base exception for gateway errors"""
    pass


class ConfigError(GatewayError):
    """Configuration is invalid; raised while building the application."""
    pass


class ProviderError(GatewayError):
    """Identity provider refused the request or could not be reached."""

    def __init__(self, message: str, status_code: int = None, error_code: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ProtocolError(GatewayError):
    """Identity provider answered with a malformed payload."""
    pass


class VerificationError(GatewayError):
    """Exchanged credentials were rejected by the verification step."""
    pass


class ValidationError(GatewayError, ValueError):
    """Domain value construction failed."""
    pass


# Errors the callback route turns into the failure redirect
RECOVERABLE_AUTH_ERRORS = (ProviderError, ProtocolError, VerificationError)


__all__ = [
    "GatewayError",
    "ConfigError",
    "ProviderError",
    "ProtocolError",
    "VerificationError",
    "ValidationError",
    "RECOVERABLE_AUTH_ERRORS",
]
