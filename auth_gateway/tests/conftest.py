"""Shared fixtures for gateway tests."""

from typing import Any, Dict

import pytest

from auth_gateway.config import Settings
from auth_gateway.models import ProviderCredentials, ProviderProfile


TEST_SESSION_SECRET = "test-session-secret-1234567890abcdef"


def make_settings(**overrides) -> Settings:
    values = {
        "SPOTIFY_CLIENT_ID": "test-client-id",
        "SPOTIFY_CLIENT_SECRET": "test-client-secret",
        "SPOTIFY_SCOPES": "user-read-email,user-read-private",
        "PUBLIC_ORIGIN": "https://gateway.example.com",
        "SESSION_SECRET": TEST_SESSION_SECRET,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def spotify_profile(user_id: str = "p1", display_name: str = "Ana", **extra) -> Dict[str, Any]:
    """Spotify /v1/me payload"""
    data = {
        "id": user_id,
        "display_name": display_name,
        "email": f"{user_id}@example.com",
        "country": "SE",
        "product": "premium",
        "external_urls": {"spotify": f"https://open.spotify.com/user/{user_id}"},
        "images": [{"url": f"https://i.scdn.co/image/{user_id}", "height": 64, "width": 64}],
    }
    data.update(extra)
    return data


def make_credentials(user_id: str = "p1", display_name: str = "Ana", **profile_extra) -> ProviderCredentials:
    return ProviderCredentials(
        access_token="mock-access-token",
        refresh_token="mock-refresh-token",
        expires_in_seconds=3600,
        profile=ProviderProfile.from_spotify(spotify_profile(user_id, display_name, **profile_extra)),
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def credentials():
    return make_credentials()
