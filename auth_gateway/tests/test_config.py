"""
Configuration Tests

Tests settings parsing, callback URL derivation and startup validation.
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from auth_gateway.config import (
    AuthConfig,
    build_callback_url,
    get_settings,
    normalize_base_path,
    validate_configuration,
)
from auth_gateway.exceptions import ConfigError
from auth_gateway.main import create_app, run

from conftest import make_settings


class TestBasePath:
    """Test suite for base path normalization"""

    @pytest.mark.parametrize("raw,expected", [
        ("", ""),
        (None, ""),
        ("/", ""),
        ("/spotify", "/spotify"),
        ("spotify/", "/spotify"),
        ("  /spotify/  ", "/spotify"),
        ("//a///b//", "/a/b"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_base_path(raw) == expected

    def test_rejects_query_in_base_path(self):
        with pytest.raises(PydanticValidationError):
            make_settings(BASE_PATH="/spotify?x=1")


class TestCallbackURL:
    """Test suite for callback URL derivation"""

    def test_replaces_origin_path(self):
        url = build_callback_url("https://gateway.example.com/some/path?q=1#frag", "/spotify")

        assert url == "https://gateway.example.com/spotify/auth/spotify/callback"

    def test_keeps_port(self):
        assert build_callback_url("http://localhost:3333", "") == "http://localhost:3333/auth/spotify/callback"

    @pytest.mark.parametrize("origin", ["gateway.example.com", "ftp://gateway.example.com", "", "https://"])
    def test_malformed_origin_raises_config_error(self, origin):
        with pytest.raises(ConfigError):
            build_callback_url(origin, "")

    def test_auth_config_derives_callback(self):
        config = AuthConfig(
            client_id="id",
            client_secret="secret",
            scopes=("a", "b", "a"),
            origin="https://gateway.example.com",
            base_path="spotify/",
        )

        assert config.base_path == "/spotify"
        assert config.scopes == ("a", "b")
        assert config.callback_path == "/spotify/auth/spotify/callback"
        assert config.callback_url == "https://gateway.example.com/spotify/auth/spotify/callback"
        assert "secret" not in repr(config)

    def test_auth_config_requires_credentials(self):
        with pytest.raises(ConfigError):
            AuthConfig(client_id="id", client_secret="", scopes=(), origin="https://gateway.example.com")

    def test_auth_config_rejects_bad_origin(self):
        with pytest.raises(ConfigError):
            AuthConfig(client_id="id", client_secret="secret", scopes=(), origin="not a url")


class TestSettings:
    """Test suite for Settings"""

    def test_scopes_list(self):
        settings = make_settings(SPOTIFY_SCOPES="user-read-email, user-top-read user-read-email")

        assert settings.scopes_list == ["user-read-email", "user-top-read"]

    def test_defaults(self, settings):
        assert settings.GATEWAY_PORT == 3333
        assert settings.FAILURE_REDIRECT == "/login"
        assert settings.LOGIN_SUCCESS_REDIRECT is None
        assert settings.post_logout_path == "/api"

    def test_post_logout_path_uses_base_path(self):
        assert make_settings(BASE_PATH="/spotify/").post_logout_path == "/spotify/api"

    def test_short_session_secret_rejected(self):
        with pytest.raises(PydanticValidationError):
            make_settings(SESSION_SECRET="keyboard cat")

    def test_missing_client_secret_rejected(self):
        with pytest.raises(PydanticValidationError):
            make_settings(SPOTIFY_CLIENT_SECRET="")

    def test_log_level_normalized(self):
        assert make_settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_validate_configuration_report(self, settings):
        report = validate_configuration(settings)

        assert report["valid"] is True
        assert report["callback_url"] == "https://gateway.example.com/auth/spotify/callback"
        assert any("SESSION_HTTPS_ONLY" in warning for warning in report["warnings"])

    def test_validate_configuration_flags_disabled_state_check(self):
        report = validate_configuration(make_settings(OAUTH_STATE_CHECK=False, SESSION_HTTPS_ONLY=True))

        assert any("OAUTH_STATE_CHECK" in warning for warning in report["warnings"])
        assert not any("SESSION_HTTPS_ONLY" in warning for warning in report["warnings"])


class TestStartupConfiguration:
    """Test suite for configuration errors raised by the app factory"""

    def test_missing_environment_raises_config_error(self, monkeypatch, tmp_path):
        for name in ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "PUBLIC_ORIGIN", "SESSION_SECRET"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.chdir(tmp_path)
        get_settings.cache_clear()

        try:
            with pytest.raises(ConfigError):
                create_app()
        finally:
            get_settings.cache_clear()

    def test_settings_loaded_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SPOTIFY_CLIENT_ID", "env-client")
        monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("PUBLIC_ORIGIN", "https://env.example.com")
        monkeypatch.setenv("SESSION_SECRET", "s" * 40)
        monkeypatch.setenv("BASE_PATH", "/env")
        monkeypatch.chdir(tmp_path)
        get_settings.cache_clear()

        try:
            app = create_app()
        finally:
            get_settings.cache_clear()

        assert app.state.settings.SPOTIFY_CLIENT_ID == "env-client"
        assert app.state.identity_client.config.callback_url == "https://env.example.com/env/auth/spotify/callback"

    def test_run_reports_missing_environment_as_config_error(self, monkeypatch, tmp_path):
        for name in ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "PUBLIC_ORIGIN", "SESSION_SECRET"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.chdir(tmp_path)
        get_settings.cache_clear()

        try:
            with patch("auth_gateway.main.uvicorn.run") as uvicorn_run:
                with pytest.raises(ConfigError):
                    run()
        finally:
            get_settings.cache_clear()

        uvicorn_run.assert_not_called()

    def test_session_purge_interval_default(self, settings):
        assert settings.SESSION_PURGE_INTERVAL_SECONDS == 300
