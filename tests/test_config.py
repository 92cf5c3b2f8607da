"""Tests for core/config.py."""

from agentage.core.config import Settings


def test_default_settings():
    s = Settings(_env_file=None)
    assert s.app_port == 3001
    assert s.app_host == "0.0.0.0"
    assert s.log_level == "INFO"
    assert s.jwt_expires_in == "7d"
    assert s.jwt_issuer == "agentage.io"
    assert s.jwt_audience == "agentage.io"
    assert s.database_url  # non-empty


def test_url_scheme_follows_environment():
    assert Settings(app_env="development").url_scheme == "http"
    assert Settings(app_env="production").url_scheme == "https"


def test_provider_configured_needs_all_three_values():
    s = Settings(github_client_id="id", github_client_secret="secret")
    assert not s.provider_configured("github")

    s = Settings(
        github_client_id="id",
        github_client_secret="secret",
        github_callback_url="http://localhost:3001/api/auth/github/callback",
    )
    assert s.provider_configured("github")
    assert not s.provider_configured("google")


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("JWT_EXPIRES_IN", "24h")
    monkeypatch.setenv("DEVICE_POLL_ENFORCE_INTERVAL", "false")
    s = Settings()
    assert s.jwt_expires_in == "24h"
    assert s.device_poll_enforce_interval is False
