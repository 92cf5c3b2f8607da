"""Tests for the OAuth provider adapters and helpers."""

import httpx
import pytest

from agentage.core.config import Settings
from agentage.core.errors import OAuthError, ProviderUnavailable
from agentage.services.oauth import (
    GitHubProvider,
    GoogleProvider,
    MicrosoftProvider,
    StateSigner,
    build_providers,
    validate_desktop_callback,
    with_query,
)

CALLBACK = "http://localhost:3001/api/auth/x/callback"


# ── profile narrowing ────────────────────────────────────────────────────────


def test_github_prefers_primary_verified_email():
    gh = GitHubProvider("id", "secret", CALLBACK)
    p = gh.narrow(
        {"id": 1, "login": "octo", "avatar_url": "https://a.example.com/1"},
        {
            "emails": [
                {"email": "unverified@example.com", "primary": True, "verified": False},
                {"email": "second@example.com", "primary": False, "verified": True},
            ]
        },
    )
    assert p.provider == "github"
    assert p.provider_id == "1"
    assert p.email == "second@example.com"
    assert p.name == "octo"
    assert p.username == "octo"


def test_github_without_verified_email_is_rejected():
    gh = GitHubProvider("id", "secret", CALLBACK)
    with pytest.raises(OAuthError, match="No email provided by GitHub"):
        gh.narrow({"id": 1, "login": "octo"}, {"emails": []})


def test_google_narrowing():
    google = GoogleProvider("id", "secret", CALLBACK)
    p = google.narrow(
        {"sub": "g-123", "email": "Ada@Example.com", "email_verified": True, "name": "Ada", "picture": "https://p.example.com"}
    )
    assert (p.provider, p.provider_id, p.email, p.name) == ("google", "g-123", "ada@example.com", "Ada")

    with pytest.raises(OAuthError):
        google.narrow({"sub": "g-123", "email": "ada@example.com", "email_verified": False})


def test_microsoft_falls_back_to_upn():
    ms = MicrosoftProvider("id", "secret", CALLBACK, tenant="contoso")
    p = ms.narrow({"id": "m-1", "userPrincipalName": "ada@contoso.example.com", "displayName": "Ada"})
    assert p.email == "ada@contoso.example.com"
    assert p.name == "Ada"
    assert ms.authorize_endpoint == "https://login.microsoftonline.com/contoso/oauth2/v2.0/authorize"


def test_missing_provider_id_is_rejected():
    google = GoogleProvider("id", "secret", CALLBACK)
    with pytest.raises(OAuthError):
        google.narrow({"email": "ada@example.com", "email_verified": True})


# ── HTTP round-trips ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_exchange_code_refused():
    def handler(request):
        return httpx.Response(200, json={"error": "bad_verification_code", "error_description": "The code is wrong"})

    gh = GitHubProvider("id", "secret", CALLBACK)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(OAuthError, match="The code is wrong"):
            await gh.exchange_code(http, "code")


@pytest.mark.asyncio
async def test_provider_outage_is_unavailable():
    def handler(request):
        return httpx.Response(503)

    google = GoogleProvider("id", "secret", CALLBACK)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(ProviderUnavailable) as exc:
            await google.fetch_profile(http, "token")
    assert exc.value.status_code == 502


def test_build_providers_skips_unconfigured():
    s = Settings(
        google_client_id="id",
        google_client_secret="secret",
        google_callback_url=CALLBACK,
    )
    assert list(build_providers(s)) == ["google"]


# ── state / callbacks ────────────────────────────────────────────────────────


def test_state_roundtrip_and_binding():
    signer = StateSigner("secret", ttl_seconds=60)
    state = signer.encode("github", {"device_code": "ABCD-EFGH"})
    assert signer.decode("github", state) == {"device_code": "ABCD-EFGH"}

    with pytest.raises(OAuthError):
        signer.decode("google", state)
    with pytest.raises(OAuthError):
        StateSigner("other-secret").decode("github", state)
    with pytest.raises(OAuthError):
        signer.decode("github", None)


def test_expired_state_is_rejected():
    signer = StateSigner("secret", ttl_seconds=-1)
    state = signer.encode("github", {})
    with pytest.raises(OAuthError, match="expired"):
        signer.decode("github", state)


@pytest.mark.parametrize(
    "url",
    ["http://localhost:8080/cb", "http://127.0.0.1:5000/callback?x=1", "https://localhost/cb"],
)
def test_desktop_callback_accepts_loopback(url):
    assert validate_desktop_callback(url) == url


@pytest.mark.parametrize(
    "url",
    ["https://example.com/cb", "http://localhost.example.com/cb", "file:///etc/passwd", "not a url"],
)
def test_desktop_callback_rejects_everything_else(url):
    with pytest.raises(OAuthError):
        validate_desktop_callback(url)


def test_with_query_keeps_existing_params():
    url = with_query("http://localhost:8080/cb?session=1", token="abc")
    assert url == "http://localhost:8080/cb?session=1&token=abc"
