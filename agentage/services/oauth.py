"""OAuth 2.0 authorization-code clients for GitHub, Google and Microsoft.

Each provider answers in its own shape; ``narrow()`` on each adapter is the
single place where that shape becomes a ``ProviderProfile``. Everything
downstream (linking, token issuance) sees only the unified profile.

Flow state (device user code, desktop callback, explicit link requests) is
carried through the provider round-trip in a short-lived signed ``state``
value, so a callback cannot be replayed with forged flow information.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx
import jwt
from pydantic import ValidationError

from agentage.core.config import Settings
from agentage.core.errors import OAuthError, ProviderUnavailable
from agentage.core.logging import get_logger
from agentage.schemas.user import ProviderProfile

logger = get_logger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1"}


class OAuthProvider:
    """Base adapter. Subclasses set the endpoints and implement ``narrow``."""

    name: ClassVar[str]
    authorize_endpoint: str
    token_endpoint: str
    scopes: ClassVar[tuple[str, ...]]

    def __init__(self, client_id: str, client_secret: str, callback_url: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code(self, http: httpx.AsyncClient, code: str) -> str:
        """Trade the authorization code for a provider access token."""
        try:
            resp = await http.post(
                self.token_endpoint,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "redirect_uri": self.callback_url,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            logger.error("OAuth code exchange failed", provider=self.name, error=str(exc))
            raise ProviderUnavailable(f"{self.display_name} token exchange failed") from exc

        token = body.get("access_token")
        if not token:
            # GitHub answers 200 with {"error": "bad_verification_code", ...}
            raise OAuthError(body.get("error_description") or f"{self.display_name} refused the code")
        return token

    async def fetch_profile(self, http: httpx.AsyncClient, access_token: str) -> ProviderProfile:
        raise NotImplementedError

    def narrow(self, *payloads: dict[str, Any]) -> ProviderProfile:
        raise NotImplementedError

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    async def _get_json(self, http: httpx.AsyncClient, url: str, access_token: str) -> Any:
        try:
            resp = await http.get(
                url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            logger.error("OAuth profile request failed", provider=self.name, url=url, error=str(exc))
            raise ProviderUnavailable(f"{self.display_name} profile request failed") from exc

    def _profile(self, **fields: Any) -> ProviderProfile:
        if not fields.get("email"):
            raise OAuthError(f"No email provided by {self.display_name}")
        try:
            return ProviderProfile(provider=self.name, **fields)
        except ValidationError as exc:
            raise OAuthError(f"Unusable profile returned by {self.display_name}") from exc


class GitHubProvider(OAuthProvider):
    name = "github"
    authorize_endpoint = "https://github.com/login/oauth/authorize"
    token_endpoint = "https://github.com/login/oauth/access_token"
    user_endpoint = "https://api.github.com/user"
    emails_endpoint = "https://api.github.com/user/emails"
    scopes = ("user:email",)

    @property
    def display_name(self) -> str:
        return "GitHub"

    async def fetch_profile(self, http: httpx.AsyncClient, access_token: str) -> ProviderProfile:
        user = await self._get_json(http, self.user_endpoint, access_token)
        emails = await self._get_json(http, self.emails_endpoint, access_token)
        return self.narrow(user, {"emails": emails})

    def narrow(self, user: dict[str, Any], extra: dict[str, Any] | None = None) -> ProviderProfile:
        emails = (extra or {}).get("emails") or []
        verified = [e for e in emails if e.get("verified")]
        primary = next((e for e in verified if e.get("primary")), None)
        chosen = primary or (verified[0] if verified else None)
        email = chosen["email"] if chosen else None
        return self._profile(
            provider_id=str(user.get("id", "")),
            email=email,
            name=user.get("name") or user.get("login") or email,
            avatar=user.get("avatar_url"),
            username=user.get("login"),
        )


class GoogleProvider(OAuthProvider):
    name = "google"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://openidconnect.googleapis.com/v1/userinfo"
    scopes = ("openid", "profile", "email")

    async def fetch_profile(self, http: httpx.AsyncClient, access_token: str) -> ProviderProfile:
        info = await self._get_json(http, self.userinfo_endpoint, access_token)
        return self.narrow(info)

    def narrow(self, info: dict[str, Any]) -> ProviderProfile:
        email = info.get("email") if info.get("email_verified", True) else None
        return self._profile(
            provider_id=str(info.get("sub", "")),
            email=email,
            name=info.get("name") or email,
            avatar=info.get("picture"),
        )


class MicrosoftProvider(OAuthProvider):
    name = "microsoft"
    me_endpoint = "https://graph.microsoft.com/v1.0/me"
    scopes = ("openid", "email", "profile", "User.Read")

    def __init__(self, client_id: str, client_secret: str, callback_url: str, tenant: str = "common") -> None:
        super().__init__(client_id, client_secret, callback_url)
        base = f"https://login.microsoftonline.com/{tenant}/oauth2/v2.0"
        self.authorize_endpoint = f"{base}/authorize"
        self.token_endpoint = f"{base}/token"

    async def fetch_profile(self, http: httpx.AsyncClient, access_token: str) -> ProviderProfile:
        me = await self._get_json(http, self.me_endpoint, access_token)
        return self.narrow(me)

    def narrow(self, me: dict[str, Any]) -> ProviderProfile:
        email = me.get("mail") or me.get("userPrincipalName")
        return self._profile(
            provider_id=str(me.get("id", "")),
            email=email,
            name=me.get("displayName") or email,
        )


def build_providers(settings: Settings) -> dict[str, OAuthProvider]:
    """Adapters for every provider whose credentials are configured."""
    providers: dict[str, OAuthProvider] = {}
    if settings.provider_configured("github"):
        providers["github"] = GitHubProvider(
            settings.github_client_id, settings.github_client_secret, settings.github_callback_url
        )
    if settings.provider_configured("google"):
        providers["google"] = GoogleProvider(
            settings.google_client_id, settings.google_client_secret, settings.google_callback_url
        )
    if settings.provider_configured("microsoft"):
        providers["microsoft"] = MicrosoftProvider(
            settings.microsoft_client_id,
            settings.microsoft_client_secret,
            settings.microsoft_callback_url,
            tenant=settings.microsoft_tenant,
        )
    for name in ("github", "google", "microsoft"):
        if name not in providers:
            logger.warning("OAuth provider not configured - missing credentials", provider=name)
    return providers


class StateSigner:
    """Signs the OAuth ``state`` parameter as a short-lived JWT."""

    audience = "agentage:oauth-state"

    def __init__(self, secret: str, ttl_seconds: int = 600) -> None:
        self._secret = secret
        self._ttl = timedelta(seconds=ttl_seconds)

    def encode(self, provider: str, data: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        claims = {**data, "provider": provider, "aud": self.audience, "iat": now, "exp": now + self._ttl}
        return jwt.encode(claims, self._secret, algorithm="HS256")

    def decode(self, provider: str, state: str | None) -> dict[str, Any]:
        if not state:
            raise OAuthError("Missing OAuth state")
        try:
            claims = jwt.decode(state, self._secret, algorithms=["HS256"], audience=self.audience)
        except jwt.InvalidTokenError as exc:
            raise OAuthError("Invalid or expired OAuth state") from exc
        if claims.get("provider") != provider:
            raise OAuthError("OAuth state does not belong to this provider")
        for key in ("aud", "iat", "exp", "provider"):
            claims.pop(key, None)
        return claims


def validate_desktop_callback(callback: str) -> str:
    """Desktop apps may only receive tokens on a loopback URL."""
    try:
        parsed = urlparse(callback)
    except ValueError as exc:
        raise OAuthError("Invalid callback URL format") from exc
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise OAuthError("Invalid callback URL format")
    if parsed.hostname not in _LOCAL_HOSTS:
        logger.warning("Invalid desktop callback URL - not localhost", callback=callback)
        raise OAuthError("Invalid callback URL - must be localhost")
    return callback


def with_query(url: str, **params: str) -> str:
    """Append/replace query parameters on ``url``."""
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query))
    query.update(params)
    return urlunparse(parsed._replace(query=urlencode(query)))
