"""Request gate: bearer extraction, token verification, live user re-check.

Flow for every protected request:
    1. Authorization: Bearer <jwt> is extracted (anything else = no token)
    2. The token is verified by TokenService (signature, iss, aud, exp)
    3. The user behind the token is re-loaded — a deleted or disabled
       account does not ride on a still-valid token
    4. An AuthContext is returned to the handler

The FastAPI dependencies ``optional_auth`` / ``require_auth`` /
``require_admin`` in ``agentage.api.dependencies`` are thin wrappers.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from agentage.core.errors import (
    AccountDisabledError,
    AdminRequiredError,
    AuthenticationError,
    ExpiredTokenError,
    InvalidTokenError,
    MissingTokenError,
    UserGoneError,
)
from agentage.core.logging import get_logger
from agentage.core.tokens import TokenService
from agentage.services.identity_store import IdentityStore

logger = get_logger(__name__)


class AuthContext(BaseModel):
    """Identity resolved for the current request."""

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    email: str | None = None
    role: str | None = None
    is_authenticated: bool = False

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == "admin"


ANONYMOUS = AuthContext()


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token of a ``Bearer <token>`` header, else None."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


class RequestGate:
    def __init__(self, tokens: TokenService, store: IdentityStore) -> None:
        self._tokens = tokens
        self._store = store

    async def authenticate(self, authorization: str | None) -> AuthContext:
        """Resolve the caller or raise an AuthenticationError subclass."""
        token = extract_bearer(authorization)
        if token is None:
            raise MissingTokenError()

        result = self._tokens.verify(token)
        if not result.valid or result.payload is None:
            if result.expired:
                raise ExpiredTokenError()
            raise InvalidTokenError()

        payload = result.payload
        user = await self._store.find_by_id(payload.user_id)
        if user is None:
            logger.info("Token for vanished user rejected", user_id=payload.user_id)
            raise UserGoneError()
        if not user.is_active:
            raise AccountDisabledError()

        # Role and email come from the live record so a demotion takes effect
        # before the token expires
        return AuthContext(
            user_id=user.id,
            email=user.email,
            role=user.role,
            is_authenticated=True,
        )

    async def optional(self, authorization: str | None) -> AuthContext:
        """Like ``authenticate`` but any failure yields the anonymous context."""
        try:
            return await self.authenticate(authorization)
        except AuthenticationError:
            return ANONYMOUS

    async def require_admin(self, authorization: str | None) -> AuthContext:
        ctx = await self.authenticate(authorization)
        if ctx.role != "admin":
            raise AdminRequiredError()
        return ctx
