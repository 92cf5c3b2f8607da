"""Bearer token service: issue and verify HS256 JWTs.

Pure functions over a pre-shared secret — no I/O, no session state. The
only server-side copy of a minted token lives in a device code record so
that the CLI can collect it by polling.

Claims written: ``userId``, ``email``, ``role`` plus ``iss``, ``aud``,
``iat`` and ``exp``.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

import jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentage.core.config import Settings
from agentage.core.errors import ConfigurationError
from agentage.core.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"

_DURATION_RE = re.compile(r"^\s*(-?\d+)\s*(ms|s|m|h|d|w|y)?\s*$", re.IGNORECASE)
_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
    "y": 31557600,
}


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """Turn ``"7d"`` / ``"24h"`` / ``"3600"`` / ``3600`` into a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    match = _DURATION_RE.match(value)
    if not match:
        raise ConfigurationError(f"Invalid token lifetime: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[(unit or "s").lower()])


class TokenPayload(BaseModel):
    """Identity claims carried by a bearer token."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    email: str
    role: Literal["user", "admin"] = "user"

    def claims(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class TokenVerification(BaseModel):
    """Outcome of ``TokenService.verify`` — never an exception."""

    valid: bool
    payload: TokenPayload | None = None
    expired: bool = False
    reason: str | None = None


class TokenService:
    def __init__(
        self,
        secret: str,
        expires_in: str | int | timedelta = "7d",
        *,
        issuer: str = "agentage.io",
        audience: str = "agentage.io",
    ) -> None:
        if not secret:
            raise ConfigurationError("JWT_SECRET is not configured in environment variables")
        self._secret = secret
        self._lifetime = parse_duration(expires_in)
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        service = cls(
            settings.jwt_secret,
            settings.jwt_expires_in,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
        logger.info("Token service initialized", expires_in=settings.jwt_expires_in)
        return service

    @property
    def expires_in_seconds(self) -> int:
        return int(self._lifetime.total_seconds())

    def issue(
        self,
        payload: TokenPayload,
        expires_in: str | int | timedelta | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        lifetime = self._lifetime if expires_in is None else parse_duration(expires_in)
        claims = {
            **payload.claims(),
            "iat": now,
            "exp": now + lifetime,
            "iss": self.issuer,
            "aud": self.audience,
        }
        token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)
        logger.debug(
            "JWT token generated",
            user_id=payload.user_id,
            role=payload.role,
            expires_in=int(lifetime.total_seconds()),
        )
        return token

    def verify(self, token: str) -> TokenVerification:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.debug("JWT token expired", error=str(exc))
            return TokenVerification(valid=False, expired=True, reason="Token expired")
        except jwt.InvalidTokenError as exc:
            logger.debug("Invalid JWT token", error=str(exc))
            return TokenVerification(valid=False, reason="Invalid token")

        try:
            payload = TokenPayload.model_validate(claims)
        except ValidationError:
            return TokenVerification(valid=False, reason="Token payload is missing")
        return TokenVerification(valid=True, payload=payload)

    def decode(self, token: str) -> dict[str, Any] | None:
        """Read claims WITHOUT checking the signature. Diagnostics only."""
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
