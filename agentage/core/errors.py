"""Exception hierarchy shared by the auth core and the HTTP layer.

Services raise these; the FastAPI exception handlers registered in
``agentage.api.app`` translate them to responses without re-interpreting
them. Anything not derived from ``AgentageError`` is an unexpected failure
and surfaces as a 500.
"""

from __future__ import annotations

from typing import Any


class AgentageError(Exception):
    """Base class for all expected (business / protocol) failures."""

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        self.message = message or self.default_message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class ConfigurationError(AgentageError):
    """Missing or invalid configuration. Fatal at startup."""

    status_code = 500
    default_message = "Server is not configured"


# ── RFC 8628 protocol errors ─────────────────────────────────────────────────


class DeviceAuthError(AgentageError):
    """Device authorization wire error: ``{error, error_description}``."""

    error: str = "invalid_request"
    default_message = "The request is invalid"

    def __init__(self, error_description: str | None = None) -> None:
        super().__init__(error_description, code=self.error)

    @property
    def error_description(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "error_description": self.error_description}


class AuthorizationPending(DeviceAuthError):
    error = "authorization_pending"
    default_message = "The user has not yet completed authorization"


class SlowDown(DeviceAuthError):
    error = "slow_down"
    default_message = "Polling too frequently; increase the interval by 5 seconds"


class ExpiredToken(DeviceAuthError):
    error = "expired_token"
    default_message = "The device code has expired. Please restart the login process."


class InvalidGrant(DeviceAuthError):
    error = "invalid_grant"
    default_message = "Invalid or unknown device code"


class UnknownUserCode(InvalidGrant):
    """A user code that was never issued (verification page lookups)."""

    status_code = 404


class InvalidRequest(DeviceAuthError):
    error = "invalid_request"


class AccessDenied(DeviceAuthError):
    error = "access_denied"
    default_message = "The device code has already been used"


class ServerError(DeviceAuthError):
    error = "server_error"
    status_code = 500
    default_message = "The authorization server encountered an error"


# ── Identity / account linking ───────────────────────────────────────────────


class IdentityError(AgentageError):
    """Business-rule violation while linking or unlinking identities."""


class ProviderConflict(IdentityError):
    status_code = 409
    default_message = "This provider is already linked to another account"


class AlreadyLinked(IdentityError):
    status_code = 409
    default_message = "Provider already linked to this account"


class SelfModificationError(IdentityError):
    default_message = "Cannot change your own role or disable your own account"


class NotLinked(IdentityError):
    default_message = "Provider not linked to this account"


class LastProviderError(IdentityError):
    default_message = "Cannot unlink last provider. Link another provider first."


class UserNotFound(IdentityError):
    status_code = 404

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


# ── Request authentication ───────────────────────────────────────────────────


class AuthenticationError(AgentageError):
    status_code = 401
    default_message = "Authentication required"


class MissingTokenError(AuthenticationError):
    default_message = "No authentication token provided"


class InvalidTokenError(AuthenticationError):
    default_message = "Authentication token is invalid"


class ExpiredTokenError(AuthenticationError):
    default_message = "Token has expired"


class UserGoneError(AuthenticationError):
    default_message = "User account no longer exists"


class AccountDisabledError(AuthenticationError):
    status_code = 403
    default_message = "Account disabled"


class ForbiddenError(AuthenticationError):
    status_code = 403
    default_message = "Forbidden"


class AdminRequiredError(AuthenticationError):
    status_code = 403
    default_message = "Admin access required"


# ── OAuth provider round-trips ───────────────────────────────────────────────


class OAuthError(AgentageError):
    """OAuth redirect/callback failure (bad state, provider refusal, ...)."""

    default_message = "OAuth authentication failed"


class ProviderNotConfigured(OAuthError):
    status_code = 404

    def __init__(self, provider: str) -> None:
        super().__init__(f"OAuth provider not available: {provider}")


class ProviderUnavailable(OAuthError):
    status_code = 502
    default_message = "OAuth provider request failed"
