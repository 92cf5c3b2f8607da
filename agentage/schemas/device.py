"""Schemas for the OAuth 2.0 Device Authorization Grant (RFC 8628)."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

DEVICE_CODE_EXPIRES_IN_SECONDS = 900
DEVICE_POLL_INTERVAL_SECONDS = 5


class DeviceCodeRequest(BaseModel):
    provider: str = "github"


class DeviceCodeResponse(BaseModel):
    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int = DEVICE_CODE_EXPIRES_IN_SECONDS
    interval: int = DEVICE_POLL_INTERVAL_SECONDS


class DeviceTokenRequest(BaseModel):
    # Optional so a missing value maps to invalid_request rather than a 422
    device_code: str | None = None


class DeviceTokenUser(BaseModel):
    id: str
    email: str
    name: str | None = None
    avatar: str | None = None


class DeviceTokenResponse(BaseModel):
    access_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: int
    user: DeviceTokenUser


class DeviceAuthorizeRequest(BaseModel):
    user_code: str | None = None


class DeviceAuthorizeResponse(BaseModel):
    success: bool = True
    message: str = "Device authorized successfully"


class DeviceVerifyResponse(BaseModel):
    valid: bool = True
    user_code: str
    expires_in: int


class DeviceAuthErrorOut(BaseModel):
    error: Literal[
        "authorization_pending",
        "slow_down",
        "access_denied",
        "expired_token",
        "invalid_grant",
        "invalid_request",
        "server_error",
    ]
    error_description: str


class CleanupOut(BaseModel):
    deleted: int
