"""Device authorization router (RFC 8628) — CLI logins.

    POST /auth/device/code       CLI asks for a device_code / user_code pair
    GET  /auth/device/verify     browser checks a typed user_code
    POST /auth/device/authorize  signed-in browser binds the code to its user
    POST /auth/device/token      CLI polls until the binding shows up

Protocol failures are raised as DeviceAuthError subclasses and rendered as
``400 {error, error_description}`` by the app's exception handler.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Request

from agentage.api.dependencies import (
    AdminDep,
    CurrentUserDep,
    DeviceFlowDep,
    get_poll_throttle,
)
from agentage.core.errors import (
    AuthorizationPending,
    InvalidGrant,
    InvalidRequest,
    UserNotFound,
)
from agentage.core.limiter import limiter
from agentage.core.logging import get_logger
from agentage.schemas.device import (
    CleanupOut,
    DeviceAuthErrorOut,
    DeviceAuthorizeRequest,
    DeviceAuthorizeResponse,
    DeviceCodeRequest,
    DeviceCodeResponse,
    DeviceTokenRequest,
    DeviceTokenResponse,
    DeviceVerifyResponse,
)
from agentage.services.device_flow import PollThrottle

router = APIRouter(prefix="/auth/device", tags=["device"])
logger = get_logger(__name__)

_ERRORS = {400: {"model": DeviceAuthErrorOut}}


@router.post("/code", response_model=DeviceCodeResponse, responses=_ERRORS)
@limiter.limit("10/minute")
async def request_device_code(
    request: Request,
    service: DeviceFlowDep,
    payload: Annotated[DeviceCodeRequest | None, Body()] = None,
) -> DeviceCodeResponse:
    """Start a device login. Only GitHub is offered to CLIs."""
    provider = payload.provider if payload else "github"
    logger.info(
        "Device code requested",
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        provider=provider,
    )
    return await service.create_device_code(provider)


@router.post("/token", response_model=DeviceTokenResponse, responses=_ERRORS)
@limiter.limit("120/minute")
async def poll_device_token(
    request: Request,
    service: DeviceFlowDep,
    throttle: Annotated[PollThrottle | None, Depends(get_poll_throttle)],
    payload: Annotated[DeviceTokenRequest | None, Body()] = None,
) -> DeviceTokenResponse:
    device_code = payload.device_code if payload else None
    if not device_code:
        raise InvalidRequest("device_code is required")

    # Unknown and expired codes are rejected before the throttle sees them
    token = await service.poll_for_token(device_code)
    if token is None:
        if throttle is not None:
            throttle.check(device_code)
        raise AuthorizationPending()

    if throttle is not None:
        throttle.forget(device_code)
    logger.info("Device token issued", user_id=token.user.id)
    return token


@router.post("/authorize", response_model=DeviceAuthorizeResponse, responses=_ERRORS)
@limiter.limit("20/minute")
async def authorize_device(
    request: Request,
    service: DeviceFlowDep,
    current: CurrentUserDep,
    payload: Annotated[DeviceAuthorizeRequest | None, Body()] = None,
) -> DeviceAuthorizeResponse:
    """Called by the web UI after the user signed in."""
    user_code = payload.user_code if payload else None
    if not user_code:
        raise InvalidRequest("user_code is required")

    try:
        result = await service.authorize(user_code, current.user_id)
    except UserNotFound:
        result = None
    if result is None:
        raise InvalidGrant("Invalid, expired, or already used device code")

    logger.info("Device code authorized via API", user_id=current.user_id, user_code=user_code)
    return DeviceAuthorizeResponse()


@router.get("/verify", response_model=DeviceVerifyResponse, responses=_ERRORS)
async def verify_user_code(
    service: DeviceFlowDep,
    code: Annotated[str | None, Query()] = None,
) -> DeviceVerifyResponse:
    """Read-only check of a typed user code before sending the user to OAuth."""
    if not code:
        raise InvalidRequest("code query parameter is required")
    record, remaining = await service.check_user_code(code)
    return DeviceVerifyResponse(valid=True, user_code=record.user_code, expires_in=remaining)


@router.post("/cleanup", response_model=CleanupOut)
async def cleanup_device_codes(service: DeviceFlowDep, admin: AdminDep) -> CleanupOut:
    deleted = await service.cleanup_expired()
    logger.info("Manual device code cleanup", admin_id=admin.user_id, deleted=deleted)
    return CleanupOut(deleted=deleted)
