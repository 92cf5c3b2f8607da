"""Auth router — OAuth login/callback, current user, linked providers, logout.

Browser flow:
    1. GET /auth/{provider}            → redirect to the provider (signed state)
    2. GET /auth/{provider}/callback   → exchange code, resolve/link the user,
                                         issue a JWT and redirect to:
         - the desktop app's localhost callback   (?token=...)
         - the device authorize page              (?token=...&code=<user_code>)
         - the web app                            (?token=...)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import RedirectResponse

from agentage.api.dependencies import (
    CurrentUserDep,
    HttpDep,
    LinkerDep,
    OptionalAuthDep,
    SettingsDep,
    StoreDep,
    TokensDep,
)
from agentage.core.errors import (
    AccountDisabledError,
    InvalidTokenError,
    OAuthError,
    ProviderNotConfigured,
    UserGoneError,
)
from agentage.core.logging import get_logger
from agentage.core.tokens import TokenPayload
from agentage.schemas.user import (
    AuthStatusOut,
    MeOut,
    MessageOut,
    ProviderList,
    StatusUser,
    UserOut,
)
from agentage.services.oauth import OAuthProvider, validate_desktop_callback, with_query

router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger(__name__)


# ── Session / identity ────────────────────────────────────────────────────────

@router.get("/status", response_model=AuthStatusOut)
async def auth_status(current: OptionalAuthDep) -> AuthStatusOut:
    """Whether the caller's token is valid. Never rejects."""
    if not current.is_authenticated:
        return AuthStatusOut(authenticated=False)
    return AuthStatusOut(
        authenticated=True,
        user=StatusUser(user_id=current.user_id, email=current.email, role=current.role),
    )


@router.get("/me", response_model=MeOut)
async def get_me(current: CurrentUserDep, store: StoreDep) -> MeOut:
    """Return the authenticated user's profile."""
    user = await store.find_by_id(current.user_id)
    if user is None:
        raise UserGoneError()
    logger.info("User info retrieved", user_id=user.id)
    return MeOut(user=UserOut.model_validate(user))


@router.get("/providers", response_model=ProviderList)
async def list_providers(current: CurrentUserDep, linker: LinkerDep) -> ProviderList:
    return ProviderList(providers=await linker.get_providers(current.user_id))


@router.delete("/providers/{provider}", response_model=UserOut)
async def unlink_provider(provider: str, current: CurrentUserDep, linker: LinkerDep) -> UserOut:
    """Detach a provider. The last remaining provider cannot be removed."""
    user = await linker.unlink_provider(current.user_id, provider)
    return UserOut.model_validate(user)


@router.post("/logout", response_model=MessageOut)
async def logout() -> MessageOut:
    """Stateless JWT: the client drops its token."""
    return MessageOut(message="Logged out successfully")


# ── OAuth round-trip ──────────────────────────────────────────────────────────

def _provider(request: Request, name: str) -> OAuthProvider:
    provider = request.app.state.oauth_providers.get(name)
    if provider is None:
        raise ProviderNotConfigured(name)
    return provider


@router.get("/{provider}", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
async def oauth_start(
    provider: str,
    request: Request,
    tokens: TokensDep,
    device_code: Annotated[str | None, Query(description="User code of a pending device login")] = None,
    desktop: bool = False,
    callback: str | None = None,
    include_provider_token: bool = False,
    link_token: Annotated[str | None, Query(description="Bearer token of the account to link to")] = None,
) -> RedirectResponse:
    adapter = _provider(request, provider)

    state_data: dict[str, object] = {}
    if device_code:
        state_data["device_code"] = device_code
    if desktop:
        if not callback:
            raise OAuthError("Desktop login requires a callback URL")
        state_data["desktop"] = True
        state_data["callback"] = validate_desktop_callback(callback)
        state_data["include_provider_token"] = include_provider_token
    if link_token:
        verified = tokens.verify(link_token)
        if not verified.valid or verified.payload is None:
            raise InvalidTokenError()
        state_data["link_user_id"] = verified.payload.user_id

    logger.info(
        "OAuth initiated",
        provider=provider,
        ip=request.client.host if request.client else None,
        is_device_flow=bool(device_code),
        is_desktop=desktop,
        is_link=bool(link_token),
    )
    state = request.app.state.state_signer.encode(provider, state_data)
    return RedirectResponse(adapter.authorization_url(state))


@router.get("/{provider}/callback", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
async def oauth_callback(
    provider: str,
    request: Request,
    settings: SettingsDep,
    tokens: TokensDep,
    linker: LinkerDep,
    http: HttpDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    adapter = _provider(request, provider)
    if error:
        raise OAuthError(f"{adapter.display_name} login was not completed: {error}")
    if not code:
        raise OAuthError("Missing authorization code")
    state_data = request.app.state.state_signer.decode(provider, state)

    provider_token = await adapter.exchange_code(http, code)
    profile = await adapter.fetch_profile(http, provider_token)

    link_user_id = state_data.get("link_user_id")
    if link_user_id:
        user = await linker.link_provider(link_user_id, profile)
    else:
        user = await linker.resolve_or_create(profile)
    if not user.is_active:
        raise AccountDisabledError()

    token = tokens.issue(TokenPayload(user_id=user.id, email=user.email, role=user.role))
    logger.info("OAuth callback successful - JWT generated", provider=provider, user_id=user.id)

    if state_data.get("desktop") and state_data.get("callback"):
        params = {"token": token}
        if state_data.get("include_provider_token"):
            params[f"{provider}_token"] = provider_token
        target = with_query(validate_desktop_callback(state_data["callback"]), **params)
        logger.info("Redirecting to desktop callback", provider=provider)
        return RedirectResponse(target)

    frontend = f"{settings.url_scheme}://{settings.frontend_fqdn}"
    if state_data.get("device_code"):
        logger.info("Redirecting to device authorization", user_code=state_data["device_code"])
        return RedirectResponse(
            with_query(f"{frontend}/device/authorize", token=token, code=state_data["device_code"])
        )

    params = {"token": token}
    if link_user_id:
        params["linked"] = provider
    return RedirectResponse(with_query(f"{frontend}/auth/callback", **params))
