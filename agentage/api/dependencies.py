"""FastAPI dependency providers.

Long-lived collaborators (settings, database handle, token service, OAuth
adapters, poll throttle) hang off ``app.state`` and are set by the app
factory; per-request ones (session, stores, services) are built here.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

import httpx
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agentage.core.auth import AuthContext, RequestGate
from agentage.core.config import Settings
from agentage.core.tokens import TokenService
from agentage.services.device_flow import DeviceFlowService, PollThrottle
from agentage.services.identity_store import IdentityStore
from agentage.services.linking import AccountLinker


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_poll_throttle(request: Request) -> PollThrottle | None:
    return request.app.state.poll_throttle


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for the duration of a request."""
    async with request.app.state.database.session() as session:
        yield session


async def get_http_client(request: Request) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Outbound client for OAuth provider calls."""
    timeout = request.app.state.settings.oauth_http_timeout
    async with httpx.AsyncClient(timeout=timeout) as client:
        yield client


DbDep = Annotated[AsyncSession, Depends(get_db)]
SettingsDep = Annotated[Settings, Depends(get_settings_dep)]
TokensDep = Annotated[TokenService, Depends(get_token_service)]


def get_identity_store(db: DbDep) -> IdentityStore:
    return IdentityStore(db)


StoreDep = Annotated[IdentityStore, Depends(get_identity_store)]


def get_linker(store: StoreDep) -> AccountLinker:
    return AccountLinker(store)


def get_device_flow(
    db: DbDep, store: StoreDep, tokens: TokensDep, settings: SettingsDep
) -> DeviceFlowService:
    return DeviceFlowService(db, tokens, store, settings)


def get_request_gate(tokens: TokensDep, store: StoreDep) -> RequestGate:
    return RequestGate(tokens, store)


GateDep = Annotated[RequestGate, Depends(get_request_gate)]
AuthorizationHeader = Annotated[str | None, Header(alias="Authorization")]


async def optional_auth(gate: GateDep, authorization: AuthorizationHeader = None) -> AuthContext:
    """Caller identity if the bearer token checks out, anonymous otherwise."""
    return await gate.optional(authorization)


async def require_auth(gate: GateDep, authorization: AuthorizationHeader = None) -> AuthContext:
    """Reject with 401 (403 for disabled accounts) unless authenticated."""
    return await gate.authenticate(authorization)


async def require_admin(gate: GateDep, authorization: AuthorizationHeader = None) -> AuthContext:
    """Raise 403 if the caller is not an admin."""
    return await gate.require_admin(authorization)


OptionalAuthDep = Annotated[AuthContext, Depends(optional_auth)]
CurrentUserDep = Annotated[AuthContext, Depends(require_auth)]
AdminDep = Annotated[AuthContext, Depends(require_admin)]
LinkerDep = Annotated[AccountLinker, Depends(get_linker)]
DeviceFlowDep = Annotated[DeviceFlowService, Depends(get_device_flow)]
HttpDep = Annotated[httpx.AsyncClient, Depends(get_http_client)]
