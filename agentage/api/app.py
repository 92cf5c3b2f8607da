"""FastAPI application factory with lifespan management.

Run with ``uvicorn agentage.api.app:create_app --factory`` (or
``agentage serve``). There is no module-level ``app``; the
factory refuses to build one without a JWT secret.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from agentage import __version__
from agentage.api.routers import auth as auth_router
from agentage.api.routers import device as device_router
from agentage.api.routers import users as users_router
from agentage.core.config import Settings, get_settings
from agentage.core.database import Database
from agentage.core.errors import AgentageError, AuthenticationError
from agentage.core.limiter import limiter
from agentage.core.logging import configure_logging, get_logger
from agentage.core.tokens import TokenService
from agentage.services.device_flow import PollThrottle
from agentage.services.oauth import StateSigner, build_providers
from agentage.services.sweeper import sweeper_loop

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings: Settings = app.state.settings
    configure_logging(settings, force=True)
    database: Database = app.state.database
    logger.info("Starting Agentage API", env=settings.app_env, debug=settings.app_debug)

    await database.open()

    sweeper: asyncio.Task | None = None
    if settings.device_cleanup_interval_seconds > 0:
        sweeper = asyncio.create_task(sweeper_loop(database, app.state.tokens, settings))

    yield

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await database.close()
    logger.info("Agentage API stopped")


async def _agentage_error_handler(request: Request, exc: AgentageError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.code, detail=exc.message)
    headers = None
    if isinstance(exc, AuthenticationError) and exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Agentage API",
        description="Identity and device authorization backend",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Raises ConfigurationError on a missing JWT secret, before anything is served
    tokens = TokenService.from_settings(settings)

    app.state.settings = settings
    app.state.database = database or Database(settings.database_url, echo=settings.app_debug)
    app.state.tokens = tokens
    app.state.oauth_providers = build_providers(settings)
    app.state.state_signer = StateSigner(settings.jwt_secret, settings.oauth_state_ttl_seconds)
    app.state.poll_throttle = PollThrottle() if settings.device_poll_enforce_interval else None

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(AgentageError, _agentage_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_prefix = "/api"

    # Device routes first: /auth/device/* must win over /auth/{provider}
    app.include_router(device_router.router, prefix=api_prefix)
    app.include_router(auth_router.router, prefix=api_prefix)
    app.include_router(users_router.router, prefix=api_prefix)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app
