"""Background sweep of expired device codes.

Runs as an asyncio task in the app lifespan when
DEVICE_CLEANUP_INTERVAL_SECONDS > 0. Correctness never depends on it:
every device-flow read path re-checks ``expires_at``.
"""

from __future__ import annotations

import asyncio

from agentage.core.config import Settings
from agentage.core.database import Database
from agentage.core.logging import get_logger
from agentage.core.tokens import TokenService
from agentage.services.device_flow import DeviceFlowService
from agentage.services.identity_store import IdentityStore

logger = get_logger(__name__)


async def sweep_once(db: Database, tokens: TokenService, settings: Settings) -> int:
    async with db.session() as session:
        service = DeviceFlowService(session, tokens, IdentityStore(session), settings)
        return await service.cleanup_expired()


async def sweeper_loop(db: Database, tokens: TokenService, settings: Settings) -> None:
    """Infinite loop: wake every interval and delete expired device codes."""
    interval = settings.device_cleanup_interval_seconds
    logger.info("Device code sweeper started", interval=interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_once(db, tokens, settings)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Device code sweep failed — will retry next cycle")
