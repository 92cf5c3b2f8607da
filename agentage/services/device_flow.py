"""Device Authorization Grant (RFC 8628) for CLI logins.

Lifecycle of a device code record::

    PENDING ──authorize──▶ AUTHORIZED
       │                       │
       └──── now ≥ expires_at ─┴──▶ EXPIRED

``authorize`` is the only mutation and it is a single conditional UPDATE
(``authorized_at IS NULL AND expires_at > now``): of two concurrent
attempts on the same user code exactly one wins. Every read path checks
``expires_at`` itself; the sweep in ``cleanup_expired`` is only hygiene.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import quote

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentage.core.config import Settings
from agentage.core.errors import (
    AccessDenied,
    ExpiredToken,
    InvalidGrant,
    InvalidRequest,
    ServerError,
    SlowDown,
    UnknownUserCode,
    UserNotFound,
)
from agentage.core.logging import get_logger
from agentage.core.tokens import TokenPayload, TokenService
from agentage.models.base import utcnow
from agentage.models.device_code import DeviceCode
from agentage.models.user import User
from agentage.schemas.device import (
    DEVICE_CODE_EXPIRES_IN_SECONDS,
    DEVICE_POLL_INTERVAL_SECONDS,
    DeviceCodeResponse,
    DeviceTokenResponse,
    DeviceTokenUser,
)
from agentage.services.identity_store import IdentityStore

logger = get_logger(__name__)

SUPPORTED_PROVIDERS = ("github",)

# No 0/O, 1/I/L
USER_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
USER_CODE_LENGTH = 8
_MAX_USER_CODE_ATTEMPTS = 5


def generate_device_code() -> str:
    """32 random bytes, base64url without padding."""
    return secrets.token_urlsafe(32)


def generate_user_code() -> str:
    chars = [secrets.choice(USER_CODE_ALPHABET) for _ in range(USER_CODE_LENGTH)]
    return "".join(chars[:4]) + "-" + "".join(chars[4:])


def normalize_user_code(raw: str) -> str:
    """``" abcd efgh "`` / ``"abcdefgh"`` / ``"ABCD-EFGH"`` → ``"ABCD-EFGH"``."""
    code = "".join(raw.split()).upper()
    if "-" not in code:
        code = f"{code[:4]}-{code[4:]}"
    return code


class DeviceFlowService:
    def __init__(
        self,
        session: AsyncSession,
        tokens: TokenService,
        store: IdentityStore,
        settings: Settings,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._tokens = tokens
        self._store = store
        self._settings = settings
        self._now = now

    # ── creation ──────────────────────────────────────────────────────────

    async def create_device_code(self, provider: str = "github") -> DeviceCodeResponse:
        if provider not in SUPPORTED_PROVIDERS:
            raise InvalidRequest('Invalid provider specified. Only "github" is supported.')

        now = self._now()
        expires_at = now + timedelta(seconds=DEVICE_CODE_EXPIRES_IN_SECONDS)
        user_code = await self._unused_user_code()

        record = DeviceCode(
            device_code=generate_device_code(),
            user_code=user_code,
            provider=provider,
            expires_at=expires_at,
            created_at=now,
        )
        self._session.add(record)
        await self._session.flush()

        logger.info(
            "Device code created",
            user_code=user_code,
            provider=provider,
            expires_at=expires_at.isoformat(),
        )

        base = f"{self._settings.url_scheme}://{self._settings.api_fqdn}/device"
        return DeviceCodeResponse(
            device_code=record.device_code,
            user_code=user_code,
            verification_uri=base,
            verification_uri_complete=f"{base}?code={quote(user_code)}",
            expires_in=DEVICE_CODE_EXPIRES_IN_SECONDS,
            interval=DEVICE_POLL_INTERVAL_SECONDS,
        )

    async def _unused_user_code(self) -> str:
        for _ in range(_MAX_USER_CODE_ATTEMPTS):
            candidate = generate_user_code()
            if await self._find_by_user_code(candidate) is None:
                return candidate
        raise ServerError("Could not allocate a unique user code")

    # ── lookups ───────────────────────────────────────────────────────────

    async def get_device_code(self, device_code: str) -> DeviceCode | None:
        result = await self._session.execute(
            select(DeviceCode).where(DeviceCode.device_code == device_code)
        )
        return result.scalar_one_or_none()

    async def get_by_user_code(self, raw_user_code: str) -> DeviceCode | None:
        """Live (unexpired) record for a human-typed code, else ``None``."""
        record = await self._find_by_user_code(normalize_user_code(raw_user_code))
        if record is None or record.is_expired(self._now()):
            return None
        return record

    async def _find_by_user_code(self, user_code: str) -> DeviceCode | None:
        result = await self._session.execute(
            select(DeviceCode).where(DeviceCode.user_code == user_code)
        )
        return result.scalar_one_or_none()

    async def check_user_code(self, raw_user_code: str) -> tuple[DeviceCode, int]:
        """Read-only validity check used by the browser before starting OAuth.

        Returns the record and its remaining lifetime in seconds.
        """
        record = await self._find_by_user_code(normalize_user_code(raw_user_code))
        if record is None:
            raise UnknownUserCode()

        now = self._now()
        if record.is_expired(now):
            raise ExpiredToken("The device code has expired")
        if record.authorized_at is not None:
            raise AccessDenied()
        return record, int((record.expires_at - now).total_seconds())

    # ── authorization ─────────────────────────────────────────────────────

    async def authorize(self, raw_user_code: str, user_id: str) -> DeviceTokenResponse | None:
        """Bind a pending code to ``user_id``. ``None`` means invalid_grant."""
        user_code = normalize_user_code(raw_user_code)
        record = await self._find_by_user_code(user_code)

        if record is None:
            logger.warning("Device code not found for authorization", user_code=user_code)
            return None
        now = self._now()
        if record.is_expired(now):
            logger.warning("Device code expired", user_code=user_code)
            return None
        if record.authorized_at is not None:
            logger.warning("Device code already authorized", user_code=user_code)
            return None

        user = await self._store.find_by_id(user_id)
        if user is None:
            logger.error("User not found for device authorization", user_id=user_id)
            raise UserNotFound(user_id)

        access_token = self._tokens.issue(
            TokenPayload(user_id=user.id, email=user.email, role=user.role)
        )

        result = await self._session.execute(
            update(DeviceCode)
            .where(
                DeviceCode.id == record.id,
                DeviceCode.authorized_at.is_(None),
                DeviceCode.expires_at > now,
            )
            .values(authorized_at=now, user_id=user.id, access_token=access_token)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Lost the race against a concurrent authorize (or the clock)
            logger.warning("Device code authorization lost a concurrent update", user_code=user_code)
            await self._session.refresh(record)
            return None

        await self._session.refresh(record)
        logger.info("Device code authorized", user_code=user_code, user_id=user.id)
        return self._token_response(access_token, user)

    # ── polling ───────────────────────────────────────────────────────────

    async def poll_for_token(self, device_code: str) -> DeviceTokenResponse | None:
        """Token once authorized, ``None`` while pending. Never mutates."""
        record = await self.get_device_code(device_code)
        if record is None:
            raise InvalidGrant()

        if record.is_expired(self._now()):
            raise ExpiredToken()

        if not record.is_authorized:
            return None

        user = await self._store.find_by_id(record.user_id)
        if user is None:
            raise ServerError("User not found")

        logger.info("Token retrieved via device code", user_id=user.id, user_code=record.user_code)
        return self._token_response(record.access_token, user)

    # ── hygiene ───────────────────────────────────────────────────────────

    async def cleanup_expired(self) -> int:
        result = await self._session.execute(
            delete(DeviceCode)
            .where(DeviceCode.expires_at <= self._now())
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Cleaned up expired device codes", count=deleted)
        return deleted

    def _token_response(self, access_token: str, user: User) -> DeviceTokenResponse:
        return DeviceTokenResponse(
            access_token=access_token,
            token_type="Bearer",
            expires_in=self._tokens.expires_in_seconds,
            user=DeviceTokenUser(id=user.id, email=user.email, name=user.name, avatar=user.avatar),
        )


class PollThrottle:
    """Minimum interval between polls of one device code (RFC 8628 §3.5).

    In-process only. The poll endpoint consults it for codes the store has
    already confirmed as live and pending, so unknown codes never take a
    slot. A poll inside the window answers ``slow_down`` and restarts it.
    At most ``max_entries`` codes are remembered; the least recently
    polled go first.
    """

    def __init__(
        self,
        interval: int = DEVICE_POLL_INTERVAL_SECONDS,
        now: Callable[[], datetime] = utcnow,
        max_entries: int = 10_000,
    ) -> None:
        self._interval = timedelta(seconds=interval)
        self._now = now
        self._max_entries = max_entries
        # Insertion order is poll order, oldest first
        self._last_poll: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._last_poll)

    def check(self, device_code: str) -> None:
        now = self._now()
        last = self._last_poll.pop(device_code, None)
        self._last_poll[device_code] = now
        self._prune(now)
        if last is not None and now - last < self._interval:
            raise SlowDown()

    def forget(self, device_code: str) -> None:
        self._last_poll.pop(device_code, None)

    def _prune(self, now: datetime) -> None:
        horizon = now - timedelta(seconds=DEVICE_CODE_EXPIRES_IN_SECONDS)
        while self._last_poll:
            oldest = next(iter(self._last_poll))
            if len(self._last_poll) <= self._max_entries and self._last_poll[oldest] > horizon:
                break
            del self._last_poll[oldest]
