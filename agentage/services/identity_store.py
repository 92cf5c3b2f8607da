"""Identity store — persistence of user records and their provider links.

Thin contract consumed by the linking engine, the device flow and the
request gate. Emails are normalised (stripped, lowercased) on every lookup
and every write; nothing above this layer has to remember to do it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentage.core.errors import UserNotFound
from agentage.models.base import utcnow
from agentage.models.user import User, UserProvider
from agentage.schemas.user import ProviderLink

_UPDATABLE = {"name", "avatar", "role", "is_active", "verified_alias", "last_login_at", "updated_at"}


def normalize_email(email: str) -> str:
    return email.strip().lower()


class IdentityStore:
    def __init__(self, session: AsyncSession, now: Callable[[], datetime] = utcnow) -> None:
        self._session = session
        self._now = now

    async def find_by_email(self, email: str) -> User | None:
        result = await self._session.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def find_by_id(self, user_id: str) -> User | None:
        return await self._session.get(User, user_id)

    async def find_by_provider_id(self, provider: str, provider_id: str) -> User | None:
        result = await self._session.execute(
            select(User)
            .join(UserProvider, UserProvider.user_id == User.id)
            .where(UserProvider.provider == provider, UserProvider.provider_id == provider_id)
        )
        return result.scalar_one_or_none()

    async def list_users(self) -> tuple[int, list[User]]:
        total = (await self._session.execute(select(func.count()).select_from(User))).scalar_one()
        result = await self._session.execute(select(User).order_by(User.created_at))
        return total, list(result.scalars().all())

    async def create(
        self,
        *,
        email: str,
        providers: Mapping[str, ProviderLink],
        name: str | None = None,
        avatar: str | None = None,
        verified_alias: str | None = None,
        role: str = "user",
        is_active: bool = True,
        timestamp: datetime | None = None,
    ) -> User:
        now = timestamp or self._now()
        user = User(
            email=normalize_email(email),
            name=name,
            avatar=avatar,
            verified_alias=verified_alias,
            role=role,
            is_active=is_active,
            created_at=now,
            updated_at=now,
            last_login_at=now,
            provider_links=[
                _make_link(provider, link) for provider, link in providers.items()
            ],
        )
        # A unique-email clash rolls back only this insert
        async with self._session.begin_nested():
            self._session.add(user)
        return user

    async def update(self, user_id: str, **fields: Any) -> User:
        """Apply a partial update.

        ``providers`` is itself partial: ``{"github": ProviderLink(...)}`` sets
        (or replaces) that link, ``{"github": None}`` removes it. Other
        providers are left alone.
        """
        user = await self.find_by_id(user_id)
        if user is None:
            raise UserNotFound(user_id)

        providers: Mapping[str, ProviderLink | None] = fields.pop("providers", None) or {}
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        current = user.providers
        for provider, link in providers.items():
            existing = current.get(provider)
            if link is None:
                if existing is not None:
                    user.provider_links.remove(existing)
            elif existing is not None:
                existing.provider_id = link.provider_id
                existing.email = normalize_email(link.email)
                existing.connected_at = link.connected_at
            else:
                user.provider_links.append(_make_link(provider, link))

        for field, value in fields.items():
            setattr(user, field, value)

        await self._session.flush()
        return user


def _make_link(provider: str, link: ProviderLink) -> UserProvider:
    return UserProvider(
        provider=provider,
        provider_id=link.provider_id,
        email=normalize_email(link.email),
        connected_at=link.connected_at,
    )
