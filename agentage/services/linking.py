"""Account linking — one real-world person, one user record.

An OAuth login arrives as a ``ProviderProfile``. ``resolve_or_create``
matches it to a user by (lowercased) email:

* same provider, same provider id  → returning login, timestamps only;
* provider missing or different id → the provider is auto-linked;
* no user with that email          → a new user with a single link.

Auto-linking trusts the email asserted by the provider. See DESIGN.md
("Open questions") before changing that policy.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from agentage.core.errors import (
    AlreadyLinked,
    LastProviderError,
    NotLinked,
    ProviderConflict,
    UserNotFound,
)
from agentage.core.logging import get_logger
from agentage.models.base import utcnow
from agentage.models.user import User
from agentage.schemas.user import ProviderLink, ProviderOut, ProviderProfile
from agentage.services.identity_store import IdentityStore

logger = get_logger(__name__)


class AccountLinker:
    def __init__(self, store: IdentityStore, now: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._now = now

    async def resolve_or_create(self, profile: ProviderProfile) -> User:
        email = profile.email.strip().lower()
        now = self._now()

        user = await self._store.find_by_email(email)

        if user is not None:
            link = user.providers.get(profile.provider)
            if link is not None and link.provider_id == profile.provider_id:
                user = await self._store.update(user.id, last_login_at=now, updated_at=now)
                logger.info("Existing user logged in", user_id=user.id, provider=profile.provider)
                return user

            await self._ensure_identity_free(profile, user.id)
            user = await self._store.update(
                user.id,
                providers={profile.provider: _link_from(profile, now)},
                last_login_at=now,
                updated_at=now,
            )
            logger.info("Provider auto-linked to existing user", user_id=user.id, provider=profile.provider)
            return user

        await self._ensure_identity_free(profile, None)
        try:
            user = await self._store.create(
                email=email,
                name=profile.name or email.split("@")[0],
                avatar=profile.avatar,
                verified_alias=profile.username,
                providers={profile.provider: _link_from(profile, now)},
                timestamp=now,
            )
        except IntegrityError:
            # A concurrent first login created the same email in between
            if await self._store.find_by_email(email) is None:
                raise
            logger.info("Lost concurrent user creation, resolving again", email=email)
            return await self.resolve_or_create(profile)
        logger.info("New user created", user_id=user.id, provider=profile.provider, email=email)
        return user

    async def link_provider(self, user_id: str, profile: ProviderProfile) -> User:
        """Explicit, user-initiated linking of another provider."""
        await self._ensure_identity_free(profile, user_id)

        user = await self._store.find_by_id(user_id)
        if user is None:
            raise UserNotFound(user_id)
        if profile.provider in user.providers:
            raise AlreadyLinked()

        now = self._now()
        user = await self._store.update(
            user_id,
            providers={profile.provider: _link_from(profile, now)},
            updated_at=now,
        )
        logger.info("Provider linked to user", user_id=user_id, provider=profile.provider)
        return user

    async def unlink_provider(self, user_id: str, provider: str) -> User:
        user = await self._store.find_by_id(user_id)
        if user is None:
            raise UserNotFound(user_id)

        linked = user.providers
        if provider not in linked:
            raise NotLinked()
        if len(linked) <= 1:
            raise LastProviderError()

        user = await self._store.update(user_id, providers={provider: None}, updated_at=self._now())
        logger.info("Provider unlinked from user", user_id=user_id, provider=provider)
        return user

    async def get_providers(self, user_id: str) -> list[ProviderOut]:
        user = await self._store.find_by_id(user_id)
        if user is None:
            return []
        return [
            ProviderOut(name=link.provider, email=link.email, connected_at=link.connected_at)
            for link in user.provider_links
        ]

    async def _ensure_identity_free(self, profile: ProviderProfile, owner_id: str | None) -> None:
        holder = await self._store.find_by_provider_id(profile.provider, profile.provider_id)
        if holder is not None and holder.id != owner_id:
            logger.warning(
                "Provider identity already claimed by another user",
                provider=profile.provider,
                holder_id=holder.id,
                requested_by=owner_id,
            )
            raise ProviderConflict()


def _link_from(profile: ProviderProfile, now: datetime) -> ProviderLink:
    return ProviderLink(provider_id=profile.provider_id, email=profile.email, connected_at=now)
