"""User model and its OAuth provider links."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agentage.models.base import (
    Base,
    StringIdPrimaryKeyMixin,
    TimestampMixin,
    UTCDateTime,
    utcnow,
)

PROVIDERS = ("github", "google", "microsoft")
ROLES = ("user", "admin")


class User(StringIdPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    # Always stored lowercase
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Provider username captured at sign-up (e.g. the GitHub login)
    verified_alias: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # "admin" | "user"
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    provider_links: Mapped[list[UserProvider]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="UserProvider.connected_at",
    )

    @property
    def providers(self) -> dict[str, UserProvider]:
        """Provider name → link, the shape the rest of the code reasons about."""
        return {link.provider: link for link in self.provider_links}

    def __repr__(self) -> str:
        return f"<User {self.email!r} role={self.role!r} providers={sorted(self.providers)!r}>"


class UserProvider(Base):
    """One external identity attached to a user.

    ``(provider, provider_id)`` is globally unique: an external account can
    belong to a single user. ``(user_id, provider)`` is unique too: a user
    holds at most one link per provider.
    """

    __tablename__ = "user_providers"
    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_user_providers_identity"),
        UniqueConstraint("user_id", "provider", name="uq_user_providers_user_provider"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # "github" | "google" | "microsoft"
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    connected_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(back_populates="provider_links")

    def __repr__(self) -> str:
        return f"<UserProvider {self.provider}:{self.provider_id} user={self.user_id}>"
