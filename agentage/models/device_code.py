"""DeviceCode — one pending or completed RFC 8628 device authorization.

``authorized_at``, ``user_id`` and ``access_token`` are written together,
once, by a conditional UPDATE. Rows past ``expires_at`` are dead on every
read path whether or not the sweep has removed them yet.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agentage.models.base import Base, StringIdPrimaryKeyMixin, UTCDateTime, utcnow


class DeviceCode(StringIdPrimaryKeyMixin, Base):
    __tablename__ = "device_codes"

    # Machine-held secret, compared byte-exact
    device_code: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    # Canonical XXXX-XXXX, uppercase
    user_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="github")

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    authorized_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def is_authorized(self) -> bool:
        return bool(self.authorized_at and self.access_token and self.user_id)

    def __repr__(self) -> str:
        state = "authorized" if self.authorized_at else "pending"
        return f"<DeviceCode {self.user_code} {state} expires={self.expires_at.isoformat()}>"
