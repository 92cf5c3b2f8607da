"""Schemas for users, provider identities and auth status."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

ProviderName = Literal["github", "google", "microsoft"]
Role = Literal["user", "admin"]


class ProviderProfile(BaseModel):
    """External identity asserted by an OAuth provider, after narrowing."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName
    provider_id: str = Field(..., min_length=1)
    email: EmailStr
    name: str | None = None
    avatar: str | None = None
    username: str | None = None

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, value: str) -> str:
        return value.strip().lower()


class ProviderLink(BaseModel):
    """Value written under ``providers[<name>]`` on a user record."""

    provider_id: str
    email: str
    connected_at: datetime


class ProviderOut(BaseModel):
    name: ProviderName
    email: str
    connected_at: datetime


class ProviderList(BaseModel):
    providers: list[ProviderOut]


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str | None
    avatar: str | None
    verified_alias: str | None = None
    role: Role
    is_active: bool
    providers: list[str]
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None = None

    @field_validator("providers", mode="before")
    @classmethod
    def _provider_names(cls, value):
        # ORM objects expose a name → link mapping; the API only shows names
        if isinstance(value, dict):
            return sorted(value)
        return value


class UserList(BaseModel):
    total: int
    items: list[UserOut]


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    avatar: str | None = None
    role: Role | None = None
    is_active: bool | None = None

    @field_validator("role", "is_active")
    @classmethod
    def _not_null(cls, value):
        # May be omitted, never cleared
        if value is None:
            raise ValueError("must not be null")
        return value


class MeOut(BaseModel):
    user: UserOut
    authenticated: bool = True


class StatusUser(BaseModel):
    user_id: str
    email: str
    role: Role


class AuthStatusOut(BaseModel):
    authenticated: bool
    user: StatusUser | None = None


class MessageOut(BaseModel):
    message: str
    success: bool = True
