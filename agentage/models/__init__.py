"""SQLAlchemy ORM models."""

from agentage.models.base import Base
from agentage.models.device_code import DeviceCode
from agentage.models.user import User, UserProvider

__all__ = ["Base", "DeviceCode", "User", "UserProvider"]
