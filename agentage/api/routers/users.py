"""Users router — admin management of user accounts.

Users are only ever created by an OAuth login; admins can list them,
change roles and disable accounts. A disabled account is rejected by the
request gate even while its tokens are still unexpired.
"""

from __future__ import annotations

from fastapi import APIRouter

from agentage.api.dependencies import AdminDep, CurrentUserDep, StoreDep
from agentage.core.errors import ForbiddenError, SelfModificationError, UserNotFound
from agentage.core.logging import get_logger
from agentage.models.base import utcnow
from agentage.schemas.user import UserList, UserOut, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])
logger = get_logger(__name__)

_SELF_EDITABLE = ("name", "avatar")


@router.get("", response_model=UserList)
async def list_users(store: StoreDep, _admin: AdminDep) -> UserList:
    total, users = await store.list_users()
    return UserList(total=total, items=[UserOut.model_validate(u) for u in users])


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: str, store: StoreDep, current: CurrentUserDep) -> UserOut:
    if not current.is_admin and current.user_id != user_id:
        raise ForbiddenError()
    user = await store.find_by_id(user_id)
    if not user:
        raise UserNotFound(user_id)
    return UserOut.model_validate(user)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: str, payload: UserUpdate, store: StoreDep, current: CurrentUserDep
) -> UserOut:
    is_self = current.user_id == user_id
    if not current.is_admin and not is_self:
        raise ForbiddenError()

    data = payload.model_dump(exclude_unset=True)

    # Non-admins can only update their own display fields
    if not current.is_admin:
        data = {k: v for k, v in data.items() if k in _SELF_EDITABLE}
    elif is_self and ("role" in data or data.get("is_active") is False):
        raise SelfModificationError()

    if await store.find_by_id(user_id) is None:
        raise UserNotFound(user_id)

    user = await store.update(user_id, **data, updated_at=utcnow())
    logger.info("User updated", user_id=user_id, fields=sorted(data), by=current.user_id)
    return UserOut.model_validate(user)
