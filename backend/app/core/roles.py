import logging
from typing import Callable, Iterable

from fastapi import Depends, HTTPException

from app.core.auth_utils import get_current_user
from app.models.workflow import Actor
from app.services.submission_store import SubmissionStore

logger = logging.getLogger("manuscripts.auth")


def get_store() -> SubmissionStore:
    return SubmissionStore()


async def get_current_profile(
    current_user: dict = Depends(get_current_user),
    store: SubmissionStore = Depends(get_store),
) -> dict:
    """
    获取当前用户的 profile（含 roles）。

    中文注释:
    1) 角色在应用层管理（user_profiles.roles）。
    2) 尚无 profile 的用户按 author 处理，不在这里自动建档。
    3) 被停用（is_active=false）的账号直接 403。
    """
    user_id = current_user["id"]
    profile = store.get_profile(user_id)
    if not profile:
        return {"id": user_id, "email": current_user.get("email"), "roles": ["author"]}
    if profile.get("is_active") is False:
        raise HTTPException(status_code=403, detail="Account is inactive")
    return profile


async def get_current_actor(profile: dict = Depends(get_current_profile)) -> Actor:
    return Actor.from_profile(profile)


def require_any_role(required: Iterable[str]) -> Callable[..., Actor]:
    required_set = {r for r in required}

    async def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.has_any_role(required_set):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return actor

    return _dep
