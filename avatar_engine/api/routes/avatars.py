"""
Avatar definition routes.
"""

from typing import Optional

from fastapi import APIRouter

from avatar_engine.api.dependencies import AvatarServiceDep
from avatar_engine.api.schemas import ReloadRequest, ReloadResponse

router = APIRouter(prefix="/avatars", tags=["avatars"])


@router.post("/reload", response_model=ReloadResponse)
async def reload_definitions(
    service: AvatarServiceDep,
    request: Optional[ReloadRequest] = None,
):
    """Re-read intent, flow and template YAML on the next turn.

    Reload is explicit; definitions are otherwise cached for the process
    lifetime.
    """
    avatar = request.avatar if request else None
    service.reload_definitions(avatar)
    return ReloadResponse(reloaded=avatar.key if avatar else "all")
