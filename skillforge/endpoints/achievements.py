# skillforge/endpoints/achievements.py
from fastapi import APIRouter, Depends, Query

from skillforge.services.achievements import CATALOG_VERSION
from skillforge.services.notifications import NotificationHub
from skillforge.models.enums import EventType
from skillforge.utils.config import settings
from skillforge.utils.deps import Services, get_services
from skillforge.utils.errors import NotFoundError, USER_NOT_FOUND
from skillforge.utils.responses import ok

router = APIRouter()

async def _require_user(services: Services, user_id: str):
    if not await services.gateway.get_user(user_id):
        raise NotFoundError("User not found", USER_NOT_FOUND)

def _publish_unlocked(hub: NotificationHub, user_id: str, unlocked):
    for achievement in unlocked:
        hub.publish(user_id, EventType.ACHIEVEMENT_UNLOCKED, {"achievement": achievement.to_dict()})

@router.get("/")
async def list_catalog(services: Services = Depends(get_services)):
    """The achievement catalog, without user-specific state."""
    return ok({
        "version": CATALOG_VERSION,
        "achievements": [a.to_dict() for a in services.achievements.catalog],
    })

@router.get("/leaderboard")
async def get_leaderboard(limit: int = Query(settings.leaderboard_limit, ge=1, le=100),
                          services: Services = Depends(get_services)):
    return ok({"leaderboard": await services.achievements.leaderboard(limit)})

@router.get("/user/{user_id}")
async def list_user_achievements(user_id: str, services: Services = Depends(get_services)):
    await _require_user(services, user_id)
    return ok({"achievements": await services.achievements.list_for_user(user_id)})

@router.get("/user/{user_id}/stats")
async def get_achievement_stats(user_id: str, services: Services = Depends(get_services)):
    await _require_user(services, user_id)
    return ok(await services.achievements.get_stats(user_id))

@router.post("/user/{user_id}/check")
async def check_achievements(user_id: str, services: Services = Depends(get_services)):
    """Re-evaluates the catalog for the user and grants anything newly earned."""
    await _require_user(services, user_id)
    unlocked = await services.achievements.check_achievements(user_id, "manual_check")
    _publish_unlocked(services.hub, user_id, unlocked)
    return ok({"achievements_unlocked": [a.to_dict() for a in unlocked]})
