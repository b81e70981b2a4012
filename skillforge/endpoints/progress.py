# skillforge/endpoints/progress.py
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from skillforge.services.leveling import (
    calculate_level_progress,
    calculate_xp_to_next_level,
    check_milestones,
)
from skillforge.services.notifications import announce_progress
from skillforge.utils.deps import Services, get_services
from skillforge.utils.errors import (
    NotFoundError,
    ValidationError,
    INVALID_INPUT,
    SKILL_NOT_FOUND,
    USER_NOT_FOUND,
)
from skillforge.utils.config import settings
from skillforge.utils.logger import logger
from skillforge.utils.responses import ok

router = APIRouter(
    tags=["Progress"]
)

class ProgressUpdateRequest(BaseModel):
    user_id: str
    skill_id: int
    xp_gained: int
    streak_maintained: bool = True

def _serialize(skill, progress) -> dict:
    """Progress row for a skill; a skill with no activity reports level 1 / 0 XP."""
    xp = progress.xp if progress else 0
    return {
        "skill_id": skill.id,
        "skill_name": skill.name,
        "skill_category": skill.category,
        "level": progress.level if progress else 1,
        "xp": xp,
        "xp_to_next_level": calculate_xp_to_next_level(xp),
        "level_progress": calculate_level_progress(xp),
        "streak": progress.streak if progress else 0,
        "mastery_level": progress.mastery_level if progress else 0,
        "assessments_completed": progress.assessments_completed if progress else 0,
        "average_score": progress.total_score if progress else 0.0,
        "last_activity": progress.last_activity if progress else None,
    }

async def _require_user(services: Services, user_id: str):
    if not await services.gateway.get_user(user_id):
        raise NotFoundError("User not found", USER_NOT_FOUND)

@router.get("/leaderboard")
async def get_leaderboard(limit: int = Query(settings.leaderboard_limit, ge=1, le=100),
                          services: Services = Depends(get_services)):
    return ok({"leaderboard": await services.progress.get_leaderboard(limit)})

@router.post("/update")
async def update_progress(request: ProgressUpdateRequest, services: Services = Depends(get_services)):
    """Grants XP directly to a (user, skill) pair outside of an assessment."""
    if request.xp_gained < 0:
        raise ValidationError("XP gained must be a non-negative number", INVALID_INPUT)
    await _require_user(services, request.user_id)
    skill = await services.gateway.get_skill(request.skill_id)
    if not skill:
        raise NotFoundError("Skill not found", SKILL_NOT_FOUND)

    update = await services.progress.update_progress(
        request.user_id, request.skill_id, request.xp_gained, request.streak_maintained
    )
    unlocked = await services.achievements.check_achievements(
        request.user_id, "progress_update", {"skill_id": request.skill_id, "xp_gained": request.xp_gained}
    )
    milestones = check_milestones(update)
    announce_progress(services.hub, update, skill.name, milestones, unlocked)
    logger.info(f"Manual progress update for user {request.user_id} on skill {skill.name}: +{request.xp_gained} XP")

    return ok({
        "progress": update.to_dict(),
        "milestones": milestones,
        "achievements_unlocked": [a.to_dict() for a in unlocked],
    })

@router.get("/{user_id}")
async def get_all_progress(user_id: str, services: Services = Depends(get_services)):
    await _require_user(services, user_id)
    rows = {p.skill_id: p for p in await services.gateway.list_progress(user_id)}
    skills = await services.gateway.list_skills()
    return ok({"progress": [_serialize(skill, rows.get(skill.id)) for skill in skills]})

@router.get("/{user_id}/stats")
async def get_progress_stats(user_id: str, services: Services = Depends(get_services)):
    await _require_user(services, user_id)
    return ok(await services.progress.get_progress_stats(user_id))

@router.get("/{user_id}/{skill_id}")
async def get_skill_progress(user_id: str, skill_id: int, services: Services = Depends(get_services)):
    await _require_user(services, user_id)
    skill = await services.gateway.get_skill(skill_id)
    if not skill:
        raise NotFoundError("Skill not found", SKILL_NOT_FOUND)
    progress = await services.gateway.get_progress(user_id, skill_id)
    return ok({"progress": {"user_id": user_id, **_serialize(skill, progress)}})
