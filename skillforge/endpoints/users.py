# skillforge/endpoints/users.py
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from skillforge.services.leveling import calculate_level
from skillforge.utils.deps import Services, get_services
from skillforge.utils.errors import NotFoundError, USER_NOT_FOUND
from skillforge.utils.logger import logger
from skillforge.utils.responses import ok

router = APIRouter(
    tags=["Users"]
)

class UserCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    display_name: str | None = None

@router.post("/")
async def create_user(user_create: UserCreate, services: Services = Depends(get_services)):
    """
    Creates a new user. If the user already exists, the existing profile is returned.
    """
    logger.debug(f"Attempting to create or fetch user: {user_create.user_id}")
    user, created = await services.gateway.get_or_create_user(user_create.user_id, user_create.display_name)
    return ok({
        "user": {
            "id": user.id,
            "display_name": user.display_name,
            "created_at": user.created_at,
            "total_points": user.total_points,
        },
        "created": created,
    })

@router.get("/{user_id}")
async def get_user_profile(user_id: str, services: Services = Depends(get_services)):
    """Profile with total points and a per-skill progress summary."""
    user = await services.gateway.get_user(user_id)
    if not user:
        raise NotFoundError("User not found", USER_NOT_FOUND)

    progress = await services.gateway.list_progress(user_id)
    total_xp = sum(p.xp for p in progress)
    return ok({
        "user": {
            "id": user.id,
            "display_name": user.display_name,
            "created_at": user.created_at,
            "total_points": user.total_points,
            "total_xp": total_xp,
            "user_level": calculate_level(total_xp),
        },
        "skills": [
            {
                "skill_id": p.skill_id,
                "skill_name": p.skill.name if p.skill else None,
                "level": p.level,
                "xp": p.xp,
                "streak": p.streak,
                "mastery_level": p.mastery_level,
            }
            for p in progress
        ],
    })
