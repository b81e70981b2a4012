# Endpoints for browsing and managing skills

# skillforge/endpoints/skills.py
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from skillforge.utils.deps import Services, get_services
from skillforge.utils.errors import NotFoundError, ValidationError, SKILL_NOT_FOUND, MISSING_FIELDS
from skillforge.utils.logger import logger
from skillforge.utils.responses import ok

router = APIRouter()

class SkillCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field("General", min_length=1, max_length=100)
    difficulty_levels: int = Field(5, ge=1, le=10)
    description: str | None = None

class SkillUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    category: str | None = Field(None, min_length=1, max_length=100)
    difficulty_levels: int | None = Field(None, ge=1, le=10)
    description: str | None = None

def _serialize(skill) -> dict:
    return {
        "id": skill.id,
        "name": skill.name,
        "category": skill.category,
        "difficulty_levels": skill.difficulty_levels,
        "description": skill.description,
        "created_at": skill.created_at,
        "updated_at": skill.updated_at,
    }

@router.get("/")
async def list_skills(services: Services = Depends(get_services)):
    skills = await services.gateway.list_skills()
    return ok({"skills": [_serialize(s) for s in skills]})

@router.get("/categories")
async def list_categories(services: Services = Depends(get_services)):
    categories: dict = {}
    for skill in await services.gateway.list_skills():
        entry = categories.setdefault(skill.category, {"name": skill.category, "count": 0, "skills": []})
        entry["skills"].append({"id": skill.id, "name": skill.name, "difficulty_levels": skill.difficulty_levels})
        entry["count"] += 1
    return ok({"categories": list(categories.values())})

@router.post("/", status_code=201)
async def create_skill(skill: SkillCreate, services: Services = Depends(get_services)):
    created = await services.gateway.create_skill(
        name=skill.name.strip(),
        category=skill.category.strip(),
        difficulty_levels=skill.difficulty_levels,
        description=skill.description,
    )
    logger.info(f"Created skill {created.id}: {created.name} ({created.category})")
    return ok({"skill": _serialize(created)})

@router.get("/{skill_id}")
async def get_skill(skill_id: int, services: Services = Depends(get_services)):
    skill = await services.gateway.get_skill(skill_id)
    if not skill:
        raise NotFoundError("Skill not found", SKILL_NOT_FOUND)
    return ok({"skill": _serialize(skill)})

@router.put("/{skill_id}")
async def update_skill(skill_id: int, update: SkillUpdate, services: Services = Depends(get_services)):
    fields = update.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise ValidationError("No fields to update", MISSING_FIELDS)
    skill = await services.gateway.update_skill(skill_id, fields)
    if not skill:
        raise NotFoundError("Skill not found", SKILL_NOT_FOUND)
    return ok({"skill": _serialize(skill)})

@router.delete("/{skill_id}")
async def delete_skill(skill_id: int, services: Services = Depends(get_services)):
    if not await services.gateway.delete_skill(skill_id):
        raise NotFoundError("Skill not found", SKILL_NOT_FOUND)
    logger.info(f"Deleted skill {skill_id}")
    return ok({"deleted": skill_id})
