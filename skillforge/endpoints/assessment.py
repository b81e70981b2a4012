# skillforge/endpoints/assessment.py
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from skillforge.utils.deps import Services, get_services
from skillforge.utils.responses import ok

router = APIRouter()

class GenerateRequest(BaseModel):
    user_id: str
    skill_id: int
    level: int
    question_count: int = 5

class SubmittedAnswer(BaseModel):
    question_id: int
    answer: Optional[Union[str, int, float]] = None

class SubmitRequest(BaseModel):
    user_id: str
    assessment_id: int
    answers: List[SubmittedAnswer]
    total_time: float = Field(..., description="Seconds spent on the whole assessment.")

@router.post("/generate")
async def generate_assessment(request: GenerateRequest, services: Services = Depends(get_services)):
    """Generates a question set. Correct answers stay on the server."""
    assessment = await services.grading.generate(
        request.user_id, request.skill_id, request.level, request.question_count
    )
    return ok({"assessment": assessment})

@router.post("/submit")
async def submit_assessment(request: SubmitRequest, services: Services = Depends(get_services)):
    results = await services.grading.submit(
        request.user_id,
        request.assessment_id,
        [a.model_dump() for a in request.answers],
        request.total_time,
    )
    return ok({"results": results})

@router.get("/history/{user_id}")
async def get_history(user_id: str, limit: int = Query(20, ge=1, le=100), services: Services = Depends(get_services)):
    return ok({"assessments": await services.grading.history(user_id, limit)})
