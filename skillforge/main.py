# FastAPI entry point; wires the engines together and exposes the REST + SSE API
# skillforge/main.py
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import os
import sys

# Add project root to sys.path to allow for absolute imports
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Import routers and services
from skillforge.endpoints import (
    users as users_router,
    skills as skills_router,
    assessment as assessment_router,
    progress as progress_router,
    achievements as achievements_router,
    events as events_router,
)
from skillforge.services.question_service import QuestionService
from skillforge.utils.config import settings
from skillforge.utils.deps import build_services
from skillforge.utils.errors import SkillForgeError, MISSING_FIELDS, GENERIC_ERROR
from skillforge.utils.logger import logger
from skillforge.utils.db import engine, AsyncSessionLocal
from skillforge.utils.responses import error_response, ok
from skillforge.models.entities import Base

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info("SkillForge API starting up...")

    # Create database tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Loading question templates...")
    question_service = QuestionService()
    question_service.load_templates(settings.question_templates_path)

    services = build_services(AsyncSessionLocal, question_service)
    await services.achievements.sync_catalog()
    app.state.services = services

    logger.info("Startup complete.")
    yield
    # On shutdown
    logger.info("SkillForge API shutting down...")
    services.hub.close_all()
    await engine.dispose()

# --- FastAPI App Initialization ---
app = FastAPI(
    title="SkillForge API",
    description="Gamified skill assessments with XP, levels, streaks and achievements.",
    version=settings.api_version,
    lifespan=lifespan
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Error envelope ---
@app.exception_handler(SkillForgeError)
async def skillforge_error_handler(request: Request, exc: SkillForgeError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.error_code)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return error_response(400, f"Invalid request: {details}", MISSING_FIELDS)

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return error_response(exc.status_code, str(exc.detail), GENERIC_ERROR)

# --- API Routers ---
app.include_router(users_router.router, prefix="/users", tags=["Users"])
app.include_router(skills_router.router, prefix="/skills", tags=["Skills"])
app.include_router(assessment_router.router, prefix="/assessment", tags=["Assessments"])
app.include_router(progress_router.router, prefix="/progress")
app.include_router(achievements_router.router, prefix="/achievements", tags=["Achievements"])
app.include_router(events_router.router, prefix="/events")

# --- Root Endpoint ---
@app.get("/")
async def root():
    return ok({"message": "Welcome to the SkillForge API", "version": settings.api_version})
