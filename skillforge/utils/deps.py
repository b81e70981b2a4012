# skillforge/utils/deps.py
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from skillforge.gateway import PersistenceGateway
from skillforge.services.achievements import AchievementEngine
from skillforge.services.grading import GradingEngine
from skillforge.services.leveling import ProgressEngine
from skillforge.services.notifications import NotificationHub
from skillforge.services.question_service import QuestionService


@dataclass
class Services:
    """Components built once at startup and shared by every request."""
    gateway: PersistenceGateway
    question_service: QuestionService
    progress: ProgressEngine
    achievements: AchievementEngine
    grading: GradingEngine
    hub: NotificationHub


def build_services(session_factory: sessionmaker, question_service: QuestionService) -> Services:
    gateway = PersistenceGateway(session_factory)
    hub = NotificationHub()
    progress = ProgressEngine(gateway)
    achievements = AchievementEngine(gateway)
    grading = GradingEngine(gateway, question_service, progress, achievements, hub)
    return Services(
        gateway=gateway,
        question_service=question_service,
        progress=progress,
        achievements=achievements,
        grading=grading,
        hub=hub,
    )


def get_services(request: Request) -> Services:
    """Dependency returning the services attached to the app during startup."""
    return request.app.state.services
