# tests/conftest.py
import asyncio
import logging
import os
import shutil
import sys
import tempfile
from datetime import datetime, timedelta

import pytest

# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, PROJECT_ROOT)

TEMPLATES_CSV = os.path.join(PROJECT_ROOT, "data", "question_templates.csv")

# --- Point settings at a throwaway database BEFORE the app modules are imported ---
_TEST_DB_DIR = tempfile.mkdtemp(prefix="skillforge-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'api.db')}"
os.environ["QUESTION_TEMPLATES_PATH"] = TEMPLATES_CSV

from fastapi.testclient import TestClient  # noqa: E402

from skillforge.models.entities import Base  # noqa: E402
from skillforge.services.question_service import QuestionService  # noqa: E402
from skillforge.utils.db import build_engine, build_session_factory  # noqa: E402
from skillforge.utils.deps import build_services  # noqa: E402


class FakeClock:
    """Controllable naive-UTC clock for the engines."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 4, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def question_service():
    service = QuestionService()
    service.load_templates(TEMPLATES_CSV)
    return service


@pytest.fixture
def run_with_services(tmp_path, question_service, clock):
    """
    Runs `async def scenario(services)` against a fresh SQLite database with
    every engine wired up and driven by the fake clock.
    """
    def runner(scenario):
        async def _main():
            engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            services = build_services(build_session_factory(engine), question_service)
            services.progress.clock = clock
            services.grading.clock = clock
            await services.achievements.sync_catalog()
            try:
                return await scenario(services)
            finally:
                await engine.dispose()
        return asyncio.run(_main())
    return runner


# --- TestClient Fixture ---
@pytest.fixture(scope="session")
def client():
    """Creates the TestClient once; startup creates tables in the temp database."""
    from skillforge.main import app
    logger.info("Creating TestClient instance for the session.")
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_database():
    yield
    shutil.rmtree(_TEST_DB_DIR, ignore_errors=True)
    logger.info(f"Removed test database directory: {_TEST_DB_DIR}")
