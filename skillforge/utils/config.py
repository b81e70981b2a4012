# skillforge/utils/config.py
from typing import List
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env file before defining settings
load_dotenv()

class Settings(BaseSettings):
    # Storage
    database_url: str = "sqlite+aiosqlite:///./skillforge.db"
    sql_echo: bool = False  # Set to True to see SQL queries

    # Logging / API metadata
    log_level: str = "INFO"
    api_version: str = "1.0.0"
    cors_origins: List[str] = ["*"]

    # Question bank
    question_templates_path: str = "data/question_templates.csv"

    # XP formula
    default_xp_max_time: int = 300  # seconds, used when no time limit is known
    apply_streak_bonus: bool = False  # streak multiplier on assessment XP

    # Assessment generation / expiry
    min_time_limit: int = 300  # seconds
    seconds_per_question: int = 120
    expiry_factor: int = 2  # submissions allowed until created_at + factor * time_limit
    max_assessment_level: int = 5
    max_question_count: int = 20

    # Real-time events (SSE)
    sse_heartbeat_seconds: float = 30.0
    sse_queue_size: int = 100

    leaderboard_limit: int = 10

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()

# --- Sanity checks on numeric settings ---
if settings.expiry_factor < 1:
    raise ValueError("EXPIRY_FACTOR must be at least 1")
if settings.sse_heartbeat_seconds <= 0:
    raise ValueError("SSE_HEARTBEAT_SECONDS must be positive")
