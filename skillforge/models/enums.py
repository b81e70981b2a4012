# skillforge/models/enums.py
from enum import Enum

class QuestionType(str, Enum):
    """Kinds of generated questions; each has its own base point value."""
    MULTIPLE_CHOICE = "multiple_choice"
    SHORT_ANSWER = "short_answer"
    CODING = "coding"

class ConditionType(str, Enum):
    """Aggregate statistic an achievement condition is evaluated against."""
    ASSESSMENT_COUNT = "assessment_count"
    HIGH_SCORE = "high_score"
    PERFECT_SCORE = "perfect_score"
    AVERAGE_SCORE = "average_score"
    SKILL_CATEGORIES = "skill_categories"
    UNIQUE_SKILLS = "unique_skills"
    SKILL_LEVEL = "skill_level"
    STREAK = "streak"
    TOTAL_XP = "total_xp"
    FAST_COMPLETION = "fast_completion"
    TIME_BASED = "time_based"

class EventType(str, Enum):
    """Server-sent event names pushed to live connections."""
    CONNECTED = "connected"
    HEARTBEAT = "heartbeat"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    LEVEL_UP = "level_up"
    PROGRESS_UPDATE = "progress_update"
    ASSESSMENT_COMPLETED = "assessment_completed"
    STREAK_MILESTONE = "streak_milestone"
