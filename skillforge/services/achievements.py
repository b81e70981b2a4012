# skillforge/services/achievements.py
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from skillforge.gateway import PersistenceGateway
from skillforge.models.entities import AssessmentResult, UserProgress
from skillforge.models.enums import ConditionType
from skillforge.utils.config import settings
from skillforge.utils.logger import logger

# Bump whenever a definition is added, removed or changes meaning.
CATALOG_VERSION = 2

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6
MORNING_START_HOUR = 5
MORNING_END_HOUR = 9


@dataclass(frozen=True)
class AchievementCondition:
    type: ConditionType
    value: float | str
    min_assessments: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"type": self.type.value, "value": self.value}
        if self.min_assessments is not None:
            data["min_assessments"] = self.min_assessments
        return data


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    name: str
    description: str
    icon: str
    points: int
    condition: AchievementCondition

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "points": self.points,
            "condition": self.condition.to_dict(),
        }


def _define(id, name, description, icon, points, condition_type, value, min_assessments=None):
    return AchievementDefinition(
        id=id, name=name, description=description, icon=icon, points=points,
        condition=AchievementCondition(condition_type, value, min_assessments),
    )


ACHIEVEMENT_CATALOG: tuple = (
    _define("first_steps", "First Steps", "Complete your first assessment", "🎯", 50,
            ConditionType.ASSESSMENT_COUNT, 1),
    _define("getting_started", "Getting Started", "Complete 5 assessments", "🚀", 100,
            ConditionType.ASSESSMENT_COUNT, 5),
    _define("dedicated_student", "Dedicated Student", "Complete 10 assessments", "📚", 150,
            ConditionType.ASSESSMENT_COUNT, 10),
    _define("assessment_master", "Assessment Master", "Complete 25 assessments", "🏆", 250,
            ConditionType.ASSESSMENT_COUNT, 25),
    _define("high_achiever", "High Achiever", "Score 90% or higher on an assessment", "⭐", 100,
            ConditionType.HIGH_SCORE, 0.9),
    _define("perfectionist", "Perfectionist", "Score 100% on an assessment", "💯", 200,
            ConditionType.PERFECT_SCORE, 1.0),
    _define("consistent_performer", "Consistent Performer",
            "Maintain an average score of 85% or higher across 10 assessments", "📈", 300,
            ConditionType.AVERAGE_SCORE, 0.85, min_assessments=10),
    _define("skill_explorer", "Skill Explorer", "Try assessments in 3 different skill categories", "🗺️", 150,
            ConditionType.SKILL_CATEGORIES, 3),
    _define("skill_collector", "Skill Collector", "Try assessments in 5 different skills", "🎨", 200,
            ConditionType.UNIQUE_SKILLS, 5),
    _define("level_up", "Level Up", "Reach level 5 in any skill", "📊", 200,
            ConditionType.SKILL_LEVEL, 5),
    _define("expert", "Expert", "Reach level 10 in any skill", "🧠", 500,
            ConditionType.SKILL_LEVEL, 10),
    _define("master", "Master", "Reach level 20 in any skill", "👑", 1000,
            ConditionType.SKILL_LEVEL, 20),
    _define("streak_starter", "Streak Starter", "Maintain a 7-day learning streak", "🔥", 150,
            ConditionType.STREAK, 7),
    _define("dedicated_learner", "Dedicated Learner", "Maintain a 30-day learning streak", "💪", 500,
            ConditionType.STREAK, 30),
    _define("unstoppable", "Unstoppable", "Maintain a 100-day learning streak", "⚡", 1500,
            ConditionType.STREAK, 100),
    _define("xp_hunter", "XP Hunter", "Earn 1,000 total XP", "💎", 100,
            ConditionType.TOTAL_XP, 1000),
    _define("xp_collector", "XP Collector", "Earn 10,000 total XP", "💰", 500,
            ConditionType.TOTAL_XP, 10000),
    _define("xp_master", "XP Master", "Earn 50,000 total XP", "🏅", 1000,
            ConditionType.TOTAL_XP, 50000),
    _define("speed_demon", "Speed Demon", "Complete an assessment in 30 seconds or less", "⏱️", 150,
            ConditionType.FAST_COMPLETION, 30),
    _define("night_owl", "Night Owl", "Complete an assessment between 10 PM and 6 AM", "🦉", 100,
            ConditionType.TIME_BASED, "night"),
    _define("early_bird", "Early Bird", "Complete an assessment between 5 AM and 9 AM", "🐦", 100,
            ConditionType.TIME_BASED, "morning"),
)


@dataclass
class UserStats:
    """Aggregate snapshot used for one evaluation pass. Absent values are None."""
    total_assessments: int = 0
    average_score: Optional[float] = None
    highest_score: Optional[float] = None
    fastest_time: Optional[float] = None
    unique_skills: int = 0
    unique_categories: int = 0
    highest_level: Optional[int] = None
    longest_streak: Optional[int] = None
    total_xp: Optional[int] = None
    last_completed_at: Optional[datetime] = None

    @classmethod
    def from_history(cls, results: Iterable[AssessmentResult], progress: Iterable[UserProgress]) -> "UserStats":
        results = list(results)
        progress = list(progress)
        scores = [r.score for r in results if r.score is not None]
        times = [r.time_spent for r in results if r.time_spent is not None]
        completed = [r.completed_at for r in results if r.completed_at is not None]
        categories = {r.skill.category for r in results if r.skill is not None and r.skill.category}
        return cls(
            total_assessments=len(results),
            average_score=(sum(scores) / len(scores)) if scores else None,
            highest_score=max(scores, default=None),
            fastest_time=min(times, default=None),
            unique_skills=len({r.skill_id for r in results}),
            unique_categories=len(categories),
            highest_level=max((p.level for p in progress), default=None),
            longest_streak=max((p.streak for p in progress), default=None),
            total_xp=sum(p.xp for p in progress) if progress else None,
            last_completed_at=max(completed, default=None),
        )

    def to_dict(self) -> dict:
        return asdict(self)


# --- Condition predicates ---
# Each takes (condition, stats) and must not raise on missing values.

def _at_least(attribute: str) -> Callable[[AchievementCondition, UserStats], bool]:
    def predicate(condition: AchievementCondition, stats: UserStats) -> bool:
        return (getattr(stats, attribute) or 0) >= condition.value
    return predicate


def _average_score(condition: AchievementCondition, stats: UserStats) -> bool:
    return ((stats.total_assessments or 0) >= (condition.min_assessments or 1)
            and (stats.average_score or 0) >= condition.value)


def _fast_completion(condition: AchievementCondition, stats: UserStats) -> bool:
    return stats.fastest_time is not None and stats.fastest_time <= condition.value


def _time_based(condition: AchievementCondition, stats: UserStats) -> bool:
    if stats.last_completed_at is None:
        return False
    hour = stats.last_completed_at.hour
    if condition.value == "night":
        return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR
    if condition.value == "morning":
        return MORNING_START_HOUR <= hour < MORNING_END_HOUR
    return False


PREDICATES: Dict[ConditionType, Callable[[AchievementCondition, UserStats], bool]] = {
    ConditionType.ASSESSMENT_COUNT: _at_least("total_assessments"),
    ConditionType.HIGH_SCORE: _at_least("highest_score"),
    ConditionType.PERFECT_SCORE: _at_least("highest_score"),
    ConditionType.AVERAGE_SCORE: _average_score,
    ConditionType.SKILL_CATEGORIES: _at_least("unique_categories"),
    ConditionType.UNIQUE_SKILLS: _at_least("unique_skills"),
    ConditionType.SKILL_LEVEL: _at_least("highest_level"),
    ConditionType.STREAK: _at_least("longest_streak"),
    ConditionType.TOTAL_XP: _at_least("total_xp"),
    ConditionType.FAST_COMPLETION: _fast_completion,
    ConditionType.TIME_BASED: _time_based,
}


def evaluate_condition(condition: AchievementCondition, stats: UserStats) -> bool:
    predicate = PREDICATES.get(condition.type)
    if predicate is None:
        return False
    return bool(predicate(condition, stats))


class AchievementEngine:
    def __init__(self, gateway: PersistenceGateway, catalog: Iterable[AchievementDefinition] = ACHIEVEMENT_CATALOG):
        self.gateway = gateway
        self.catalog: tuple = tuple(catalog)
        if len({a.id for a in self.catalog}) != len(self.catalog):
            raise ValueError("Achievement catalog contains duplicate ids")
        logger.info(f"AchievementEngine initialized with {len(self.catalog)} achievements (catalog v{CATALOG_VERSION}).")

    async def sync_catalog(self) -> int:
        """Writes the in-code catalog to the achievements table."""
        written = await self.gateway.sync_achievements(a.to_dict() for a in self.catalog)
        logger.info(f"Achievement catalog v{CATALOG_VERSION} synced ({written} definitions).")
        return written

    async def build_stats(self, user_id: str) -> UserStats:
        results = await self.gateway.get_assessment_results(user_id)
        progress = await self.gateway.list_progress(user_id)
        return UserStats.from_history(results, progress)

    async def check_achievements(self, user_id: str, trigger: str, data: dict | None = None) -> List[AchievementDefinition]:
        """
        Evaluates every unearned definition against one stats snapshot and
        grants the matches. Safe to re-run: granted ids are skipped and the
        insert itself ignores duplicates.
        """
        granted_ids = await self.gateway.get_granted_achievement_ids(user_id)
        stats = await self.build_stats(user_id)
        logger.debug(f"Checking achievements for user {user_id} (trigger={trigger}, data={data}): {stats.to_dict()}")

        unlocked = []
        for achievement in self.catalog:
            if achievement.id in granted_ids:
                continue
            if not evaluate_condition(achievement.condition, stats):
                continue
            if await self.gateway.grant_achievement_if_absent(user_id, achievement.id):
                total = await self.gateway.recompute_and_persist_total_points(user_id)
                logger.info(f"Achievement '{achievement.id}' granted to user {user_id} (total points {total}).")
                unlocked.append(achievement)
        return unlocked

    async def list_for_user(self, user_id: str) -> List[dict]:
        rows = await self.gateway.list_user_achievements(user_id)
        return [
            {
                "id": achievement.id,
                "name": achievement.name,
                "description": achievement.description,
                "icon": achievement.icon,
                "points": achievement.points,
                "earned": earned_at is not None,
                "earned_at": earned_at,
            }
            for achievement, earned_at in rows
        ]

    async def get_stats(self, user_id: str) -> dict:
        achievements = await self.list_for_user(user_id)
        earned = [a for a in achievements if a["earned"]]
        total = len(achievements)
        recent = sorted(earned, key=lambda a: a["earned_at"], reverse=True)[:5]
        return {
            "stats": {
                "total_achievements": total,
                "earned_achievements": len(earned),
                "total_points": sum(a["points"] for a in earned),
                "completion_percentage": round(len(earned) * 100.0 / total, 2) if total else 0.0,
            },
            "recent_achievements": recent,
        }

    async def leaderboard(self, limit: int = settings.leaderboard_limit) -> List[dict]:
        entries = await self.gateway.points_leaderboard(limit)
        return [
            {
                "rank": index + 1,
                "user_id": entry["id"],
                "display_name": entry["display_name"],
                "total_points": entry["total_points"],
                "achievement_count": entry["achievement_count"],
            }
            for index, entry in enumerate(entries)
        ]
