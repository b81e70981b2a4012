# skillforge/services/leveling.py
import asyncio
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from skillforge.gateway import PersistenceGateway
from skillforge.models.entities import utcnow
from skillforge.utils.config import settings
from skillforge.utils.errors import PersistenceError, ValidationError, PROGRESS_UPDATE_FAILED
from skillforge.utils.logger import logger

XP_PER_LEVEL = 100
ACCURACY_BONUS_WEIGHT = 0.5   # up to +50%
TIME_BONUS_WEIGHT = 0.2       # up to +20%
STREAK_BONUS_MULTIPLIER = 0.1  # +10% per streak day
MAX_STREAK_BONUS = 1.0        # capped at +100%
SECONDS_PER_DAY = 86400

LEVEL_MILESTONES = {5: "Intermediate", 10: "Advanced", 20: "Expert"}
STREAK_MILESTONES = (7, 14, 30, 60, 100)
XP_MILESTONES = (1000, 5000, 10000, 25000, 50000)


def calculate_xp(difficulty: float, accuracy: float, time_spent: float, streak: int = 0,
                 max_time: float = settings.default_xp_max_time) -> int:
    """
    XP for one assessment:
        floor(difficulty * 100 * (1 + accuracy_bonus + time_bonus + streak_bonus))
    Every bonus is clamped to be non-negative, so the result never drops below zero.
    """
    base_xp = max(0.0, difficulty) * XP_PER_LEVEL
    accuracy_bonus = min(max(accuracy, 0.0), 1.0) * ACCURACY_BONUS_WEIGHT
    if max_time and max_time > 0:
        time_bonus = max(0.0, 1 - max(time_spent, 0) / max_time) * TIME_BONUS_WEIGHT
    else:
        time_bonus = 0.0
    streak_bonus = min(max(streak, 0) * STREAK_BONUS_MULTIPLIER, MAX_STREAK_BONUS)
    return math.floor(base_xp * (1 + accuracy_bonus + time_bonus + streak_bonus))


def calculate_level(total_xp: int) -> int:
    """Square-root curve: floor(sqrt(xp / 100)) + 1. Level 1 at 0 XP, no upper bound."""
    return math.isqrt(max(int(total_xp), 0) // XP_PER_LEVEL) + 1


def calculate_xp_for_level(level: int) -> int:
    """XP at which `level` starts."""
    return (max(level, 1) - 1) ** 2 * XP_PER_LEVEL


def calculate_xp_to_next_level(total_xp: int) -> int:
    next_level_xp = calculate_xp_for_level(calculate_level(total_xp) + 1)
    return max(0, next_level_xp - total_xp)


def calculate_level_progress(total_xp: int) -> dict:
    current_level = calculate_level(total_xp)
    current_level_xp = calculate_xp_for_level(current_level)
    next_level_xp = calculate_xp_for_level(current_level + 1)
    xp_in_current_level = total_xp - current_level_xp
    xp_needed = next_level_xp - current_level_xp
    return {
        "current_level": current_level,
        "total_xp": total_xp,
        "xp_in_current_level": xp_in_current_level,
        "xp_to_next_level": max(0, next_level_xp - total_xp),
        "progress_percentage": math.floor(xp_in_current_level * 100 / xp_needed),
    }


def calculate_streak(last_activity: Optional[datetime], current_streak: int, streak_maintained: bool,
                     now: datetime) -> int:
    """
    Day-gap state machine. Gap is whole days since the last activity:
    0 keeps the streak, 1 extends it when maintained, anything else restarts at 1.
    No recorded activity counts as a gap of 0, so a new row keeps its streak of 0.
    """
    if last_activity is None:
        days = 0
    else:
        days = math.floor((now - last_activity).total_seconds() / SECONDS_PER_DAY)
    if days <= 0:
        return current_streak
    if days == 1 and streak_maintained:
        return current_streak + 1
    return 1


def calculate_mastery_level(level: int, streak: int) -> int:
    """0-100: up to 50 from level, up to 50 from streak."""
    level_mastery = min((level - 1) * 5, 50)
    streak_mastery = min(streak * 2, 50)
    return max(0, min(level_mastery + streak_mastery, 100))


@dataclass
class ProgressUpdate:
    user_id: str
    skill_id: int
    old_level: int
    new_level: int
    level_up: bool
    xp_gained: int
    total_xp: int
    old_streak: int
    new_streak: int
    streak_maintained: bool
    mastery_level: int
    assessments_completed: int
    average_score: float
    is_new_progress: bool
    level_progress: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def check_milestones(update: ProgressUpdate) -> List[dict]:
    """Level, streak and XP milestones crossed by this update."""
    milestones = []

    if update.level_up:
        for level, name in LEVEL_MILESTONES.items():
            if update.old_level < level <= update.new_level:
                milestones.append({"type": "level", "milestone": name, "level": level})

    if update.new_streak != update.old_streak and update.new_streak in STREAK_MILESTONES:
        milestones.append({
            "type": "streak",
            "milestone": f"{update.new_streak} Day Streak",
            "streak": update.new_streak,
        })

    old_xp = update.total_xp - update.xp_gained
    for milestone in XP_MILESTONES:
        if old_xp < milestone <= update.total_xp:
            milestones.append({"type": "xp", "milestone": f"{milestone} XP Earned", "xp": milestone})

    return milestones


class UserLocks:
    """Per-user asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str):
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if self._holders[user_id] == 0:
                del self._holders[user_id]
                del self._locks[user_id]

    def __len__(self):
        return len(self._locks)


class ProgressEngine:
    def __init__(self, gateway: PersistenceGateway, clock: Callable[[], datetime] = utcnow):
        self.gateway = gateway
        self.clock = clock
        self.locks = UserLocks()
        logger.info("ProgressEngine initialized with square-root level curve.")

    async def update_progress(self, user_id: str, skill_id: int, xp_gained: int,
                              streak_maintained: bool = True, score: float | None = None) -> ProgressUpdate:
        """
        Applies XP to a (user, skill) pair: streak, level, mastery and, when a
        score is given, the assessment counters. All fields are written in one
        upsert. Callers must reject negative XP before getting here.
        """
        if xp_gained < 0:
            raise ValidationError("XP gained must be a non-negative number")

        async with self.locks.hold(user_id):
            now = self.clock()
            try:
                current = await self.gateway.get_progress(user_id, skill_id)
                is_new = current is None
                old_xp = 0 if is_new else current.xp
                old_level = 1 if is_new else current.level
                old_streak = 0 if is_new else current.streak
                completed = 0 if is_new else current.assessments_completed
                average = 0.0 if is_new else current.total_score
                last_activity = None if is_new else current.last_activity

                new_streak = calculate_streak(last_activity, old_streak, streak_maintained, now)
                new_xp = old_xp + int(xp_gained)
                new_level = calculate_level(new_xp)
                mastery = calculate_mastery_level(new_level, new_streak)

                if score is not None:
                    average = (average * completed + score) / (completed + 1)
                    completed += 1

                await self.gateway.upsert_progress(user_id, skill_id, {
                    "level": new_level,
                    "xp": new_xp,
                    "streak": new_streak,
                    "mastery_level": mastery,
                    "assessments_completed": completed,
                    "total_score": average,
                    "last_activity": now,
                })
            except PersistenceError as e:
                raise PersistenceError("Failed to update progress", PROGRESS_UPDATE_FAILED) from e

        update = ProgressUpdate(
            user_id=user_id,
            skill_id=skill_id,
            old_level=old_level,
            new_level=new_level,
            level_up=new_level > old_level,
            xp_gained=int(xp_gained),
            total_xp=new_xp,
            old_streak=old_streak,
            new_streak=new_streak,
            streak_maintained=streak_maintained,
            mastery_level=mastery,
            assessments_completed=completed,
            average_score=average,
            is_new_progress=is_new,
            level_progress=calculate_level_progress(new_xp),
        )
        if update.level_up:
            logger.info(f"Level up: user={user_id} skill={skill_id} {old_level} -> {new_level} (xp={new_xp})")
        logger.debug(f"Progress update: {update.to_dict()}")
        return update

    async def get_progress_stats(self, user_id: str) -> dict:
        rows = await self.gateway.list_progress(user_id)
        results = await self.gateway.get_assessment_results(user_id)

        total_xp = sum(r.xp for r in rows)
        stats = {
            "skills_started": len(rows),
            "skills_mastered": sum(1 for r in rows if r.mastery_level >= 80),
            "total_xp": total_xp,
            "average_level": (sum(r.level for r in rows) / len(rows)) if rows else 0,
            "longest_streak": max((r.streak for r in rows), default=0),
            "average_mastery": (sum(r.mastery_level for r in rows) / len(rows)) if rows else 0,
            "total_assessments": len(results),
            "average_score": (sum(r.score for r in results) / len(results)) if results else 0,
        }
        recent_activity = [
            {
                "skill_id": r.skill_id,
                "skill_name": r.skill.name if r.skill else None,
                "level": r.level,
                "xp": r.xp,
                "streak": r.streak,
                "mastery_level": r.mastery_level,
                "last_activity": r.last_activity,
            }
            for r in rows[:5]
        ]
        return {
            "stats": stats,
            "recent_activity": recent_activity,
            "user_level": calculate_level(total_xp),
        }

    async def get_leaderboard(self, limit: int = settings.leaderboard_limit) -> List[dict]:
        entries = await self.gateway.xp_leaderboard(limit)
        return [
            {
                "rank": index + 1,
                "user_id": entry["id"],
                "display_name": entry["display_name"],
                "total_xp": entry["total_xp"],
                "user_level": calculate_level(entry["total_xp"]),
                "skills_count": entry["skills_count"],
                "average_mastery": round(entry["average_mastery"] or 0),
                "best_streak": entry["best_streak"] or 0,
            }
            for index, entry in enumerate(entries)
        ]
