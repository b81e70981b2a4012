# skillforge/gateway.py
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, sessionmaker

from skillforge.models.entities import (
    Achievement,
    Assessment,
    AssessmentResult,
    Skill,
    User,
    UserAchievement,
    UserProgress,
    utcnow,
)
from skillforge.utils.errors import ConflictError, PersistenceError
from skillforge.utils.logger import logger

_DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}

# Columns of user_progress that callers may write through upsert_progress
PROGRESS_FIELDS = {
    "level", "xp", "streak", "assessments_completed",
    "total_score", "mastery_level", "last_activity",
}

SKILL_FIELDS = {"name", "category", "difficulty_levels", "description"}


class PersistenceGateway:
    """
    Storage accessor shared by the engines. Each public method runs in its own
    session and transaction, so every write is committed atomically or not at all.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, action: str):
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except IntegrityError:
                raise
            except SQLAlchemyError as e:
                logger.exception(f"Database error while trying to {action}: {e}")
                raise PersistenceError(f"Failed to {action}") from e

    def _insert(self, session: AsyncSession, table):
        dialect = session.bind.dialect.name
        try:
            return _DIALECT_INSERTS[dialect](table)
        except KeyError:
            raise PersistenceError(f"Unsupported database dialect '{dialect}'")

    # --- Users ---

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._transaction("load user") as session:
            return await session.get(User, user_id)

    async def get_or_create_user(self, user_id: str, display_name: str | None = None) -> Tuple[User, bool]:
        """Fetches a user or creates it. Returns (user, created)."""
        async with self._transaction("create user") as session:
            user = await session.get(User, user_id)
            if user:
                return user, False
            logger.info(f"Adding new user '{user_id}'.")
            user = User(id=user_id, display_name=display_name, total_points=0)
            session.add(user)
            await session.flush()
            await session.refresh(user)
            return user, True

    # --- Skills ---

    async def get_skill(self, skill_id: int) -> Optional[Skill]:
        async with self._transaction("load skill") as session:
            return await session.get(Skill, skill_id)

    async def list_skills(self) -> List[Skill]:
        async with self._transaction("list skills") as session:
            result = await session.execute(select(Skill).order_by(Skill.category, Skill.name))
            return list(result.scalars().all())

    async def create_skill(self, name: str, category: str, difficulty_levels: int, description: str | None = None) -> Skill:
        try:
            async with self._transaction("create skill") as session:
                skill = Skill(name=name, category=category, difficulty_levels=difficulty_levels, description=description)
                session.add(skill)
                await session.flush()
                await session.refresh(skill)
                return skill
        except IntegrityError as e:
            raise ConflictError(f"Skill '{name}' already exists") from e

    async def update_skill(self, skill_id: int, fields: dict) -> Optional[Skill]:
        values = {k: v for k, v in fields.items() if k in SKILL_FIELDS}
        try:
            async with self._transaction("update skill") as session:
                skill = await session.get(Skill, skill_id)
                if skill is None:
                    return None
                for key, value in values.items():
                    setattr(skill, key, value)
                skill.updated_at = utcnow()
                await session.flush()
                await session.refresh(skill)
                return skill
        except IntegrityError as e:
            raise ConflictError(f"Skill name '{values.get('name')}' is already taken") from e

    async def delete_skill(self, skill_id: int) -> bool:
        try:
            async with self._transaction("delete skill") as session:
                result = await session.execute(delete(Skill).where(Skill.id == skill_id))
                return result.rowcount == 1
        except IntegrityError as e:
            raise ConflictError("Skill is referenced by assessments or progress and cannot be deleted") from e

    # --- Assessments ---

    async def create_assessment(self, user_id: str, skill_id: int, level: int, questions: List[dict], time_limit: int,
                                created_at: datetime | None = None) -> Assessment:
        async with self._transaction("create assessment") as session:
            assessment = Assessment(
                user_id=user_id,
                skill_id=skill_id,
                level=level,
                questions=questions,
                time_limit=time_limit,
                created_at=created_at or utcnow(),
            )
            session.add(assessment)
            await session.flush()
            await session.refresh(assessment)
            return assessment

    async def get_assessment(self, assessment_id: int) -> Optional[Assessment]:
        async with self._transaction("load assessment") as session:
            result = await session.execute(
                select(Assessment)
                .where(Assessment.id == assessment_id)
                .options(selectinload(Assessment.skill))
            )
            return result.scalars().first()

    async def create_assessment_result(
        self,
        user_id: str,
        assessment_id: int,
        skill_id: int,
        answers: List[dict],
        score: float,
        points_earned: int,
        points_possible: int,
        time_spent: float,
        xp_earned: int,
        completed_at: datetime | None = None,
    ) -> AssessmentResult:
        async with self._transaction("save assessment result") as session:
            row = AssessmentResult(
                user_id=user_id,
                assessment_id=assessment_id,
                skill_id=skill_id,
                answers=answers,
                score=score,
                points_earned=points_earned,
                points_possible=points_possible,
                time_spent=time_spent,
                xp_earned=xp_earned,
                completed_at=completed_at or utcnow(),
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return row

    async def get_assessment_results(self, user_id: str) -> List[AssessmentResult]:
        """The full result ledger for a user, oldest first, with skills loaded."""
        async with self._transaction("load assessment results") as session:
            result = await session.execute(
                select(AssessmentResult)
                .where(AssessmentResult.user_id == user_id)
                .options(selectinload(AssessmentResult.skill))
                .order_by(AssessmentResult.completed_at, AssessmentResult.id)
            )
            return list(result.scalars().all())

    async def get_assessment_history(self, user_id: str, limit: int = 20) -> List[AssessmentResult]:
        async with self._transaction("load assessment history") as session:
            result = await session.execute(
                select(AssessmentResult)
                .where(AssessmentResult.user_id == user_id)
                .options(selectinload(AssessmentResult.skill))
                .order_by(AssessmentResult.completed_at.desc(), AssessmentResult.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # --- Progress ---

    async def get_progress(self, user_id: str, skill_id: int) -> Optional[UserProgress]:
        async with self._transaction("load progress") as session:
            result = await session.execute(
                select(UserProgress)
                .filter_by(user_id=user_id, skill_id=skill_id)
                .execution_options(populate_existing=True)
            )
            return result.scalars().first()

    async def list_progress(self, user_id: str) -> List[UserProgress]:
        async with self._transaction("list progress") as session:
            result = await session.execute(
                select(UserProgress)
                .where(UserProgress.user_id == user_id)
                .options(selectinload(UserProgress.skill))
                .order_by(UserProgress.last_activity.desc())
            )
            return list(result.scalars().all())

    async def upsert_progress(self, user_id: str, skill_id: int, fields: dict) -> None:
        """Writes every given progress column for (user, skill) in one statement."""
        unknown = set(fields) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Unknown progress fields: {sorted(unknown)}")
        async with self._transaction("update progress") as session:
            stmt = self._insert(session, UserProgress).values(user_id=user_id, skill_id=skill_id, **fields)
            stmt = stmt.on_conflict_do_update(
                index_elements=[UserProgress.user_id, UserProgress.skill_id],
                set_=fields,
            )
            await session.execute(stmt)

    async def xp_leaderboard(self, limit: int) -> List[dict]:
        async with self._transaction("load leaderboard") as session:
            total_xp = func.coalesce(func.sum(UserProgress.xp), 0).label("total_xp")
            result = await session.execute(
                select(
                    User.id,
                    User.display_name,
                    total_xp,
                    func.count(func.distinct(UserProgress.skill_id)).label("skills_count"),
                    func.avg(UserProgress.mastery_level).label("average_mastery"),
                    func.max(UserProgress.streak).label("best_streak"),
                )
                .join(UserProgress, UserProgress.user_id == User.id)
                .group_by(User.id, User.display_name)
                .having(total_xp > 0)
                .order_by(total_xp.desc(), User.id)
                .limit(limit)
            )
            return [dict(row._mapping) for row in result]

    # --- Achievements ---

    async def sync_achievements(self, definitions: Iterable[dict]) -> int:
        """Inserts or refreshes catalog rows. Returns the number of definitions written."""
        count = 0
        async with self._transaction("sync achievement catalog") as session:
            for definition in definitions:
                stmt = self._insert(session, Achievement).values(**definition)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Achievement.id],
                    set_={k: v for k, v in definition.items() if k != "id"},
                )
                await session.execute(stmt)
                count += 1
        return count

    async def get_granted_achievement_ids(self, user_id: str) -> Set[str]:
        async with self._transaction("load granted achievements") as session:
            result = await session.execute(
                select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
            )
            return set(result.scalars().all())

    async def grant_achievement_if_absent(self, user_id: str, achievement_id: str) -> bool:
        """Insert-or-ignore. True only when this call created the row."""
        async with self._transaction("grant achievement") as session:
            stmt = self._insert(session, UserAchievement).values(
                user_id=user_id, achievement_id=achievement_id, earned_at=utcnow()
            )
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[UserAchievement.user_id, UserAchievement.achievement_id]
            )
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def recompute_and_persist_total_points(self, user_id: str) -> int:
        async with self._transaction("update total points") as session:
            points_sum = (
                select(func.coalesce(func.sum(Achievement.points), 0))
                .select_from(UserAchievement)
                .join(Achievement, Achievement.id == UserAchievement.achievement_id)
                .where(UserAchievement.user_id == user_id)
                .scalar_subquery()
            )
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(total_points=points_sum)
                .execution_options(synchronize_session=False)
            )
            total = await session.execute(select(User.total_points).where(User.id == user_id))
            return total.scalar() or 0

    async def list_user_achievements(self, user_id: str) -> List[Tuple[Achievement, Optional[datetime]]]:
        """Every catalog row paired with the user's earned_at (None when locked)."""
        async with self._transaction("list user achievements") as session:
            result = await session.execute(
                select(Achievement, UserAchievement.earned_at)
                .outerjoin(
                    UserAchievement,
                    (UserAchievement.achievement_id == Achievement.id) & (UserAchievement.user_id == user_id),
                )
                .order_by(Achievement.points, Achievement.id)
            )
            return [(row[0], row[1]) for row in result.all()]

    async def points_leaderboard(self, limit: int) -> List[dict]:
        async with self._transaction("load achievement leaderboard") as session:
            achievement_count = func.count(UserAchievement.id).label("achievement_count")
            result = await session.execute(
                select(User.id, User.display_name, User.total_points, achievement_count)
                .outerjoin(UserAchievement, UserAchievement.user_id == User.id)
                .where(User.total_points > 0)
                .group_by(User.id, User.display_name, User.total_points)
                .order_by(User.total_points.desc(), achievement_count.desc(), User.id)
                .limit(limit)
            )
            return [dict(row._mapping) for row in result]
