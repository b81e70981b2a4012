# skillforge/services/grading.py
from datetime import datetime, timedelta
from typing import Callable, List

from skillforge.gateway import PersistenceGateway
from skillforge.models.entities import utcnow
from skillforge.models.enums import EventType
from skillforge.models.question import Question
from skillforge.services.achievements import AchievementEngine
from skillforge.services.leveling import ProgressEngine, calculate_xp, check_milestones
from skillforge.services.notifications import NotificationHub, announce_progress
from skillforge.services.question_service import QuestionService
from skillforge.utils.config import settings
from skillforge.utils import errors
from skillforge.utils.logger import logger


def calculate_time_limit(question_count: int) -> int:
    """Seconds allowed for an assessment: a per-question budget with a floor."""
    return max(settings.min_time_limit, question_count * settings.seconds_per_question)


class GradingEngine:
    """
    Generates assessments from the question bank and grades submissions,
    feeding the result into progress, achievements and live notifications.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        question_service: QuestionService,
        progress: ProgressEngine,
        achievements: AchievementEngine,
        hub: NotificationHub,
        clock: Callable[[], datetime] = utcnow,
        apply_streak_bonus: bool = settings.apply_streak_bonus,
    ):
        self.gateway = gateway
        self.question_service = question_service
        self.progress = progress
        self.achievements = achievements
        self.hub = hub
        self.clock = clock
        self.apply_streak_bonus = apply_streak_bonus

    async def _require_user(self, user_id: str):
        user = await self.gateway.get_user(user_id)
        if not user:
            raise errors.NotFoundError("User not found", errors.USER_NOT_FOUND)
        return user

    async def generate(self, user_id: str, skill_id: int, level: int, question_count: int = 5) -> dict:
        if not 1 <= level <= settings.max_assessment_level:
            raise errors.ValidationError(
                f"Level must be between 1 and {settings.max_assessment_level}", errors.LEVEL_OUT_OF_RANGE
            )
        if not 1 <= question_count <= settings.max_question_count:
            raise errors.ValidationError(
                f"Question count must be between 1 and {settings.max_question_count}", errors.INVALID_INPUT
            )

        await self._require_user(user_id)
        skill = await self.gateway.get_skill(skill_id)
        if not skill:
            raise errors.NotFoundError("Skill not found", errors.SKILL_NOT_FOUND)

        try:
            questions = self.question_service.build_questions(skill.name, skill.category, level, question_count)
        except LookupError as e:
            logger.error(f"Cannot generate assessment for skill {skill_id}: {e}")
            raise errors.PersistenceError("Failed to generate assessment", errors.GENERATE_FAILED) from e

        time_limit = calculate_time_limit(question_count)
        assessment = await self.gateway.create_assessment(
            user_id=user_id,
            skill_id=skill_id,
            level=level,
            questions=[q.model_dump(mode="json") for q in questions],
            time_limit=time_limit,
            created_at=self.clock(),
        )
        logger.info(f"Generated assessment {assessment.id} for user {user_id}: skill={skill.name}, level={level}, questions={question_count}")

        return {
            "id": assessment.id,
            "skill_id": skill_id,
            "skill_name": skill.name,
            "level": level,
            "questions": [q.public_dict() for q in questions],
            "time_limit": time_limit,
            "created_at": assessment.created_at,
            "expires_at": assessment.created_at + timedelta(seconds=settings.expiry_factor * time_limit),
        }

    async def submit(self, user_id: str, assessment_id: int, answers: List[dict], total_time: float) -> dict:
        if total_time < 0:
            raise errors.ValidationError("Total time must be a non-negative number", errors.INVALID_INPUT)

        assessment = await self.gateway.get_assessment(assessment_id)
        if not assessment:
            raise errors.NotFoundError("Assessment not found", errors.ASSESSMENT_NOT_FOUND)
        await self._require_user(user_id)

        age = (self.clock() - assessment.created_at).total_seconds()
        if age > settings.expiry_factor * assessment.time_limit:
            logger.info(f"Rejected submission for expired assessment {assessment_id} (age {age:.0f}s, limit {assessment.time_limit}s).")
            raise errors.ExpiredError("Assessment has expired")

        stored = [Question(**q) for q in assessment.questions]
        by_id = {q.id: q for q in stored}

        earned_points = 0
        possible_points = 0
        graded = []
        seen = set()
        for answer in answers:
            question = by_id.get(answer.get("question_id"))
            if question is None or question.id in seen:
                continue  # unknown ids do not count; the first answer to a question wins
            seen.add(question.id)
            possible_points += question.points
            is_correct = self.question_service.check_answer(question, answer.get("answer"))
            if is_correct:
                earned_points += question.points
            graded.append({
                "question_id": question.id,
                "correct": is_correct,
                "user_answer": answer.get("answer"),
                "correct_answer": question.correct_answer,
                "explanation": question.explanation
                or f"This question tests {question.type.value} knowledge at level {question.difficulty}.",
            })

        score = earned_points / possible_points if possible_points > 0 else 0.0
        avg_difficulty = sum(q.difficulty for q in stored) / len(stored) if stored else 0

        streak = 0
        if self.apply_streak_bonus:
            current = await self.gateway.get_progress(user_id, assessment.skill_id)
            streak = current.streak if current else 0
        xp_earned = calculate_xp(avg_difficulty, score, total_time, streak, max_time=assessment.time_limit)

        await self.gateway.create_assessment_result(
            user_id=user_id,
            assessment_id=assessment.id,
            skill_id=assessment.skill_id,
            answers=answers,
            score=score,
            points_earned=earned_points,
            points_possible=possible_points,
            time_spent=total_time,
            xp_earned=xp_earned,
            completed_at=self.clock(),
        )

        update = await self.progress.update_progress(
            user_id, assessment.skill_id, xp_earned, streak_maintained=True, score=score
        )
        unlocked = await self.achievements.check_achievements(
            user_id, EventType.ASSESSMENT_COMPLETED.value, {"assessment_id": assessment.id, "score": score}
        )
        milestones = check_milestones(update)

        skill_name = assessment.skill.name if assessment.skill else None
        self.hub.publish(user_id, EventType.ASSESSMENT_COMPLETED, {
            "assessment_id": assessment.id,
            "skill_name": skill_name,
            "score": score,
            "xp_earned": xp_earned,
        })
        announce_progress(self.hub, update, skill_name, milestones, unlocked)

        logger.info(f"Graded assessment {assessment.id} for user {user_id}: score={score:.2f}, xp={xp_earned}, unlocked={[a.id for a in unlocked]}")
        return {
            "score": score,
            "points_earned": earned_points,
            "points_possible": possible_points,
            "questions": graded,
            "xp_earned": xp_earned,
            "level_up": update.level_up,
            "progress": update.to_dict(),
            "milestones": milestones,
            "achievements_unlocked": [a.to_dict() for a in unlocked],
        }

    async def history(self, user_id: str, limit: int = 20) -> List[dict]:
        rows = await self.gateway.get_assessment_history(user_id, limit)
        return [
            {
                "id": row.id,
                "assessment_id": row.assessment_id,
                "skill_id": row.skill_id,
                "skill_name": row.skill.name if row.skill else None,
                "score": row.score,
                "points_earned": row.points_earned,
                "points_possible": row.points_possible,
                "xp_earned": row.xp_earned,
                "time_spent": row.time_spent,
                "completed_at": row.completed_at,
            }
            for row in rows
        ]
