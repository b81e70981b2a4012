# skillforge/models/entities.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    ForeignKey,
    JSON,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone


Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every column in the schema uses this reference frame."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, index=True)
    display_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    # Always SUM(points) over user_achievements, never incremented in place
    total_points = Column(Integer, default=0, nullable=False)

    # Relationships
    progress = relationship("UserProgress", back_populates="user")
    achievements = relationship("UserAchievement", back_populates="user")


class Skill(Base):
    __tablename__ = "skills"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    category = Column(String, nullable=False, default="General")
    difficulty_levels = Column(Integer, nullable=False, default=5)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class UserProgress(Base):
    __tablename__ = "user_progress"
    __table_args__ = (UniqueConstraint("user_id", "skill_id", name="uq_progress_user_skill"),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    skill_id = Column(Integer, ForeignKey("skills.id"), nullable=False, index=True)
    level = Column(Integer, default=1, nullable=False)
    xp = Column(Integer, default=0, nullable=False)
    streak = Column(Integer, default=0, nullable=False)
    assessments_completed = Column(Integer, default=0, nullable=False)
    total_score = Column(Float, default=0.0, nullable=False)  # running average, 0..1
    mastery_level = Column(Integer, default=0, nullable=False)
    last_activity = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="progress")
    skill = relationship("Skill")


class Assessment(Base):
    __tablename__ = "assessments"
    id = Column(Integer, primary_key=True, index=True)
    skill_id = Column(Integer, ForeignKey("skills.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    level = Column(Integer, nullable=False)
    # Full question set including correct answers; never sent to clients as-is
    questions = Column(JSON, nullable=False)
    time_limit = Column(Integer, nullable=False)  # seconds
    created_at = Column(DateTime, default=utcnow)

    skill = relationship("Skill")


class AssessmentResult(Base):
    __tablename__ = "assessment_results"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False)
    skill_id = Column(Integer, ForeignKey("skills.id"), nullable=False)
    answers = Column(JSON, nullable=False)
    score = Column(Float, nullable=False)
    points_earned = Column(Integer, nullable=False)
    points_possible = Column(Integer, nullable=False)
    time_spent = Column(Float, nullable=False)  # seconds
    xp_earned = Column(Integer, default=0, nullable=False)
    completed_at = Column(DateTime, default=utcnow)

    skill = relationship("Skill")


class Achievement(Base):
    __tablename__ = "achievements"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(String, nullable=True)
    points = Column(Integer, nullable=False)
    condition = Column(JSON, nullable=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    achievement_id = Column(String, ForeignKey("achievements.id"), nullable=False)
    earned_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="achievements")
    achievement = relationship("Achievement")
