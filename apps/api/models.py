from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Float, DateTime, ForeignKey, Text, Index, UniqueConstraint, JSON, Uuid
from core.database import Base
import uuid
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Athlete(Base):
    __tablename__ = "athlete"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    display_name = Column(Text, nullable=True)
    height_cm = Column(Float, nullable=False)
    weight_kg = Column(Float, nullable=False)
    # Personal-record time over the reference distance (5k unless stated)
    reference_distance_m = Column(Float, default=5000.0, nullable=False)
    reference_time_seconds = Column(Float, nullable=False)
    goal = Column(Text, nullable=False)  # start_running | run_5k | run_10k | half_marathon | marathon | improve_time
    weekly_frequency = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("weekly_frequency BETWEEN 1 AND 6", name="ck_athlete_weekly_frequency"),
        CheckConstraint("reference_time_seconds > 0", name="ck_athlete_reference_time_positive"),
    )


class TrainingPlan(Base):
    """
    Generated training plan.

    Rows are immutable apart from workout completion fields inside ``weeks``.
    Forced regeneration inserts a new row; the current plan is the newest one.
    """
    __tablename__ = "training_plan"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    requested_goal = Column(Text, nullable=False)
    goal = Column(Text, nullable=False)  # Effective goal after validation
    weekly_frequency = Column(Integer, nullable=False)
    total_weeks = Column(Integer, nullable=False)
    fitness_score = Column(Float, nullable=False)

    profile_snapshot = Column(JSON, nullable=False)
    paces = Column(JSON, nullable=False)
    capabilities = Column(JSON, nullable=False)
    goal_validation = Column(JSON, nullable=False)
    weeks = Column(JSON, nullable=False)

    # Set on plans produced by adapting an earlier plan
    adapted_from_id = Column(Uuid(as_uuid=True), ForeignKey("training_plan.id"), nullable=True)
    adaptation = Column(JSON, nullable=True)  # {"reasons", "changes", "adapted_at"}

    version = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("ix_training_plan_athlete_created", "athlete_id", "created_at"),
    )


class TrainingPhase(Base):
    __tablename__ = "training_phase"

    id = Column(Integer, primary_key=True)
    name = Column(Text, unique=True, nullable=False)  # foundation, development, ...
    display_name = Column(Text, nullable=False)
    phase_order = Column(Integer, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # Rules to ENTER this phase: [{"metric", "comparator", "threshold", "label"}]
    advancement_criteria = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("phase_order BETWEEN 1 AND 5", name="ck_training_phase_order"),
    )


class Achievement(Base):
    __tablename__ = "achievement"

    id = Column(Text, primary_key=True)  # Stable slug, e.g. "first_run"
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    badge = Column(Text, nullable=False)
    criteria_type = Column(Text, nullable=False)
    criteria_value = Column(Float, nullable=False)
    criteria_metric = Column(Text, nullable=True)  # Only for criteria_type == "special"
    is_active = Column(Boolean, default=True, nullable=False)


class AthleteAchievement(Base):
    __tablename__ = "athlete_achievement"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)
    achievement_id = Column(Text, ForeignKey("achievement.id"), nullable=False)
    earned_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("athlete_id", "achievement_id", name="uq_athlete_achievement"),
    )


class ProgressionState(Base):
    __tablename__ = "progression_state"

    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    current_level = Column(Integer, default=1, nullable=False)
    current_xp = Column(Integer, default=0, nullable=False)
    xp_to_next_level = Column(Integer, default=100, nullable=False)
    total_xp_earned = Column(Integer, default=0, nullable=False)
    last_level_up_at = Column(DateTime(timezone=True), nullable=True)

    total_workouts_completed = Column(Integer, default=0, nullable=False)
    total_distance_run = Column(Float, default=0.0, nullable=False)
    longest_run_km = Column(Float, default=0.0, nullable=False)
    last_workout_at = Column(DateTime(timezone=True), nullable=True)
    current_streak_days = Column(Integer, default=0, nullable=False)
    longest_streak_days = Column(Integer, default=0, nullable=False)

    current_phase_id = Column(Integer, ForeignKey("training_phase.id"), nullable=False)
    phase_started_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Optimistic concurrency token, bumped on every write
    version = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint("current_xp >= 0", name="ck_progression_current_xp"),
        Index("ix_progression_total_xp", "total_xp_earned"),
    )


class WorkoutLog(Base):
    """One applied workout-completion event."""
    __tablename__ = "workout_log"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)
    event_key = Column(Text, nullable=False)
    completed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    workout_type = Column(Text, nullable=False)
    difficulty = Column(Text, nullable=False)
    distance_km = Column(Float, nullable=False)
    duration_minutes = Column(Float, nullable=False)
    base_xp = Column(Integer, nullable=False)
    bonus_xp = Column(Integer, nullable=False)
    total_xp = Column(Integer, nullable=False)
    leveled_up = Column(Boolean, default=False, nullable=False)
    new_level = Column(Integer, nullable=False)

    plan_id = Column(Uuid(as_uuid=True), ForeignKey("training_plan.id"), nullable=True)
    plan_week = Column(Integer, nullable=True)
    plan_workout_index = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("athlete_id", "event_key", name="uq_workout_log_event"),
    )
