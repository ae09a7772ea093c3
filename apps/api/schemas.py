from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from uuid import UUID
from typing import Literal, Optional, Union

from core.exceptions import EngineError
from services.pace_calculator import parse_time

Goal = Literal["start_running", "run_5k", "run_10k", "half_marathon", "marathon", "improve_time"]


class AthleteCreate(BaseModel):
    """Onboarding profile."""
    display_name: Optional[str] = None
    height_cm: float = Field(gt=0, le=260)
    weight_kg: float = Field(gt=0, le=400)
    # Seconds, or "MM:SS" / "H:MM:SS"
    reference_time: Union[float, str]
    reference_distance_m: float = Field(default=5000.0, gt=0)
    goal: Goal
    weekly_frequency: int = Field(ge=1, le=6)

    @field_validator("reference_time")
    @classmethod
    def validate_reference_time(cls, v):
        try:
            return parse_time(v)
        except EngineError as e:
            raise ValueError(e.message)


class AthleteResponse(BaseModel):
    id: UUID
    created_at: datetime
    display_name: Optional[str]
    height_cm: float
    weight_kg: float
    reference_distance_m: float
    reference_time_seconds: float
    goal: str
    weekly_frequency: int

    model_config = ConfigDict(from_attributes=True)


class PlanPreferences(BaseModel):
    """Overrides applied when generating a plan."""
    goal: Optional[Goal] = None
    weekly_frequency: Optional[int] = Field(default=None, ge=1, le=6)
    force: bool = False


class WorkoutCompletionRequest(BaseModel):
    """
    Completion event.

    Required fields are optional here so the engine can report every
    missing one in a single error.
    """
    userId: Optional[str] = None
    distance: Optional[float] = None  # km
    duration: Optional[float] = None  # minutes
    type: Optional[str] = None
    difficulty: Optional[str] = None
    target_distance: Optional[float] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    event_id: Optional[str] = None
    plan_id: Optional[UUID] = None
    week: Optional[int] = None
    workout_index: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class AdvancePhaseRequest(BaseModel):
    newPhaseId: Optional[int] = None
