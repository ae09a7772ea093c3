"""
Training plan endpoints.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status

from routers.deps import get_plan_service
from schemas import PlanPreferences
from services.plan_service import PlanService

router = APIRouter(prefix="/v1/plans", tags=["Training Plans"])


@router.post("/{athlete_id}", status_code=status.HTTP_201_CREATED)
def generate_plan(
    athlete_id: UUID,
    preferences: Optional[PlanPreferences] = None,
    service: PlanService = Depends(get_plan_service),
):
    """
    Generate a training plan.

    Returns 409 if a plan already exists, unless ``force`` is set.
    """
    prefs = preferences.model_dump(exclude_none=True) if preferences else {}
    return service.generate_plan(athlete_id, prefs)


@router.get("/{athlete_id}")
def get_current_plan(athlete_id: UUID, service: PlanService = Depends(get_plan_service)):
    return service.get_current_plan(athlete_id)


@router.post("/{athlete_id}/adapt")
def adapt_plan(athlete_id: UUID, service: PlanService = Depends(get_plan_service)):
    """
    Adapt the current plan to recent progression.

    Stores a new plan when any adjustment applies; ``adapted`` tells which.
    """
    return service.adapt_plan(athlete_id)
