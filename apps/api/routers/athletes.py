"""
Athlete onboarding endpoints.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, status

from core.store import Store
from routers.deps import get_store
from schemas import AthleteCreate, AthleteResponse
from services.athlete_service import get_athlete, register_athlete

router = APIRouter(prefix="/v1/athletes", tags=["Athletes"])


@router.post("", response_model=AthleteResponse, status_code=status.HTTP_201_CREATED)
def create_athlete(request: AthleteCreate, store: Store = Depends(get_store)):
    """Register an athlete profile."""
    return register_athlete(store, request.model_dump())


@router.get("/{athlete_id}", response_model=AthleteResponse)
def read_athlete(athlete_id: UUID, store: Store = Depends(get_store)):
    return get_athlete(store, athlete_id)
