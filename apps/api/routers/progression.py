"""
Progression API Router

XP, levels, phases and achievements.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from routers.deps import get_orchestrator, get_phase_engine
from schemas import AdvancePhaseRequest, WorkoutCompletionRequest
from services.phase_progression import PhaseProgressionEngine, phase_to_dict
from services.progression_orchestrator import ProgressionOrchestrator

router = APIRouter(prefix="/v1/progression", tags=["Progression"])


# Static paths first so they are not captured by /{athlete_id}
@router.get("/phases")
def list_phases(engine: PhaseProgressionEngine = Depends(get_phase_engine)):
    return [phase_to_dict(phase) for phase in engine.list_phases()]


@router.post("/workouts")
def complete_workout(
    request: WorkoutCompletionRequest,
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
):
    """Record a completed workout and award XP/achievements."""
    payload = request.model_dump(exclude_none=True)
    user_id = payload.pop("userId", None)
    return orchestrator.complete_workout(user_id, payload)


@router.get("/{athlete_id}")
def get_progress(athlete_id: UUID, orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_user_progression_stats(athlete_id)


@router.get("/{athlete_id}/gamified")
def get_gamified_stats(athlete_id: UUID, orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_gamified_stats(athlete_id)


@router.post("/{athlete_id}/advance-phase")
def advance_phase(
    athlete_id: UUID,
    request: Optional[AdvancePhaseRequest] = None,
    engine: PhaseProgressionEngine = Depends(get_phase_engine),
):
    return engine.promote_to_next_phase(athlete_id, request.newPhaseId if request else None)
