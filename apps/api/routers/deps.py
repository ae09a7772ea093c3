"""
FastAPI dependencies.

The store and cache live on ``app.state`` (built in ``main.create_app``),
so tests can hand the app their own instances.
"""
from fastapi import Depends, Request

from core.cache import ResultCache
from core.store import Store
from services.achievement_engine import AchievementEngine
from services.phase_progression import PhaseProgressionEngine
from services.plan_service import PlanService
from services.progression_orchestrator import ProgressionOrchestrator


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_cache(request: Request) -> ResultCache:
    return request.app.state.cache


def get_plan_service(
    store: Store = Depends(get_store),
    cache: ResultCache = Depends(get_cache),
) -> PlanService:
    return PlanService(store, cache)


def get_phase_engine(store: Store = Depends(get_store)) -> PhaseProgressionEngine:
    return PhaseProgressionEngine(store, AchievementEngine(store))


def get_orchestrator(store: Store = Depends(get_store)) -> ProgressionOrchestrator:
    return ProgressionOrchestrator(store)
