"""
Plan Service - generating, reading and adapting plans.

Assesses the athlete (paces, capabilities, goal validation, projection),
builds the weeks and stores a new plan. The pure part (assessment and
weeks) is memoized by a fingerprint of profile, goal, frequency and plan
policy; without a cache it is simply recomputed.

Plans are never edited apart from workout completion marks: adapting a
plan stores a new row, and the current plan is always the newest row.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import desc

from core.cache import ResultCache, cache_key, fingerprint
from core.config import Settings, settings
from core.exceptions import conflict_error, not_found
from core.logging import log_fields
from core.store import Store, as_uuid
from models import Athlete, ProgressionState, TrainingPlan
from services.athlete_service import profile_snapshot
from services.capability_estimator import (
    CapabilityEstimator,
    calculate_bmi,
    classify_fitness_level,
    project_fitness_gain,
)
from services.goal_validator import GoalValidator, ensure_goal
from services.pace_calculator import PaceCalculator
from services.plan_adapter import adapt_weeks
from services.plan_generator import PlanGenerator, ensure_frequency
from services.progression_orchestrator import ProgressionOrchestrator, naive_utc

logger = logging.getLogger(__name__)


def plan_to_dict(plan: TrainingPlan) -> Dict[str, Any]:
    return {
        "id": str(plan.id),
        "athlete_id": str(plan.athlete_id),
        "created_at": plan.created_at.isoformat(),
        "requested_goal": plan.requested_goal,
        "goal": plan.goal,
        "weekly_frequency": plan.weekly_frequency,
        "total_weeks": plan.total_weeks,
        "fitness_score": plan.fitness_score,
        "profile": plan.profile_snapshot,
        "paces": plan.paces,
        "capabilities": plan.capabilities,
        "goal_validation": plan.goal_validation,
        "weeks": plan.weeks,
        "adapted_from_id": str(plan.adapted_from_id) if plan.adapted_from_id else None,
        "adaptation": plan.adaptation,
        "version": plan.version,
    }


class PlanService:
    def __init__(
        self,
        store: Store,
        cache: Optional[ResultCache] = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.cache = cache
        self.config = config
        self.clock = clock
        self.pace_calculator = PaceCalculator()
        self.capability_estimator = CapabilityEstimator()
        self.goal_validator = GoalValidator()
        self.plan_generator = PlanGenerator()

    def build_draft(self, profile: Mapping[str, Any], goal: str, weekly_frequency: int) -> Dict[str, Any]:
        """Assessment plus weeks for a profile. Pure apart from the cache."""
        goal = ensure_goal(goal)
        weekly_frequency = ensure_frequency(weekly_frequency)
        policy = {
            "total_weeks": self.config.PLAN_TOTAL_WEEKS,
            "deload_interval": self.config.PLAN_DELOAD_INTERVAL,
            "deload_factor": self.config.PLAN_DELOAD_FACTOR,
            "honor_recommended_weeks": self.config.PLAN_HONOR_RECOMMENDED_WEEKS,
        }
        if self.cache is None:
            return self._compute_draft(profile, goal, weekly_frequency)

        key = cache_key("plan_draft", fingerprint({
            "profile": dict(profile),
            "goal": goal,
            "weekly_frequency": weekly_frequency,
            "policy": policy,
        }))
        return self.cache.get_or_set(
            key,
            lambda: self._compute_draft(profile, goal, weekly_frequency),
            ttl=self.config.CACHE_TTL_ASSESSMENT,
        )

    def _compute_draft(self, profile: Mapping[str, Any], goal: str, weekly_frequency: int) -> Dict[str, Any]:
        pace_result = self.pace_calculator.calculate(
            profile["reference_time_seconds"], profile.get("reference_distance_m", 5000.0)
        )
        score = pace_result.fitness_score
        capabilities = self.capability_estimator.estimate(score)
        validation = self.goal_validator.validate(goal, capabilities)

        total_weeks = self.config.PLAN_TOTAL_WEEKS
        if self.config.PLAN_HONOR_RECOMMENDED_WEEKS:
            total_weeks = validation.recommended_weeks

        weeks = self.plan_generator.generate(
            validation,
            pace_result.paces,
            weekly_frequency,
            score,
            capabilities=capabilities,
            total_weeks=total_weeks,
            deload_interval=self.config.PLAN_DELOAD_INTERVAL,
            deload_factor=self.config.PLAN_DELOAD_FACTOR,
        )

        return {
            "total_weeks": total_weeks,
            "weeks": [week.to_dict() for week in weeks],
            "assessment": {
                "fitness_score": score,
                "fitness_level": classify_fitness_level(score),
                "bmi": calculate_bmi(profile.get("height_cm"), profile.get("weight_kg")),
                "reference_pace_seconds": pace_result.reference_pace_seconds,
                "paces": pace_result.paces.to_dict(),
                "capabilities": capabilities.to_dict(),
                "goal_validation": validation.to_dict(),
                "projection": project_fitness_gain(
                    score, validation.adjusted_goal, total_weeks, weekly_frequency
                ),
            },
        }

    def latest_plan(self, athlete_id) -> Optional[TrainingPlan]:
        with self.store.unit_of_work() as uow:
            plans = uow.find_many(
                TrainingPlan,
                order_by=[desc(TrainingPlan.created_at)],
                athlete_id=athlete_id,
            )
        return plans[0] if plans else None

    def get_current_plan(self, athlete_id: Any) -> Dict[str, Any]:
        athlete_id = as_uuid(athlete_id, "athlete_id")
        plan = self.latest_plan(athlete_id)
        if plan is None:
            raise not_found("TrainingPlan", athlete_id)
        return plan_to_dict(plan)

    def generate_plan(self, athlete_id: Any, preferences: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Generate and store a plan.

        Preferences may override ``goal`` and ``weekly_frequency``. An existing
        plan is only replaced with ``force``; the old row is kept as-is.
        """
        preferences = preferences or {}
        athlete_id = as_uuid(athlete_id, "athlete_id")
        athlete = self.store.find_by_id(Athlete, athlete_id)

        # A supplied override is validated as-is; only None falls back to the profile
        goal = preferences.get("goal")
        goal = ensure_goal(athlete.goal if goal is None else goal)
        weekly_frequency = preferences.get("weekly_frequency")
        weekly_frequency = ensure_frequency(
            athlete.weekly_frequency if weekly_frequency is None else weekly_frequency
        )

        existing = self.latest_plan(athlete_id)
        if existing is not None and not preferences.get("force"):
            raise conflict_error(
                "PLAN_EXISTS",
                "A training plan already exists for this athlete",
                plan_id=str(existing.id),
            )

        profile = profile_snapshot(athlete)
        profile["goal"] = goal
        profile["weekly_frequency"] = weekly_frequency
        draft = self.build_draft(profile, goal, weekly_frequency)
        assessment = draft["assessment"]
        validation = assessment["goal_validation"]

        plan = self.store.insert(TrainingPlan, {
            "athlete_id": athlete_id,
            "requested_goal": goal,
            "goal": validation["adjusted_goal"],
            "weekly_frequency": weekly_frequency,
            "total_weeks": draft["total_weeks"],
            "fitness_score": assessment["fitness_score"],
            "profile_snapshot": profile,
            "paces": assessment["paces"],
            "capabilities": assessment["capabilities"],
            "goal_validation": validation,
            "weeks": draft["weeks"],
        })
        logger.info(
            f"Generated plan {plan.id} for athlete {athlete_id}: goal={plan.goal} "
            f"weeks={plan.total_weeks} score={plan.fitness_score}"
            + (" (regenerated)" if existing is not None else ""),
            extra=log_fields(athlete_id=athlete_id, plan_id=plan.id, goal=plan.goal),
        )

        if validation["is_realistic"]:
            message = "Training plan generated successfully"
        else:
            message = "Training plan generated with an adjusted goal"
        return {
            "plan": plan_to_dict(plan),
            "assessment": assessment,
            "message": message,
        }

    def adapt_plan(self, athlete_id: Any) -> Dict[str, Any]:
        """
        Adapt the current plan to the athlete's recent progression.

        The remaining workouts are adjusted (see ``services.plan_adapter``)
        and stored as a new plan row pointing back at the one it replaces.
        When no rule applies nothing is stored and the current plan is
        returned unchanged. Phase promotion is left to the caller; the
        result only reports whether it is available.
        """
        athlete_id = as_uuid(athlete_id, "athlete_id")
        current = self.latest_plan(athlete_id)
        if current is None:
            raise not_found("TrainingPlan", athlete_id)

        if self.store.find_one(ProgressionState, athlete_id=athlete_id) is None:
            return {
                "plan": plan_to_dict(current),
                "adapted": False,
                "reasons": [],
                "adaptations": [],
                "phase_advancement_available": False,
                "message": "No completed workouts yet",
            }

        stats = ProgressionOrchestrator(self.store, clock=self.clock).get_user_progression_stats(athlete_id)
        now = naive_utc(self.clock())
        adaptation = adapt_weeks(current.weeks, stats, now)
        can_advance = stats["phase_advancement"]["can_advance"]

        if not adaptation.changed:
            return {
                "plan": plan_to_dict(current),
                "adapted": False,
                "reasons": adaptation.reasons,
                "adaptations": [],
                "phase_advancement_available": can_advance,
                "message": "No adaptation needed",
            }

        plan = self.store.insert(TrainingPlan, {
            "athlete_id": athlete_id,
            "requested_goal": current.requested_goal,
            "goal": current.goal,
            "weekly_frequency": current.weekly_frequency,
            "total_weeks": current.total_weeks,
            "fitness_score": current.fitness_score,
            "profile_snapshot": current.profile_snapshot,
            "paces": current.paces,
            "capabilities": current.capabilities,
            "goal_validation": current.goal_validation,
            "weeks": adaptation.weeks,
            "adapted_from_id": current.id,
            "adaptation": {
                "reasons": adaptation.reasons,
                "changes": adaptation.changes,
                "adapted_at": now.replace(tzinfo=timezone.utc).isoformat(),
            },
        })
        logger.info(
            f"Adapted plan {current.id} -> {plan.id} for athlete {athlete_id}: "
            f"{', '.join(adaptation.reasons)} ({len(adaptation.changes)} changes)",
            extra=log_fields(athlete_id=athlete_id, plan_id=plan.id, adapted_from=current.id),
        )

        return {
            "plan": plan_to_dict(plan),
            "adapted": True,
            "reasons": adaptation.reasons,
            "adaptations": adaptation.changes,
            "phase_advancement_available": can_advance,
            "message": "Training plan adapted to recent progress",
        }
