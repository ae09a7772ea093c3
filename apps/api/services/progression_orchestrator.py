"""
Progression Orchestrator

Applies workout-completion events to an athlete's stored progression:

    validate -> XP -> level carry-over -> totals/streak -> plan mark
             -> advancement check (informational) -> achievements -> persist

One event is one unit of work: the state row, the workout log, the plan
mark and any earned achievements commit together or not at all. The
state row is written with a compare-and-swap on its version; a
concurrent writer makes the whole event re-run from a fresh read.

Also serves the read side: progression stats, gamified stats and the
XP ranking.
"""
import copy
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from core.config import settings
from core.exceptions import EngineError, ErrorKind, not_found, validation_error
from core.logging import log_fields
from core.store import Store, UnitOfWork, as_uuid, retry_on_conflict
from models import Athlete, ProgressionState, TrainingPlan, WorkoutLog
from services.achievement_engine import AchievementEngine, next_achievements
from services.criteria import progression_snapshot
from services.phase_progression import PhaseProgressionEngine, check_advancement, find_phase
from services.xp_calculator import apply_xp, calculate_workout_xp, parse_workout_input, xp_to_next_level

logger = logging.getLogger(__name__)

INITIAL_PHASE_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def naive_utc(value: datetime) -> datetime:
    """SQLite drops offsets on write and hands back naive datetimes; store and compare naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise validation_error(f"completed_at is not an ISO timestamp: {value!r}", field="completed_at")


def next_streak(last_workout_at: Optional[datetime], current_streak: int, completed_at: datetime) -> int:
    """
    Consecutive training days including ``completed_at``.

    Same day keeps the streak, the next day extends it, any gap restarts
    it at 1.
    """
    if last_workout_at is None:
        return 1
    gap = (naive_utc(completed_at).date() - naive_utc(last_workout_at).date()).days
    if gap <= 0:
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def rank_entries(entries: Sequence[Tuple[Any, int, datetime]]) -> List[Tuple[Any, int, datetime]]:
    """
    Sort (athlete_id, total_xp, created_at) by XP descending.

    Ties go to the earliest-registered progression, then athlete id.
    """
    return sorted(entries, key=lambda e: (-e[1], naive_utc(e[2]), str(e[0])))


def compute_ranking(athlete_id: Any, entries: Sequence[Tuple[Any, int, datetime]]) -> Dict[str, Any]:
    ranked = rank_entries(entries)
    for index, (entry_id, total_xp, _) in enumerate(ranked):
        if entry_id == athlete_id:
            position = index + 1
            total = len(ranked)
            return {
                "position": position,
                "total_users": total,
                "percentile": round((1 - (position - 1) / total) * 100),
                "total_xp_earned": total_xp,
            }
    raise not_found("ProgressionState", athlete_id)


class ProgressionOrchestrator:
    def __init__(
        self,
        store: Store,
        achievement_engine: Optional[AchievementEngine] = None,
        phase_engine: Optional[PhaseProgressionEngine] = None,
        max_retries: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.achievements = achievement_engine or AchievementEngine(store)
        self.phases = phase_engine or PhaseProgressionEngine(store, self.achievements)
        self.max_retries = settings.PROGRESSION_MAX_RETRIES if max_retries is None else max_retries
        self.clock = clock

    # ------------------------------------------------------------------
    # Workout completion
    # ------------------------------------------------------------------

    def complete_workout(self, athlete_id: Any, workout_input: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Apply one completion event.

        ``workout_input`` carries distance (km), duration (minutes), type and
        optionally difficulty, target_distance, completed_at, notes,
        event_id and a plan reference (plan_id, week, workout_index).
        A repeated event_id (or plan workout) is applied once; repeats
        return the recorded result with ``duplicate`` set.
        """
        workout = parse_workout_input(athlete_id, workout_input)
        athlete_uuid = as_uuid(athlete_id, "userId")
        completed_at = naive_utc(_parse_timestamp(workout_input.get("completed_at")) or self.clock())
        plan_ref = self._plan_reference(workout_input)
        event_key = self._event_key(workout_input, plan_ref)

        self._ensure_state(athlete_uuid)
        return retry_on_conflict(
            lambda: self._apply_completion(athlete_uuid, workout, completed_at, plan_ref, event_key,
                                           workout_input.get("notes")),
            self.max_retries,
            f"workout completion for {athlete_uuid}",
        )

    def _plan_reference(self, workout_input: Mapping[str, Any]) -> Optional[Tuple[uuid.UUID, int, int]]:
        plan_id = workout_input.get("plan_id")
        if plan_id is None:
            return None
        week = workout_input.get("week")
        index = workout_input.get("workout_index")
        if week is None or index is None:
            raise validation_error("week and workout_index are required with plan_id", field="plan_id")
        try:
            return as_uuid(plan_id, "plan_id"), int(week), int(index)
        except (TypeError, ValueError):
            raise validation_error("week and workout_index must be integers", field="plan_id")

    def _event_key(self, workout_input: Mapping[str, Any], plan_ref) -> str:
        if workout_input.get("event_id"):
            return str(workout_input["event_id"])
        if plan_ref is not None:
            plan_id, week, index = plan_ref
            return f"plan:{plan_id}:{week}:{index}"
        return f"adhoc:{uuid.uuid4().hex}"

    def _ensure_state(self, athlete_id: uuid.UUID) -> None:
        """Create the initial progression row on an athlete's first completion."""
        try:
            with self.store.unit_of_work() as uow:
                uow.find_by_id(Athlete, athlete_id)
                if uow.find_one(ProgressionState, athlete_id=athlete_id) is not None:
                    return
                uow.insert(ProgressionState, {
                    "athlete_id": athlete_id,
                    "current_level": 1,
                    "current_xp": 0,
                    "xp_to_next_level": xp_to_next_level(1),
                    "total_xp_earned": 0,
                    "total_workouts_completed": 0,
                    "total_distance_run": 0.0,
                    "current_phase_id": INITIAL_PHASE_ID,
                    "phase_started_at": naive_utc(self.clock()),
                    "version": 1,
                })
            logger.info(f"Initialized progression for athlete {athlete_id}")
        except EngineError as e:
            # A concurrent first completion may have created the row first
            if e.kind != ErrorKind.VALIDATION or self.store.find_one(ProgressionState, athlete_id=athlete_id) is None:
                raise

    def _apply_completion(self, athlete_id, workout, completed_at, plan_ref, event_key, notes) -> Dict[str, Any]:
        with self.store.unit_of_work() as uow:
            state = uow.find_one(ProgressionState, athlete_id=athlete_id)
            if state is None:
                raise not_found("ProgressionState", athlete_id)
            phases = self.phases.list_phases(uow)

            logged = uow.find_one(WorkoutLog, athlete_id=athlete_id, event_key=event_key)
            if logged is not None:
                return self._duplicate_result(logged, state, phases)

            plan = None
            if plan_ref is not None:
                plan, planned = self._find_plan_workout(uow, athlete_id, plan_ref)
                if workout.target_distance_km is None:
                    workout = replace(workout, target_distance_km=planned["distance_km"])

            streak = next_streak(state.last_workout_at, state.current_streak_days, completed_at)
            xp = calculate_workout_xp(workout, streak_days=streak, longest_run_km=state.longest_run_km)
            level = apply_xp(state.current_level, state.current_xp, xp.total_xp, state.xp_to_next_level)

            last_workout_at = completed_at
            if state.last_workout_at is not None and naive_utc(state.last_workout_at) > naive_utc(completed_at):
                last_workout_at = state.last_workout_at

            patch = {
                "current_level": level.level,
                "current_xp": level.current_xp,
                "xp_to_next_level": level.xp_to_next_level,
                "total_xp_earned": state.total_xp_earned + xp.total_xp,
                "total_workouts_completed": state.total_workouts_completed + 1,
                "total_distance_run": round(state.total_distance_run + workout.distance_km, 2),
                "longest_run_km": max(state.longest_run_km or 0.0, workout.distance_km),
                "current_streak_days": streak,
                "longest_streak_days": max(state.longest_streak_days or 0, streak),
                "last_workout_at": last_workout_at,
            }
            if level.leveled_up:
                patch["last_level_up_at"] = completed_at

            updated = uow.update(ProgressionState, athlete_id, patch, expected_version=state.version)

            if plan is not None:
                self._mark_plan_workout(uow, plan, plan_ref, completed_at, notes)

            uow.insert(WorkoutLog, {
                "athlete_id": athlete_id,
                "event_key": event_key,
                "completed_at": completed_at,
                "workout_type": workout.workout_type,
                "difficulty": workout.difficulty,
                "distance_km": workout.distance_km,
                "duration_minutes": workout.duration_minutes,
                "base_xp": xp.base_xp,
                "bonus_xp": xp.bonus_xp,
                "total_xp": xp.total_xp,
                "leveled_up": level.leveled_up,
                "new_level": level.level,
                "plan_id": plan_ref[0] if plan_ref else None,
                "plan_week": plan_ref[1] if plan_ref else None,
                "plan_workout_index": plan_ref[2] if plan_ref else None,
                "notes": notes,
            })

            phase_order = find_phase(phases, updated.current_phase_id).phase_order
            advancement = check_advancement(updated, phases)
            unlocked = self.achievements.check_and_award_achievements(
                athlete_id, updated, phase_order, uow=uow
            )

        if level.leveled_up:
            logger.info(
                f"Athlete {athlete_id} leveled up to {level.level} (+{level.levels_gained})",
                extra=log_fields(athlete_id=athlete_id, level=level.level, event_key=event_key),
            )

        return {
            "xp_earned": xp.to_dict(),
            "leveled_up": level.leveled_up,
            "new_level": level.level if level.leveled_up else None,
            "levels_gained": level.levels_gained,
            "unlocked_achievements": unlocked,
            "phase_advancement": advancement.to_dict(),
            "progress": self._progress(updated),
            "duplicate": False,
        }

    def _duplicate_result(self, logged, state, phases) -> Dict[str, Any]:
        logger.info(f"Ignoring repeated completion event {logged.event_key}")
        return {
            "xp_earned": {
                "base_xp": logged.base_xp,
                "bonus_xp": logged.bonus_xp,
                "total_xp": logged.total_xp,
            },
            "leveled_up": logged.leveled_up,
            "new_level": logged.new_level if logged.leveled_up else None,
            "levels_gained": 0,
            "unlocked_achievements": [],
            "phase_advancement": check_advancement(state, phases).to_dict(),
            "progress": self._progress(state),
            "duplicate": True,
        }

    def _find_plan_workout(self, uow: UnitOfWork, athlete_id, plan_ref):
        plan_id, week_number, index = plan_ref
        plan = uow.find_by_id(TrainingPlan, plan_id)
        if plan.athlete_id != athlete_id:
            raise not_found("TrainingPlan", plan_id)
        week = next((w for w in plan.weeks if w["week"] == week_number), None)
        if week is None or not 1 <= index <= len(week["workouts"]):
            raise not_found("Workout", f"{plan_id} week {week_number} #{index}")
        return plan, week["workouts"][index - 1]

    def _mark_plan_workout(self, uow: UnitOfWork, plan, plan_ref, completed_at: datetime, notes) -> None:
        _, week_number, index = plan_ref
        weeks = copy.deepcopy(plan.weeks)
        week = next(w for w in weeks if w["week"] == week_number)
        workout = week["workouts"][index - 1]
        workout["completed"] = True
        workout["completed_at"] = completed_at.replace(tzinfo=timezone.utc).isoformat()
        if notes:
            workout["notes"] = notes
        uow.update(TrainingPlan, plan.id, {"weeks": weeks}, expected_version=plan.version)

    @staticmethod
    def _progress(state) -> Dict[str, Any]:
        return {
            "current_level": state.current_level,
            "current_xp": state.current_xp,
            "xp_to_next_level": state.xp_to_next_level,
            "total_xp_earned": state.total_xp_earned,
            "total_workouts_completed": state.total_workouts_completed,
            "total_distance_run": state.total_distance_run,
            "current_streak_days": state.current_streak_days,
        }

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_user_progression_stats(self, athlete_id: Any) -> Dict[str, Any]:
        athlete_id = as_uuid(athlete_id, "athlete_id")
        with self.store.unit_of_work() as uow:
            state = uow.find_one(ProgressionState, athlete_id=athlete_id)
            if state is None:
                raise not_found("ProgressionState", athlete_id)
            phases = self.phases.list_phases(uow)
            earned = self.achievements.list_athlete_achievements(athlete_id, uow)
            catalog_size = len(self.achievements.catalog(uow))

        advancement = check_advancement(state, phases)
        return {
            "athlete_id": str(athlete_id),
            "current_level": state.current_level,
            "current_xp": state.current_xp,
            "xp_to_next_level": state.xp_to_next_level,
            "level_progress_percentage": round(state.current_xp / state.xp_to_next_level * 100, 1),
            "total_xp_earned": state.total_xp_earned,
            "total_workouts_completed": state.total_workouts_completed,
            "total_distance_run": state.total_distance_run,
            "longest_run_km": state.longest_run_km,
            "current_streak_days": state.current_streak_days,
            "longest_streak_days": state.longest_streak_days,
            "last_workout_at": state.last_workout_at.isoformat() if state.last_workout_at else None,
            "current_phase": advancement.current_phase,
            "phase_started_at": state.phase_started_at.isoformat() if state.phase_started_at else None,
            "phase_advancement": advancement.to_dict(),
            "achievements": earned,
            "achievements_earned": len(earned),
            "achievements_total": catalog_size,
        }

    def get_ranking(self, athlete_id: Any) -> Dict[str, Any]:
        athlete_id = as_uuid(athlete_id, "athlete_id")
        states = self.store.list_all(ProgressionState)
        entries = [(s.athlete_id, s.total_xp_earned, s.created_at) for s in states]
        return compute_ranking(athlete_id, entries)

    def get_gamified_stats(self, athlete_id: Any) -> Dict[str, Any]:
        athlete_id = as_uuid(athlete_id, "athlete_id")
        with self.store.unit_of_work() as uow:
            state = uow.find_one(ProgressionState, athlete_id=athlete_id)
            if state is None:
                raise not_found("ProgressionState", athlete_id)
            phases = self.phases.list_phases(uow)
            catalog = self.achievements.catalog(uow)
            earned = self.achievements.earned(athlete_id, uow)
            logs = uow.find_many(WorkoutLog, athlete_id=athlete_id)
        ranking = self.get_ranking(athlete_id)

        advancement = check_advancement(state, phases)
        phase_order = advancement.current_phase["order"]
        snapshot = progression_snapshot(state, phase_order)

        week_start = naive_utc(self.clock()) - timedelta(days=7)
        recent = [log for log in logs if naive_utc(log.completed_at) >= week_start]

        next_phase = None
        if advancement.next_phase is not None:
            next_phase = dict(
                advancement.next_phase,
                can_advance=advancement.can_advance,
                missing_criteria=advancement.missing_criteria,
            )

        return {
            "level": state.current_level,
            "xp": state.current_xp,
            "xp_to_next_level": state.xp_to_next_level,
            "total_xp": state.total_xp_earned,
            "current_phase": advancement.current_phase,
            "streak": {
                "current_days": state.current_streak_days,
                "longest_days": state.longest_streak_days,
            },
            "ranking": ranking,
            "achievements": {"earned": len(earned), "total": len(catalog)},
            "weekly": {
                "workouts": len(recent),
                "distance_km": round(sum(log.distance_km for log in recent), 2),
                "xp": sum(log.total_xp for log in recent),
            },
            "next_milestones": {
                "next_level": {
                    "level": state.current_level + 1,
                    "xp_needed": state.xp_to_next_level - state.current_xp,
                    "progress_percentage": round(state.current_xp / state.xp_to_next_level * 100, 1),
                },
                "next_phase": next_phase,
                "next_achievements": next_achievements(catalog, set(earned), snapshot),
            },
        }
