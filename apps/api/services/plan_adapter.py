"""
Plan Adapter - adjusts the remaining workouts of a plan from progression.

Rules, applied to workouts not yet completed:

    streak >= 7 days and >= 10 workouts   -> intensity x 1.05
    streak broken and > 5 workouts        -> intensity x 0.95
    more than 80% of the way to a level   -> bonus challenge

A streak counts as broken when the last workout is more than a day old.
Intensity scales distance and duration together, so the zone pace is kept.

Pure: callers pass the progression stats and the current time.
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from services.pace_calculator import round_half_up
from services.plan_generator import MIN_WORKOUT_KM
from services.progression_orchestrator import naive_utc

INCREASE_FACTOR = 1.05
DECREASE_FACTOR = 0.95

INCREASE_MIN_STREAK_DAYS = 7
INCREASE_MIN_WORKOUTS = 10
DECREASE_MIN_WORKOUTS = 5
BONUS_CHALLENGE_LEVEL_PROGRESS = 80.0

REASON_CONSISTENT = "consistent_training"
REASON_STREAK_BROKEN = "streak_broken"
REASON_NEAR_LEVEL_UP = "near_level_up"


@dataclass
class Adaptation:
    weeks: List[Dict[str, Any]]
    reasons: List[str] = field(default_factory=list)
    changes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def active_streak(stats: Mapping[str, Any], now: datetime) -> int:
    """Current streak, or 0 once a full calendar day has passed without a workout."""
    last = stats.get("last_workout_at")
    if not last:
        return 0
    if isinstance(last, str):
        last = datetime.fromisoformat(last)
    if (naive_utc(now).date() - naive_utc(last).date()).days > 1:
        return 0
    return stats.get("current_streak_days") or 0


def intensity_factor(stats: Mapping[str, Any], now: datetime) -> Optional[float]:
    streak = active_streak(stats, now)
    workouts = stats.get("total_workouts_completed") or 0
    if streak >= INCREASE_MIN_STREAK_DAYS and workouts >= INCREASE_MIN_WORKOUTS:
        return INCREASE_FACTOR
    if streak == 0 and workouts > DECREASE_MIN_WORKOUTS:
        return DECREASE_FACTOR
    return None


def _scale_workout(workout: Dict[str, Any], factor: float) -> None:
    old_distance = workout["distance_km"]
    new_distance = round(max(MIN_WORKOUT_KM, old_distance * factor), 1)
    workout["distance_km"] = new_distance
    workout["duration_minutes"] = round_half_up(workout["duration_minutes"] * factor)
    workout["intensity_adjustment"] = round(workout.get("intensity_adjustment", 1.0) * factor, 4)
    workout["description"] = workout["description"].replace(f"{old_distance} km", f"{new_distance} km", 1)


def adapt_weeks(weeks: List[Dict[str, Any]], stats: Mapping[str, Any], now: datetime) -> Adaptation:
    """
    Apply the adaptation rules to a copy of ``weeks``.

    Returns the new weeks with the reasons that fired and one change entry
    per adjusted workout: {week, workout, type, change[, factor]}.
    """
    factor = intensity_factor(stats, now)
    bonus = (stats.get("level_progress_percentage") or 0) > BONUS_CHALLENGE_LEVEL_PROGRESS

    adaptation = Adaptation(weeks=copy.deepcopy(weeks))
    if factor == INCREASE_FACTOR:
        adaptation.reasons.append(REASON_CONSISTENT)
    elif factor == DECREASE_FACTOR:
        adaptation.reasons.append(REASON_STREAK_BROKEN)
    if bonus:
        adaptation.reasons.append(REASON_NEAR_LEVEL_UP)

    for week in adaptation.weeks:
        for workout in week["workouts"]:
            if workout.get("completed"):
                continue
            if factor is not None:
                _scale_workout(workout, factor)
                adaptation.changes.append({
                    "week": week["week"],
                    "workout": workout["order"],
                    "type": "intensity",
                    "change": "increased" if factor > 1 else "decreased",
                    "factor": factor,
                })
            if bonus and not workout.get("bonus_challenge"):
                workout["bonus_challenge"] = True
                adaptation.changes.append({
                    "week": week["week"],
                    "workout": workout["order"],
                    "type": "bonus_challenge",
                    "change": "added",
                })

    return adaptation
