"""
Capability Estimator

Projects what an athlete can currently do from their fitness score:
equivalent race times at longer distances, safe training volumes, and
whether each race distance is realistic right now.

Race projection uses a Riegel-style power law anchored on the 5k time
equivalent to the score. The fatigue exponent grows as fitness falls,
so less-trained athletes slow down more over distance:

    T(d) = T5k · (d / 5000)^k,   k = 1.06 + 0.004 · max(0, 45 - score)

A distance is feasible when its projected race pace is no more than
MAX_PACE_DEGRADATION times the projected 5k pace.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from core.exceptions import validation_error
from services.pace_calculator import format_duration, vdot_for_race

logger = logging.getLogger(__name__)

RACE_DISTANCES_M: Dict[str, float] = {
    "5k": 5000.0,
    "10k": 10000.0,
    "half_marathon": 21097.5,
    "marathon": 42195.0,
}

MAX_PACE_DEGRADATION = 1.25

BASE_FATIGUE_EXPONENT = 1.06
FATIGUE_PIVOT_SCORE = 45.0
FATIGUE_SLOPE = 0.004

# Bounds for the 5k-time search (seconds)
_MIN_5K_SECONDS = 300.0
_MAX_5K_SECONDS = 6 * 3600.0

# Fitness level bands (lower bound inclusive)
FITNESS_LEVELS = (
    (55.0, "advanced"),
    (45.0, "intermediate"),
    (35.0, "beginner_intermediate"),
)

# Weekly score gain model for plan projections
BASE_IMPROVEMENT_PER_WEEK = 0.15
MAX_IMPROVEMENT_RATIO = 0.25
IMPROVEMENT_GOAL_MULTIPLIERS = {
    "start_running": 1.2,
    "run_5k": 1.0,
    "run_10k": 1.1,
    "half_marathon": 1.2,
    "marathon": 1.3,
    "improve_time": 1.4,
}
IMPROVEMENT_FREQUENCY_MULTIPLIERS = {1: 0.5, 2: 0.7, 3: 1.0, 4: 1.2, 5: 1.3, 6: 1.4}
IMPROVEMENT_LEVEL_MULTIPLIERS = {
    "advanced": 0.6,
    "intermediate": 0.8,
    "beginner_intermediate": 1.0,
    "beginner": 1.3,
}


@dataclass(frozen=True)
class RaceProjection:
    seconds: int
    formatted: str


@dataclass(frozen=True)
class EstimatedCapabilities:
    fitness_score: float
    current_max_distance_km: float
    safe_weekly_volume_km: float
    long_run_start_km: float
    long_run_peak_km: float
    estimated_times: Dict[str, RaceProjection]
    can_handle: Dict[str, bool]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EstimatedCapabilities":
        values = dict(data)
        values["estimated_times"] = {
            name: RaceProjection(**projection)
            for name, projection in data["estimated_times"].items()
        }
        return cls(**values)


# ---------------------------------------------------------------------------
# Race projections
# ---------------------------------------------------------------------------


def equivalent_5k_seconds(fitness_score: float) -> float:
    """5k time whose VDOT equals the score (bisection, 80 iterations)."""
    low, high = _MIN_5K_SECONDS, _MAX_5K_SECONDS
    if vdot_for_race(5000.0, low) <= fitness_score:
        return low
    if vdot_for_race(5000.0, high) >= fitness_score:
        return high
    for _ in range(80):
        mid = (low + high) / 2.0
        if vdot_for_race(5000.0, mid) > fitness_score:
            low = mid
        else:
            high = mid
    return (low + high) / 2.0


def fatigue_exponent(fitness_score: float) -> float:
    return BASE_FATIGUE_EXPONENT + FATIGUE_SLOPE * max(0.0, FATIGUE_PIVOT_SCORE - fitness_score)


def project_race_seconds(fitness_score: float, distance_m: float) -> float:
    base = equivalent_5k_seconds(fitness_score)
    return base * (distance_m / 5000.0) ** fatigue_exponent(fitness_score)


def pace_degradation(fitness_score: float, distance_m: float) -> float:
    """Projected race pace at ``distance_m`` relative to 5k race pace."""
    return (distance_m / 5000.0) ** (fatigue_exponent(fitness_score) - 1.0)


# ---------------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------------


class CapabilityEstimator:
    """Stateless. Maps a fitness score to EstimatedCapabilities."""

    def estimate(self, fitness_score: float) -> EstimatedCapabilities:
        if fitness_score is None or fitness_score <= 0:
            raise validation_error("Fitness score must be positive", field="fitness_score")

        current_max = max(5.0, fitness_score * 0.6)
        safe_weekly = current_max * 1.6
        long_start = min(current_max * 0.6, 21.0)
        long_peak = min(max(current_max * 0.9, long_start), 32.0)

        estimated_times = {}
        for name in ("10k", "half_marathon", "marathon"):
            seconds = project_race_seconds(fitness_score, RACE_DISTANCES_M[name])
            estimated_times[name] = RaceProjection(
                seconds=int(round(seconds)),
                formatted=format_duration(seconds),
            )

        can_handle = {
            name: name == "5k" or pace_degradation(fitness_score, distance) <= MAX_PACE_DEGRADATION
            for name, distance in RACE_DISTANCES_M.items()
        }

        return EstimatedCapabilities(
            fitness_score=fitness_score,
            current_max_distance_km=round(current_max, 1),
            safe_weekly_volume_km=round(safe_weekly, 1),
            long_run_start_km=round(long_start, 1),
            long_run_peak_km=round(long_peak, 1),
            estimated_times=estimated_times,
            can_handle=can_handle,
        )


def classify_fitness_level(fitness_score: float) -> str:
    for lower_bound, level in FITNESS_LEVELS:
        if fitness_score >= lower_bound:
            return level
    return "beginner"


def calculate_bmi(height_cm: Optional[float], weight_kg: Optional[float]) -> Optional[float]:
    """
    BMI from height (cm) and weight (kg), rounded to 1 decimal.

    Returns None if either input is missing or non-positive.
    """
    if height_cm is None or weight_kg is None:
        return None
    if height_cm <= 0 or weight_kg <= 0:
        return None
    height_m = height_cm / 100.0
    return round(weight_kg / (height_m ** 2), 1)


def project_fitness_gain(fitness_score: float, goal: str, weeks: int, weekly_frequency: int) -> Dict[str, Any]:
    """
    Expected score after ``weeks`` of training.

    Gain = 0.15/week × goal × frequency × level multipliers, capped at 25%
    of the current score.
    """
    level = classify_fitness_level(fitness_score)
    gain = (
        BASE_IMPROVEMENT_PER_WEEK
        * weeks
        * IMPROVEMENT_GOAL_MULTIPLIERS.get(goal, 1.0)
        * IMPROVEMENT_FREQUENCY_MULTIPLIERS.get(weekly_frequency, 1.0)
        * IMPROVEMENT_LEVEL_MULTIPLIERS[level]
    )
    gain = min(gain, fitness_score * MAX_IMPROVEMENT_RATIO)
    projected = round(fitness_score + gain, 2)
    current_5k = equivalent_5k_seconds(fitness_score)
    projected_5k = equivalent_5k_seconds(projected)
    return {
        "current_fitness_score": fitness_score,
        "projected_fitness_score": projected,
        "fitness_gain": round(gain, 2),
        "current_5k": format_duration(current_5k),
        "projected_5k": format_duration(projected_5k),
        "seconds_saved_5k": int(round(current_5k - projected_5k)),
    }
