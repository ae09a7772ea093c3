"""
Plan Generator - week-by-week workout schedule

Builds the weeks of a training plan from the effective goal, weekly
frequency, zone paces and (optionally) capability bounds.

Volume model:
    week 1 = BASE_VOLUME_KM[goal] × FREQUENCY_VOLUME_FACTOR[f] × fitness factor
    week n = week 1 × (1 + WEEKLY_INCREASE × (n - 1)), reduced on deload weeks

Workout mix comes from a fixed rotation per frequency. Low-frequency
rotations (1-2 runs) never put a long run and an interval session in
the same week.

Pure: no database access, no randomness.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import validation_error
from services.capability_estimator import EstimatedCapabilities
from services.goal_validator import GoalValidation, ensure_goal
from services.pace_calculator import TrainingPaces

logger = logging.getLogger(__name__)

WORKOUT_TYPES = ("easy", "long", "interval", "tempo", "recovery")

BASE_VOLUME_KM: Dict[str, float] = {
    "start_running": 12.0,
    "run_5k": 18.0,
    "run_10k": 25.0,
    "half_marathon": 32.0,
    "marathon": 40.0,
    "improve_time": 24.0,
}

FREQUENCY_VOLUME_FACTOR: Dict[int, float] = {1: 0.6, 2: 0.8, 3: 1.0, 4: 1.1, 5: 1.2, 6: 1.3}

FITNESS_FACTOR_PIVOT = 45.0
FITNESS_FACTOR_BOUNDS = (0.9, 1.1)

WEEKLY_INCREASE = 0.08
MIN_WORKOUT_KM = 2.0

ROTATIONS: Dict[int, Tuple[Tuple[str, ...], ...]] = {
    1: (("easy",), ("long",), ("tempo",)),
    2: (("interval", "easy"), ("tempo", "long"), ("easy", "long")),
    3: (
        ("interval", "easy", "long"),
        ("tempo", "easy", "long"),
        ("interval", "recovery", "long"),
    ),
    4: (
        ("interval", "easy", "long", "recovery"),
        ("tempo", "easy", "long", "recovery"),
    ),
    5: (
        ("easy", "interval", "easy", "long", "recovery"),
        ("easy", "tempo", "easy", "long", "recovery"),
    ),
    6: (
        ("easy", "interval", "recovery", "tempo", "long", "recovery"),
        ("easy", "tempo", "recovery", "interval", "long", "easy"),
    ),
}

TRAINING_DAYS: Dict[int, Tuple[str, ...]] = {
    1: ("saturday",),
    2: ("tuesday", "saturday"),
    3: ("tuesday", "thursday", "saturday"),
    4: ("tuesday", "thursday", "saturday", "sunday"),
    5: ("monday", "tuesday", "thursday", "saturday", "sunday"),
    6: ("monday", "tuesday", "wednesday", "thursday", "saturday", "sunday"),
}

# Relative share of the weekly volume
VOLUME_WEIGHTS: Dict[str, float] = {
    "long": 3.0,
    "easy": 2.0,
    "tempo": 1.6,
    "interval": 1.4,
    "recovery": 1.0,
}

INTERVAL_RECOVERY_MINUTES = 2


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class Workout:
    type: str
    day: str
    order: int
    distance_km: float
    duration_minutes: int
    pace_zone: str
    pace: str
    pace_seconds_per_km: int
    description: str
    interval_count: Optional[int] = None
    interval_duration_minutes: Optional[int] = None
    recovery_minutes: Optional[int] = None
    completed: bool = False
    completed_at: Optional[str] = None
    notes: Optional[str] = None
    # Set by plan adaptation
    intensity_adjustment: float = 1.0
    bonus_challenge: bool = False


@dataclass
class Week:
    week: int
    target_volume_km: float
    is_deload: bool
    workouts: List[Workout] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Volume policy
# ---------------------------------------------------------------------------


def ensure_frequency(weekly_frequency: Any) -> int:
    if isinstance(weekly_frequency, bool) or not isinstance(weekly_frequency, int) \
            or weekly_frequency not in FREQUENCY_VOLUME_FACTOR:
        raise validation_error(
            f"weekly_frequency must be an integer between 1 and 6, got {weekly_frequency!r}",
            field="weekly_frequency",
        )
    return weekly_frequency


def fitness_factor(fitness_score: float) -> float:
    low, high = FITNESS_FACTOR_BOUNDS
    return min(high, max(low, fitness_score / FITNESS_FACTOR_PIVOT))


def first_week_volume(goal: str, weekly_frequency: int, fitness_score: float) -> float:
    goal = ensure_goal(goal)
    weekly_frequency = ensure_frequency(weekly_frequency)
    volume = BASE_VOLUME_KM[goal] * FREQUENCY_VOLUME_FACTOR[weekly_frequency] * fitness_factor(fitness_score)
    return round(volume, 1)


def is_deload_week(week: int, deload_interval: int) -> bool:
    return deload_interval > 0 and week % deload_interval == 0


def week_volume(base_volume: float, week: int, deload_interval: int, deload_factor: float) -> float:
    volume = base_volume * (1 + WEEKLY_INCREASE * (week - 1))
    if is_deload_week(week, deload_interval):
        volume *= deload_factor
    return round(volume, 1)


def workout_types_for_week(weekly_frequency: int, week: int) -> Tuple[str, ...]:
    rotation = ROTATIONS[weekly_frequency]
    return rotation[(week - 1) % len(rotation)]


def interval_scheme(fitness_score: float, week: int) -> Tuple[int, int]:
    """(repetitions, minutes per repetition)"""
    repetitions = min(4 + (week - 1) // 2, 8)
    if fitness_score < 35:
        rep_minutes = 2
    elif fitness_score < 45:
        rep_minutes = 3
    elif fitness_score < 55:
        rep_minutes = 4
    else:
        rep_minutes = 5
    return repetitions, rep_minutes


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class PlanGenerator:
    """Stateless. Produces the ordered weeks of a plan."""

    def generate(
        self,
        goal_validation: GoalValidation,
        paces: TrainingPaces,
        weekly_frequency: int,
        fitness_score: float,
        capabilities: Optional[EstimatedCapabilities] = None,
        total_weeks: int = 8,
        deload_interval: int = 4,
        deload_factor: float = 0.8,
    ) -> List[Week]:
        goal = ensure_goal(goal_validation.adjusted_goal)
        weekly_frequency = ensure_frequency(weekly_frequency)
        if total_weeks < 1:
            raise validation_error("total_weeks must be at least 1", field="total_weeks")

        base_volume = first_week_volume(goal, weekly_frequency, fitness_score)
        weeks = []
        for week_number in range(1, total_weeks + 1):
            volume = week_volume(base_volume, week_number, deload_interval, deload_factor)
            long_cap = self._long_run_cap(capabilities, week_number, total_weeks)
            types = workout_types_for_week(weekly_frequency, week_number)
            distances = self._split_volume(types, volume, long_cap)
            workouts = [
                self._build_workout(
                    workout_type, day, order, distance, paces, fitness_score, week_number
                )
                for order, (workout_type, day, distance) in enumerate(
                    zip(types, TRAINING_DAYS[weekly_frequency], distances), start=1
                )
            ]
            weeks.append(Week(
                week=week_number,
                target_volume_km=volume,
                is_deload=is_deload_week(week_number, deload_interval),
                workouts=workouts,
            ))

        logger.debug(
            f"Generated {total_weeks} weeks for goal={goal} frequency={weekly_frequency} "
            f"base_volume={base_volume}km"
        )
        return weeks

    def _long_run_cap(
        self,
        capabilities: Optional[EstimatedCapabilities],
        week_number: int,
        total_weeks: int,
    ) -> Optional[float]:
        """Linear ramp from long_run_start_km (week 1) to long_run_peak_km (last week)."""
        if capabilities is None:
            return None
        start = capabilities.long_run_start_km
        peak = capabilities.long_run_peak_km
        if total_weeks == 1:
            return peak
        return start + (peak - start) * (week_number - 1) / (total_weeks - 1)

    def _split_volume(self, types: Tuple[str, ...], volume: float, long_cap: Optional[float]) -> List[float]:
        total_weight = sum(VOLUME_WEIGHTS[t] for t in types)
        shares = [volume * VOLUME_WEIGHTS[t] / total_weight for t in types]

        if long_cap is not None and "long" in types:
            index = types.index("long")
            excess = shares[index] - long_cap
            others = [i for i, t in enumerate(types) if t != "long"]
            if excess > 0:
                shares[index] = long_cap
                if others:
                    other_weight = sum(VOLUME_WEIGHTS[types[i]] for i in others)
                    for i in others:
                        shares[i] += excess * VOLUME_WEIGHTS[types[i]] / other_weight

        return [round(max(MIN_WORKOUT_KM, share), 1) for share in shares]

    def _build_workout(
        self,
        workout_type: str,
        day: str,
        order: int,
        distance_km: float,
        paces: TrainingPaces,
        fitness_score: float,
        week_number: int,
    ) -> Workout:
        zone = paces.for_zone(workout_type)
        workout = Workout(
            type=workout_type,
            day=day,
            order=order,
            distance_km=distance_km,
            duration_minutes=int(round(distance_km * zone.seconds_per_km / 60)),
            pace_zone=workout_type,
            pace=zone.pace,
            pace_seconds_per_km=zone.seconds_per_km,
            description="",
        )

        if workout_type == "interval":
            repetitions, rep_minutes = interval_scheme(fitness_score, week_number)
            # Session mixes interval reps with easy running
            session_pace = (zone.seconds_per_km + paces.easy.seconds_per_km) / 2
            workout.duration_minutes = int(round(distance_km * session_pace / 60))
            workout.interval_count = repetitions
            workout.interval_duration_minutes = rep_minutes
            workout.recovery_minutes = INTERVAL_RECOVERY_MINUTES
            workout.description = (
                f"{distance_km} km session: warm up easy, {repetitions} x {rep_minutes} min "
                f"at {zone.pace} with {INTERVAL_RECOVERY_MINUTES} min jog recovery, cool down easy"
            )
        elif workout_type == "tempo":
            workout.description = f"{distance_km} km at steady tempo effort ({zone.pace})"
        elif workout_type == "long":
            workout.description = f"{distance_km} km long run at a relaxed pace ({zone.pace})"
        elif workout_type == "recovery":
            workout.description = f"{distance_km} km very easy recovery run ({zone.pace})"
        else:
            workout.description = f"{distance_km} km easy run at conversational pace ({zone.pace})"

        return workout
