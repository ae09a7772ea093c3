"""
XP Calculator

Experience points for a completed workout and the level curve.

    base  = round(distance_km × rate[type] × duration multiplier), half-up
    bonus = difficulty bonus + target bonus + streak bonus + distance record bonus

Everything is a pure function of its inputs.
"""
import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

from core.exceptions import missing_fields_error, validation_error
from services.pace_calculator import round_half_up

REQUIRED_FIELDS = ("userId", "distance", "duration", "type")

# XP per km by workout type
XP_RATES_PER_KM: Dict[str, float] = {
    "easy_run": 8,
    "recovery_run": 6,
    "long_run": 10,
    "tempo_run": 12,
    "interval_training": 14,
    "hill_repeats": 15,
    "fartlek": 11,
    "race": 16,
    "cross_training": 5,
}

# Plan workout types map onto XP workout types
WORKOUT_TYPE_ALIASES: Dict[str, str] = {
    "easy": "easy_run",
    "long": "long_run",
    "interval": "interval_training",
    "tempo": "tempo_run",
    "recovery": "recovery_run",
}

# (upper bound in minutes, multiplier); last band is open-ended
DURATION_MULTIPLIERS = (
    (45, 1.0),
    (75, 1.1),
    (105, 1.2),
)
LONG_DURATION_MULTIPLIER = 1.3

DIFFICULTY_BONUS: Dict[str, int] = {
    "easy": 0,
    "moderate": 10,
    "hard": 20,
    "very_hard": 30,
}
DEFAULT_DIFFICULTY = "moderate"

TARGET_EXCEEDED_BONUS = 10

# Longer than every earlier run; a first run sets no record
DISTANCE_RECORD_BONUS = 25

# (minimum streak days, bonus), highest first
STREAK_BONUSES = (
    (30, 50),
    (14, 30),
    (7, 15),
    (3, 5),
)

BASE_LEVEL_XP = 100
LEVEL_GROWTH = 1.5


@dataclass(frozen=True)
class WorkoutInput:
    distance_km: float
    duration_minutes: float
    workout_type: str
    difficulty: str = DEFAULT_DIFFICULTY
    target_distance_km: Optional[float] = None


@dataclass(frozen=True)
class XPBreakdown:
    base_xp: int
    bonus_xp: int
    total_xp: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class LevelResult:
    level: int
    current_xp: int
    xp_to_next_level: int
    levels_gained: int

    @property
    def leveled_up(self) -> bool:
        return self.levels_gained > 0


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _positive_number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise validation_error(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise validation_error(f"{field} must be a number", field=field)
    if not math.isfinite(number) or number <= 0:
        raise validation_error(f"{field} must be positive", field=field)
    return number


def normalize_workout_type(workout_type: str) -> str:
    normalized = WORKOUT_TYPE_ALIASES.get(workout_type, workout_type)
    if normalized not in XP_RATES_PER_KM:
        raise validation_error(f"Unknown workout type: {workout_type!r}", field="type")
    return normalized


def parse_workout_input(user_id: Any, payload: Mapping[str, Any]) -> WorkoutInput:
    """
    Validate a completion payload.

    Missing fields are reported together, in the order
    userId, distance, duration, type.
    """
    values = {
        "userId": user_id,
        "distance": payload.get("distance"),
        "duration": payload.get("duration"),
        "type": payload.get("type"),
    }
    missing = [name for name in REQUIRED_FIELDS if _is_blank(values[name])]
    if missing:
        raise missing_fields_error(missing)

    difficulty = payload.get("difficulty") or DEFAULT_DIFFICULTY
    if difficulty not in DIFFICULTY_BONUS:
        raise validation_error(f"Unknown difficulty: {difficulty!r}", field="difficulty")

    target = payload.get("target_distance")
    return WorkoutInput(
        distance_km=_positive_number(values["distance"], "distance"),
        duration_minutes=_positive_number(values["duration"], "duration"),
        workout_type=normalize_workout_type(values["type"]),
        difficulty=difficulty,
        target_distance_km=None if target is None else _positive_number(target, "target_distance"),
    )


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------


def duration_multiplier(duration_minutes: float) -> float:
    for upper_bound, multiplier in DURATION_MULTIPLIERS:
        if duration_minutes < upper_bound:
            return multiplier
    return LONG_DURATION_MULTIPLIER


def streak_bonus(streak_days: int) -> int:
    for minimum, bonus in STREAK_BONUSES:
        if streak_days >= minimum:
            return bonus
    return 0


def calculate_workout_xp(
    workout: WorkoutInput,
    streak_days: int = 0,
    longest_run_km: Optional[float] = None,
) -> XPBreakdown:
    """
    XP for one workout.

    ``longest_run_km`` is the athlete's longest earlier run; beating it
    earns the distance record bonus.
    """
    workout_type = normalize_workout_type(workout.workout_type)
    base = round_half_up(
        workout.distance_km * XP_RATES_PER_KM[workout_type] * duration_multiplier(workout.duration_minutes)
    )

    bonus = DIFFICULTY_BONUS[workout.difficulty]
    if workout.target_distance_km is not None and workout.distance_km > workout.target_distance_km:
        bonus += TARGET_EXCEEDED_BONUS
    bonus += streak_bonus(streak_days)
    if longest_run_km and workout.distance_km > longest_run_km:
        bonus += DISTANCE_RECORD_BONUS

    return XPBreakdown(base_xp=base, bonus_xp=bonus, total_xp=base + bonus)


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------


def xp_to_next_level(level: int) -> int:
    """XP needed to go from ``level`` to ``level + 1``."""
    if level < 1:
        raise validation_error("level must be at least 1", field="level")
    return round_half_up(BASE_LEVEL_XP * LEVEL_GROWTH ** (level - 1))


def apply_xp(level: int, current_xp: int, earned: int, threshold: Optional[int] = None) -> LevelResult:
    """
    Add ``earned`` XP with carry-over.

    While the running total reaches the threshold, the threshold is
    subtracted and the level goes up, so one event can cross several
    levels without losing any XP.
    """
    if earned < 0:
        raise validation_error("earned XP cannot be negative", field="xp")
    threshold = threshold if threshold is not None else xp_to_next_level(level)
    xp = current_xp + earned
    gained = 0
    while xp >= threshold:
        xp -= threshold
        level += 1
        gained += 1
        threshold = xp_to_next_level(level)
    return LevelResult(level=level, current_xp=xp, xp_to_next_level=threshold, levels_gained=gained)
