"""
Pace Calculator - fitness score and training zones from a reference race.

Fitness score is VDOT from the Daniels-Gilbert equations:

    VO2(v)   = -4.60 + 0.182258·v + 0.000104·v²          (v in m/min)
    %max(t)  = 0.8 + 0.1894393·e^(-0.012778·t) + 0.2989558·e^(-0.1932605·t)
    VDOT     = VO2(v) / %max(t)                          (t in minutes)

Zone paces are multiples of the reference pace, the pace that costs
exactly 100% of VDOT. Everything here is pure: the same input always
gives the same score and byte-identical pace strings.
"""
import math
import re
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, Union

from core.exceptions import validation_error

REFERENCE_DISTANCE_M = 5000.0

# Supported reference pace band (seconds per km)
MIN_REFERENCE_PACE_S = 140.0   # 2:20/km
MAX_REFERENCE_PACE_S = 1200.0  # 20:00/km

# Multiplier on the reference pace; larger is slower
ZONE_PACE_FACTORS: Dict[str, float] = {
    "interval": 1.03,
    "tempo": 1.13,
    "easy": 1.32,
    "long": 1.36,
    "recovery": 1.45,
}

ZONES = tuple(ZONE_PACE_FACTORS)

_TIME_PATTERN = re.compile(r"^\s*(?:(\d+):)?(\d+):(\d{2}(?:\.\d+)?)\s*$")

TimeInput = Union[int, float, str, timedelta]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_duration(seconds: float) -> str:
    """Format seconds as M:SS, or H:MM:SS from one hour up."""
    total = round_half_up(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_pace(seconds_per_km: float) -> str:
    return f"{format_duration(seconds_per_km)}/km"


def parse_time(value: TimeInput) -> float:
    """
    Parse a race time into seconds.

    Accepts a number of seconds, a timedelta, or "MM:SS" / "H:MM:SS".

    Raises:
        EngineError(VALIDATION) for non-positive or unparseable input
    """
    if isinstance(value, bool):
        raise validation_error(f"Unparseable time: {value!r}", field="reference_time")

    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        match = _TIME_PATTERN.match(stripped)
        if match:
            hours, minutes, secs = match.groups()
            seconds = int(hours or 0) * 3600 + int(minutes) * 60 + float(secs)
        else:
            try:
                seconds = float(stripped)
            except ValueError:
                raise validation_error(f"Unparseable time: {value!r}", field="reference_time")
    else:
        raise validation_error(f"Unparseable time: {value!r}", field="reference_time")

    if not math.isfinite(seconds) or seconds <= 0:
        raise validation_error("Reference time must be positive", field="reference_time")
    return seconds


# ---------------------------------------------------------------------------
# Daniels-Gilbert equations
# ---------------------------------------------------------------------------


def oxygen_cost(velocity_m_per_min: float) -> float:
    """VO2 (ml/kg/min) needed to run at the given velocity."""
    v = velocity_m_per_min
    return -4.60 + 0.182258 * v + 0.000104 * v * v


def fraction_of_vo2max(duration_minutes: float) -> float:
    """Fraction of VO2max sustainable for a race of this duration."""
    t = duration_minutes
    return 0.8 + 0.1894393 * math.exp(-0.012778 * t) + 0.2989558 * math.exp(-0.1932605 * t)


def velocity_for_oxygen_cost(vo2: float) -> float:
    """Inverse of oxygen_cost: velocity (m/min) whose cost is ``vo2``."""
    a, b, c = 0.000104, 0.182258, -4.60 - vo2
    return (-b + math.sqrt(b * b - 4 * a * c)) / (2 * a)


def vdot_for_race(distance_m: float, time_seconds: float) -> float:
    minutes = time_seconds / 60.0
    velocity = distance_m / minutes
    return oxygen_cost(velocity) / fraction_of_vo2max(minutes)


def calculate_fitness_score(time: TimeInput, distance_m: float = REFERENCE_DISTANCE_M) -> float:
    """
    Fitness score (VDOT) from a race result.

    Args:
        time: Race time (seconds, timedelta or "MM:SS"/"H:MM:SS")
        distance_m: Race distance in meters (default 5k)

    Returns:
        VDOT rounded to 2 decimals
    """
    seconds = parse_time(time)
    if distance_m <= 0:
        raise validation_error("Reference distance must be positive", field="reference_distance")

    pace = seconds / (distance_m / 1000.0)
    if pace < MIN_REFERENCE_PACE_S or pace > MAX_REFERENCE_PACE_S:
        raise validation_error(
            f"Reference pace {format_pace(pace)} is outside the supported range",
            field="reference_time",
            pace_seconds_per_km=round(pace, 1),
        )

    return round(vdot_for_race(distance_m, seconds), 2)


def reference_pace_seconds(fitness_score: float) -> float:
    """Pace (s/km) that costs 100% of the fitness score."""
    if fitness_score <= 0:
        raise validation_error("Fitness score must be positive", field="fitness_score")
    return 60000.0 / velocity_for_oxygen_cost(fitness_score)


# ---------------------------------------------------------------------------
# Training paces
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ZonePace:
    seconds_per_km: int
    pace: str  # "M:SS/km"


@dataclass(frozen=True)
class TrainingPaces:
    interval: ZonePace
    tempo: ZonePace
    easy: ZonePace
    long: ZonePace
    recovery: ZonePace

    def for_zone(self, zone: str) -> ZonePace:
        if zone not in ZONE_PACE_FACTORS:
            raise validation_error(f"Unknown pace zone: {zone}", field="zone")
        return getattr(self, zone)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingPaces":
        return cls(**{zone: ZonePace(**data[zone]) for zone in ZONES})


def calculate_training_paces(fitness_score: float) -> TrainingPaces:
    """Zone paces for a fitness score; higher score is faster in every zone."""
    reference = reference_pace_seconds(fitness_score)
    zones = {}
    for zone, factor in ZONE_PACE_FACTORS.items():
        seconds = round_half_up(reference * factor)
        zones[zone] = ZonePace(seconds_per_km=seconds, pace=format_pace(seconds))
    return TrainingPaces(**zones)


@dataclass(frozen=True)
class PaceResult:
    fitness_score: float
    reference_pace_seconds: int
    paces: TrainingPaces

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fitness_score": self.fitness_score,
            "reference_pace_seconds": self.reference_pace_seconds,
            "paces": self.paces.to_dict(),
        }


class PaceCalculator:
    """Stateless. Converts a reference race into a fitness score and zone paces."""

    def calculate(self, reference_time: TimeInput, distance_m: float = REFERENCE_DISTANCE_M) -> PaceResult:
        score = calculate_fitness_score(reference_time, distance_m)
        return PaceResult(
            fitness_score=score,
            reference_pace_seconds=round_half_up(reference_pace_seconds(score)),
            paces=calculate_training_paces(score),
        )
