"""
Athlete onboarding and lookup.
"""
import logging
from typing import Any, Dict, Mapping

from pydantic import ValidationError as PydanticValidationError

from core.exceptions import validation_error
from core.store import Store, as_uuid
from models import Athlete
from schemas import AthleteCreate
from services.pace_calculator import calculate_fitness_score

logger = logging.getLogger(__name__)


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else error.get("msg", "Invalid input")


def register_athlete(store: Store, profile: Mapping[str, Any]) -> Athlete:
    """
    Validate an onboarding profile and store it.

    The reference time must give a usable fitness score, so an athlete can
    always get a plan once registered.
    """
    try:
        data = AthleteCreate.model_validate(dict(profile))
    except PydanticValidationError as e:
        raise validation_error(
            _first_error(e),
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )

    # Raises VALIDATION if the pace is outside the supported band
    calculate_fitness_score(data.reference_time, data.reference_distance_m)

    athlete = store.insert(Athlete, {
        "display_name": data.display_name,
        "height_cm": data.height_cm,
        "weight_kg": data.weight_kg,
        "reference_distance_m": data.reference_distance_m,
        "reference_time_seconds": data.reference_time,
        "goal": data.goal,
        "weekly_frequency": data.weekly_frequency,
    })
    logger.info(f"Registered athlete {athlete.id} (goal={athlete.goal}, frequency={athlete.weekly_frequency})")
    return athlete


def get_athlete(store: Store, athlete_id: Any) -> Athlete:
    return store.find_by_id(Athlete, as_uuid(athlete_id, "athlete_id"))


def profile_snapshot(athlete: Athlete) -> Dict[str, Any]:
    return {
        "height_cm": athlete.height_cm,
        "weight_kg": athlete.weight_kg,
        "reference_distance_m": athlete.reference_distance_m,
        "reference_time_seconds": athlete.reference_time_seconds,
        "goal": athlete.goal,
        "weekly_frequency": athlete.weekly_frequency,
    }
