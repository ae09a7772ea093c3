"""
Static catalogs: the five training phases and the achievement list.

Seeding is idempotent. Rows that already exist are left untouched, so
re-running it at every startup is safe.
"""
import logging
from typing import Any, Dict, List

from core.store import Store
from models import Achievement, TrainingPhase

logger = logging.getLogger(__name__)


def _rule(metric: str, threshold: float, label: str, comparator: str = ">=") -> Dict[str, Any]:
    return {"metric": metric, "comparator": comparator, "threshold": threshold, "label": label}


# Criteria are the requirements to ENTER the phase.
PHASE_CATALOG: List[Dict[str, Any]] = [
    {
        "id": 1,
        "name": "foundation",
        "display_name": "Foundation",
        "phase_order": 1,
        "description": "Build the habit: regular easy running and basic aerobic fitness.",
        "advancement_criteria": [],
    },
    {
        "id": 2,
        "name": "development",
        "display_name": "Development",
        "phase_order": 2,
        "description": "Extend volume and introduce structured quality sessions.",
        "advancement_criteria": [
            _rule("current_level", 3, "Reach level 3"),
            _rule("total_workouts_completed", 12, "Complete 12 workouts"),
            _rule("total_distance_run", 50, "Run 50 km in total"),
        ],
    },
    {
        "id": 3,
        "name": "performance",
        "display_name": "Performance",
        "phase_order": 3,
        "description": "Sharpen speed and threshold with consistent weekly structure.",
        "advancement_criteria": [
            _rule("current_level", 6, "Reach level 6"),
            _rule("total_workouts_completed", 30, "Complete 30 workouts"),
            _rule("total_distance_run", 200, "Run 200 km in total"),
            _rule("longest_streak_days", 7, "Hold a 7-day streak"),
        ],
    },
    {
        "id": 4,
        "name": "specialization",
        "display_name": "Specialization",
        "phase_order": 4,
        "description": "Race-specific preparation for the goal distance.",
        "advancement_criteria": [
            _rule("current_level", 9, "Reach level 9"),
            _rule("total_workouts_completed", 60, "Complete 60 workouts"),
            _rule("total_distance_run", 500, "Run 500 km in total"),
        ],
    },
    {
        "id": 5,
        "name": "mastery",
        "display_name": "Mastery",
        "phase_order": 5,
        "description": "Sustain peak fitness and refine every part of training.",
        "advancement_criteria": [
            _rule("current_level", 12, "Reach level 12"),
            _rule("total_workouts_completed", 100, "Complete 100 workouts"),
            _rule("total_distance_run", 1000, "Run 1000 km in total"),
            _rule("longest_streak_days", 30, "Hold a 30-day streak"),
        ],
    },
]


def _achievement(id, name, description, badge, criteria_type, criteria_value, criteria_metric=None):
    return {
        "id": id,
        "name": name,
        "description": description,
        "badge": badge,
        "criteria_type": criteria_type,
        "criteria_value": criteria_value,
        "criteria_metric": criteria_metric,
    }


ACHIEVEMENT_CATALOG: List[Dict[str, Any]] = [
    _achievement("first_run", "First Steps", "Complete your first workout", "👟", "first_workout", 1),

    _achievement("total_10k", "Getting Going", "Run 10 km in total", "🥉", "distance_milestone", 10),
    _achievement("total_50k", "Half Century", "Run 50 km in total", "🥈", "distance_milestone", 50),
    _achievement("total_100k", "Centurion", "Run 100 km in total", "🥇", "distance_milestone", 100),
    _achievement("total_500k", "Road Warrior", "Run 500 km in total", "🏅", "distance_milestone", 500),
    _achievement("total_1000k", "Thousand Club", "Run 1000 km in total", "🏆", "distance_milestone", 1000),

    _achievement("streak_3", "Warming Up", "Train 3 days in a row", "🔥", "consistency_streak", 3),
    _achievement("streak_7", "Week Strong", "Train 7 days in a row", "📅", "consistency_streak", 7),
    _achievement("streak_30", "Unstoppable", "Train 30 days in a row", "⚡", "consistency_streak", 30),

    _achievement("level_5", "Rising Runner", "Reach level 5", "⭐", "level_milestone", 5),
    _achievement("level_10", "Seasoned Runner", "Reach level 10", "🌟", "level_milestone", 10),
    _achievement("level_20", "Elite Runner", "Reach level 20", "💫", "level_milestone", 20),

    _achievement("phase_development", "Foundation Laid", "Advance to the Development phase", "🧱", "phase_advancement", 2),
    _achievement("phase_performance", "Performance Mode", "Advance to the Performance phase", "🚀", "phase_advancement", 3),
    _achievement("phase_specialization", "Specialist", "Advance to the Specialization phase", "🎯", "phase_advancement", 4),
    _achievement("phase_mastery", "Master Runner", "Advance to the Mastery phase", "👑", "phase_advancement", 5),

    _achievement("single_5k", "5K Finisher", "Run 5 km in a single workout", "🏃", "special", 5, "longest_run_km"),
    _achievement("single_10k", "10K Finisher", "Run 10 km in a single workout", "🏃‍♂️", "special", 10, "longest_run_km"),
    _achievement("single_half", "Half Marathoner", "Run 21.1 km in a single workout", "🎽", "special", 21.1, "longest_run_km"),
    _achievement("single_marathon", "Marathoner", "Run 42.2 km in a single workout", "🏁", "special", 42.2, "longest_run_km"),
    _achievement("workouts_50", "Dedicated", "Complete 50 workouts", "💪", "special", 50, "total_workouts_completed"),
]


def seed_catalog(store: Store) -> Dict[str, int]:
    """Insert any catalog phases and achievements that are not stored yet."""
    inserted = {"phases": 0, "achievements": 0}
    with store.unit_of_work() as uow:
        for phase in PHASE_CATALOG:
            if uow.find_one(TrainingPhase, id=phase["id"]) is None:
                uow.insert(TrainingPhase, dict(phase, is_active=True))
                inserted["phases"] += 1
        for achievement in ACHIEVEMENT_CATALOG:
            if uow.find_one(Achievement, id=achievement["id"]) is None:
                uow.insert(Achievement, dict(achievement, is_active=True))
                inserted["achievements"] += 1

    if inserted["phases"] or inserted["achievements"]:
        logger.info(
            f"Seeded catalog: {inserted['phases']} phases, {inserted['achievements']} achievements"
        )
    return inserted
