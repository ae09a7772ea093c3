"""
Achievement Engine

Evaluates the achievement catalog against a progression snapshot and
records newly earned achievements. Earned rows are never rewritten, and
the (athlete_id, achievement_id) unique constraint backs that up at the
database level.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from core.store import Store, UnitOfWork
from models import Achievement, AthleteAchievement
from services.criteria import Rule, progression_snapshot

logger = logging.getLogger(__name__)

CRITERIA_TYPES = (
    "first_workout",
    "distance_milestone",
    "consistency_streak",
    "level_milestone",
    "phase_advancement",
    "special",
)

CRITERIA_METRICS: Dict[str, str] = {
    "first_workout": "total_workouts_completed",
    "distance_milestone": "total_distance_run",
    "consistency_streak": "current_streak_days",
    "level_milestone": "current_level",
    "phase_advancement": "phase_order",
}


def achievement_rule(achievement: Any) -> Rule:
    if achievement.criteria_type == "special":
        metric = achievement.criteria_metric
    else:
        metric = CRITERIA_METRICS[achievement.criteria_type]
    return Rule.from_dict({
        "metric": metric,
        "comparator": ">=",
        "threshold": achievement.criteria_value,
        "label": achievement.description,
    })


def achievement_to_dict(achievement: Any, earned_at: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": achievement.id,
        "name": achievement.name,
        "description": achievement.description,
        "badge": achievement.badge,
        "criteria_type": achievement.criteria_type,
        "criteria_value": achievement.criteria_value,
        "earned": earned_at is not None,
        "earned_at": earned_at.isoformat() if earned_at else None,
    }


def _catalog_order(achievement: Any):
    return (CRITERIA_TYPES.index(achievement.criteria_type), achievement.criteria_value, achievement.id)


class AchievementEngine:
    def __init__(self, store: Store):
        self.store = store

    @contextmanager
    def _scope(self, uow: Optional[UnitOfWork]) -> Iterator[UnitOfWork]:
        if uow is not None:
            yield uow
        else:
            with self.store.unit_of_work() as own:
                yield own

    def catalog(self, uow: Optional[UnitOfWork] = None) -> List[Any]:
        with self._scope(uow) as scope:
            achievements = scope.find_many(Achievement, is_active=True)
        return sorted(achievements, key=_catalog_order)

    def earned(self, athlete_id: Any, uow: Optional[UnitOfWork] = None) -> Dict[str, datetime]:
        with self._scope(uow) as scope:
            rows = scope.find_many(AthleteAchievement, athlete_id=athlete_id)
        return {row.achievement_id: row.earned_at for row in rows}

    def check_and_award_achievements(
        self,
        athlete_id: Any,
        state: Any,
        phase_order: int,
        uow: Optional[UnitOfWork] = None,
    ) -> List[Dict[str, Any]]:
        """
        Award every unearned achievement whose criteria the state meets.

        Returns only the achievements unlocked by this call; already-earned
        ones are skipped without being evaluated.
        """
        snapshot = progression_snapshot(state, phase_order)
        unlocked = []
        with self._scope(uow) as scope:
            earned_ids: Set[str] = set(self.earned(athlete_id, scope))
            for achievement in self.catalog(scope):
                if achievement.id in earned_ids:
                    continue
                if not achievement_rule(achievement).is_met(snapshot):
                    continue
                row = scope.insert(AthleteAchievement, {
                    "athlete_id": athlete_id,
                    "achievement_id": achievement.id,
                    "earned_at": datetime.now(timezone.utc),
                })
                unlocked.append(achievement_to_dict(achievement, row.earned_at))

        if unlocked:
            logger.info(
                f"Athlete {athlete_id} unlocked achievements: "
                f"{', '.join(a['id'] for a in unlocked)}"
            )
        return unlocked

    def list_athlete_achievements(self, athlete_id: Any, uow: Optional[UnitOfWork] = None) -> List[Dict[str, Any]]:
        """Earned achievements, oldest first."""
        with self._scope(uow) as scope:
            earned = self.earned(athlete_id, scope)
            catalog = {a.id: a for a in self.catalog(scope)}
        rows = [
            achievement_to_dict(catalog[achievement_id], earned_at)
            for achievement_id, earned_at in earned.items()
            if achievement_id in catalog
        ]
        return sorted(rows, key=lambda row: (row["earned_at"], row["id"]))


def next_achievements(
    catalog: List[Any],
    earned_ids: Set[str],
    snapshot: Mapping[str, Any],
    limit: int = 3,
) -> List[Dict[str, Any]]:
    """Closest unearned achievements by progress towards their threshold."""
    candidates = []
    for achievement in catalog:
        if achievement.id in earned_ids:
            continue
        rule = achievement_rule(achievement)
        entry = achievement_to_dict(achievement)
        entry["progress_percentage"] = rule.progress(snapshot)
        entry["current_value"] = snapshot[rule.metric]
        candidates.append(entry)
    candidates.sort(key=lambda entry: (-entry["progress_percentage"], entry["id"]))
    return candidates[:limit]
