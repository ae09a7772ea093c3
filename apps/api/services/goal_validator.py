"""
Goal Validator

Checks a requested goal against what the athlete can currently handle,
downgrades it when it is out of reach, and recommends a plan length.
All decisions are table lookups; identical inputs give identical output.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

from core.exceptions import validation_error
from services.capability_estimator import EstimatedCapabilities

logger = logging.getLogger(__name__)

GOALS = (
    "start_running",
    "run_5k",
    "run_10k",
    "half_marathon",
    "marathon",
    "improve_time",
)

# Race distance a goal requires; None means no race requirement
GOAL_REQUIRED_DISTANCE: Dict[str, Optional[str]] = {
    "start_running": None,
    "run_5k": "5k",
    "run_10k": "10k",
    "half_marathon": "half_marathon",
    "marathon": "marathon",
    "improve_time": "5k",
}

# Downgrade ladder, hardest first
GOAL_LADDER = ("marathon", "half_marathon", "run_10k", "run_5k", "start_running")

# Best-fit goal by score band (upper bound exclusive)
BEST_FIT_BANDS: Tuple[Tuple[float, str], ...] = (
    (30.0, "start_running"),
    (38.0, "run_5k"),
    (45.0, "run_10k"),
    (52.0, "half_marathon"),
)
IMPROVE_TIME_MIN_SCORE = 38.0

# (goal, is_realistic) -> weeks
RECOMMENDED_WEEKS: Dict[Tuple[str, bool], int] = {
    ("start_running", True): 8,
    ("start_running", False): 8,
    ("run_5k", True): 8,
    ("run_5k", False): 10,
    ("run_10k", True): 10,
    ("run_10k", False): 12,
    ("half_marathon", True): 12,
    ("half_marathon", False): 16,
    ("marathon", True): 16,
    ("marathon", False): 20,
    ("improve_time", True): 8,
    ("improve_time", False): 10,
}

GOAL_LABELS = {
    "start_running": "start running",
    "run_5k": "run a 5k",
    "run_10k": "run a 10k",
    "half_marathon": "run a half marathon",
    "marathon": "run a marathon",
    "improve_time": "improve race time",
}


@dataclass(frozen=True)
class GoalValidation:
    requested_goal: str
    is_realistic: bool
    is_ideal: bool
    adjusted_goal: str
    warning: Optional[str]
    recommended_weeks: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def ensure_goal(goal: Any) -> str:
    if goal not in GOALS:
        raise validation_error(
            f"Unsupported goal: {goal!r}. Expected one of: {', '.join(GOALS)}",
            field="goal",
        )
    return goal


def best_fit_goal(fitness_score: float) -> str:
    for upper_bound, goal in BEST_FIT_BANDS:
        if fitness_score < upper_bound:
            return goal
    return "marathon"


def _is_attainable(goal: str, capabilities: EstimatedCapabilities) -> bool:
    required = GOAL_REQUIRED_DISTANCE[goal]
    return required is None or capabilities.can_handle.get(required, False)


class GoalValidator:
    """Stateless decision table over (goal, capabilities)."""

    def validate(self, goal: str, capabilities: EstimatedCapabilities) -> GoalValidation:
        goal = ensure_goal(goal)
        score = capabilities.fitness_score

        is_realistic = _is_attainable(goal, capabilities)
        adjusted_goal = goal
        warning = None

        if not is_realistic:
            start = GOAL_LADDER.index(goal) if goal in GOAL_LADDER else GOAL_LADDER.index("run_5k")
            adjusted_goal = next(
                candidate for candidate in GOAL_LADDER[start + 1:]
                if _is_attainable(candidate, capabilities)
            )
            warning = (
                f"Your goal to {GOAL_LABELS[goal]} is not realistic at your current fitness. "
                f"This plan targets: {GOAL_LABELS[adjusted_goal]}."
            )
            logger.info(f"Goal {goal} downgraded to {adjusted_goal} (score {score})")

        if goal == "improve_time":
            is_ideal = is_realistic and score >= IMPROVE_TIME_MIN_SCORE
        else:
            is_ideal = is_realistic and goal == best_fit_goal(score)

        return GoalValidation(
            requested_goal=goal,
            is_realistic=is_realistic,
            is_ideal=is_ideal,
            adjusted_goal=adjusted_goal,
            warning=warning,
            recommended_weeks=RECOMMENDED_WEEKS[(goal, is_realistic)],
        )
