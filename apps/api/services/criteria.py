"""
Declarative criteria over a progression snapshot.

A rule is ``{"metric", "comparator", "threshold", "label"}``. Phases and
achievements both store their requirements this way, so the evaluation
is a table lookup and the catalogs can change without code changes.
"""
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from core.exceptions import validation_error

COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "==": operator.eq,
    "<=": operator.le,
    "<": operator.lt,
}

METRICS = (
    "current_level",
    "total_xp_earned",
    "total_workouts_completed",
    "total_distance_run",
    "current_streak_days",
    "longest_streak_days",
    "longest_run_km",
    "phase_order",
)


@dataclass(frozen=True)
class Rule:
    metric: str
    comparator: str
    threshold: float
    label: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Rule":
        rule = cls(
            metric=data["metric"],
            comparator=data.get("comparator", ">="),
            threshold=data["threshold"],
            label=data.get("label"),
        )
        if rule.metric not in METRICS:
            raise validation_error(f"Unknown criteria metric: {rule.metric}", field="metric")
        if rule.comparator not in COMPARATORS:
            raise validation_error(f"Unknown comparator: {rule.comparator}", field="comparator")
        return rule

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "comparator": self.comparator,
            "threshold": self.threshold,
            "label": self.label,
        }

    def is_met(self, snapshot: Mapping[str, Any]) -> bool:
        return COMPARATORS[self.comparator](snapshot[self.metric], self.threshold)

    def describe(self, snapshot: Mapping[str, Any]) -> str:
        actual = _format_number(snapshot[self.metric])
        threshold = _format_number(self.threshold)
        label = self.label or f"{self.metric} {self.comparator} {threshold}"
        return f"{label} (current: {actual})"

    def progress(self, snapshot: Mapping[str, Any]) -> float:
        """Share of the threshold reached, 0-100 (only meaningful for >= / >)."""
        if self.threshold <= 0:
            return 100.0
        return round(min(100.0, max(0.0, snapshot[self.metric] / self.threshold * 100)), 1)


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, float):
        return f"{value:.1f}"
    return str(value)


def progression_snapshot(state: Any, phase_order: int) -> Dict[str, Any]:
    """Read the rule metrics off a ProgressionState row (or any object with the same fields)."""
    return {
        "current_level": state.current_level,
        "total_xp_earned": state.total_xp_earned,
        "total_workouts_completed": state.total_workouts_completed,
        "total_distance_run": float(state.total_distance_run or 0.0),
        "current_streak_days": state.current_streak_days or 0,
        "longest_streak_days": state.longest_streak_days or 0,
        "longest_run_km": float(state.longest_run_km or 0.0),
        "phase_order": phase_order,
    }


def parse_rules(raw: Iterable[Mapping[str, Any]]) -> List[Rule]:
    return [Rule.from_dict(item) for item in raw or []]


def unmet(rules: Iterable[Rule], snapshot: Mapping[str, Any]) -> List[Rule]:
    return [rule for rule in rules if not rule.is_met(snapshot)]
