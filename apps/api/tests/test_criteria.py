"""
Tests for declarative criteria rules
"""
from types import SimpleNamespace

import pytest

from core.exceptions import EngineError
from services.criteria import Rule, parse_rules, progression_snapshot, unmet


@pytest.fixture
def snapshot():
    state = SimpleNamespace(
        current_level=2,
        total_xp_earned=180,
        total_workouts_completed=8,
        total_distance_run=37.5,
        current_streak_days=2,
        longest_streak_days=4,
        longest_run_km=9.0,
    )
    return progression_snapshot(state, 1)


class TestRule:
    """Test rule parsing and evaluation"""

    @pytest.mark.parametrize("comparator,threshold,expected", [
        (">=", 2, True),
        (">", 2, False),
        ("==", 2, True),
        ("<=", 1, False),
        ("<", 3, True),
    ])
    def test_comparators(self, snapshot, comparator, threshold, expected):
        rule = Rule.from_dict({"metric": "current_level", "comparator": comparator, "threshold": threshold})
        assert rule.is_met(snapshot) is expected

    def test_default_comparator(self):
        assert Rule.from_dict({"metric": "phase_order", "threshold": 1}).comparator == ">="

    def test_unknown_metric(self):
        with pytest.raises(EngineError):
            Rule.from_dict({"metric": "heart_rate", "threshold": 150})

    def test_unknown_comparator(self):
        with pytest.raises(EngineError):
            Rule.from_dict({"metric": "current_level", "comparator": "~", "threshold": 1})

    def test_describe_with_label(self, snapshot):
        rule = Rule.from_dict({"metric": "current_level", "threshold": 3, "label": "Reach level 3"})
        assert rule.describe(snapshot) == "Reach level 3 (current: 2)"

    def test_describe_without_label(self, snapshot):
        rule = Rule.from_dict({"metric": "total_distance_run", "threshold": 50})
        assert rule.describe(snapshot) == "total_distance_run >= 50 (current: 37.5)"

    def test_progress(self, snapshot):
        rule = Rule.from_dict({"metric": "total_distance_run", "threshold": 50})
        assert rule.progress(snapshot) == 75.0
        done = Rule.from_dict({"metric": "longest_streak_days", "threshold": 2})
        assert done.progress(snapshot) == 100.0

    def test_round_trip(self):
        raw = {"metric": "longest_run_km", "comparator": ">", "threshold": 21.1, "label": "Half"}
        assert Rule.from_dict(raw).to_dict() == raw


def test_unmet(snapshot):
    rules = parse_rules([
        {"metric": "current_level", "threshold": 3},
        {"metric": "total_workouts_completed", "threshold": 5},
        {"metric": "longest_run_km", "threshold": 10},
    ])
    assert [rule.metric for rule in unmet(rules, snapshot)] == ["current_level", "longest_run_km"]


def test_parse_rules_empty():
    assert parse_rules(None) == []
