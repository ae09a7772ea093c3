"""
Tests for goal validation
"""
import pytest

from core.exceptions import EngineError, ErrorKind
from services.capability_estimator import CapabilityEstimator
from services.goal_validator import GOALS, GoalValidator, best_fit_goal


def validate(goal, score):
    return GoalValidator().validate(goal, CapabilityEstimator().estimate(score))


class TestGoalValidator:
    """Test realism, downgrade and plan length decisions"""

    def test_realistic_marathon(self):
        result = validate("marathon", 42.27)
        assert result.is_realistic is True
        assert result.adjusted_goal == "marathon"
        assert result.warning is None
        assert result.recommended_weeks == 16
        # Best fit for 42.27 is the 10k
        assert result.is_ideal is False

    def test_unrealistic_marathon_downgrades_to_half(self):
        result = validate("marathon", 25.0)
        assert result.is_realistic is False
        assert result.adjusted_goal == "half_marathon"
        assert result.warning
        assert "marathon" in result.warning
        assert result.recommended_weeks == 20

    def test_downgrade_skips_unreachable_rungs(self):
        result = validate("marathon", 20.0)
        assert result.adjusted_goal == "run_10k"

    def test_ideal_goal(self):
        result = validate("run_10k", 42.0)
        assert result.is_realistic is True
        assert result.is_ideal is True

    def test_start_running_always_realistic(self):
        result = validate("start_running", 12.0)
        assert result.is_realistic is True
        assert result.adjusted_goal == "start_running"

    @pytest.mark.parametrize("score,ideal", [(30.0, False), (40.0, True)])
    def test_improve_time(self, score, ideal):
        result = validate("improve_time", score)
        assert result.is_realistic is True
        assert result.is_ideal is ideal

    def test_realistic_never_has_warning(self):
        for goal in GOALS:
            result = validate(goal, 60.0)
            assert result.is_realistic
            assert result.warning is None
            assert result.adjusted_goal == goal

    def test_unknown_goal(self):
        with pytest.raises(EngineError) as exc:
            validate("ultra", 45.0)
        assert exc.value.kind == ErrorKind.VALIDATION
        assert exc.value.details["field"] == "goal"

    def test_deterministic(self):
        assert validate("half_marathon", 33.3) == validate("half_marathon", 33.3)


@pytest.mark.parametrize("score,goal", [
    (25.0, "start_running"),
    (35.0, "run_5k"),
    (42.0, "run_10k"),
    (50.0, "half_marathon"),
    (58.0, "marathon"),
])
def test_best_fit_goal(score, goal):
    assert best_fit_goal(score) == goal
