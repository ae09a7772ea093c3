"""
Tests for phase progression
"""
import uuid
from types import SimpleNamespace

import pytest

from core.exceptions import EngineError, ErrorKind
from models import ProgressionState
from services.achievement_engine import AchievementEngine
from services.phase_progression import PhaseProgressionEngine, check_advancement

# Meets the Development entry criteria
DEVELOPMENT_READY = {
    "current_level": 3,
    "current_xp": 20,
    "xp_to_next_level": 225,
    "total_xp_earned": 270,
    "total_workouts_completed": 12,
    "total_distance_run": 60.0,
    "longest_run_km": 10.0,
}


@pytest.fixture
def engine(store):
    return PhaseProgressionEngine(store, AchievementEngine(store))


def state(**overrides):
    values = dict(
        current_phase_id=1,
        current_level=1,
        total_xp_earned=0,
        total_workouts_completed=0,
        total_distance_run=0.0,
        current_streak_days=0,
        longest_streak_days=0,
        longest_run_km=0.0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestPhaseCatalog:
    """Test the stored phases"""

    def test_five_ordered_phases(self, engine):
        phases = engine.list_phases()
        assert [p.phase_order for p in phases] == [1, 2, 3, 4, 5]
        assert [p.name for p in phases] == [
            "foundation", "development", "performance", "specialization", "mastery",
        ]
        assert phases[0].advancement_criteria == []


class TestCheckAdvancement:
    """Test the informational advancement check"""

    def test_fresh_progression(self, engine):
        check = check_advancement(state(), engine.list_phases())
        assert check.can_advance is False
        assert check.current_phase["name"] == "foundation"
        assert check.next_phase["name"] == "development"
        assert "Reach level 3 (current: 1)" in check.missing_criteria
        assert len(check.missing_criteria) == 3

    def test_criteria_met(self, engine):
        check = check_advancement(state(**DEVELOPMENT_READY), engine.list_phases())
        assert check.can_advance is True
        assert check.missing_criteria == []

    def test_final_phase(self, engine):
        check = check_advancement(state(current_phase_id=5), engine.list_phases())
        assert check.can_advance is False
        assert check.next_phase is None

    def test_unknown_current_phase(self, engine):
        with pytest.raises(EngineError) as exc:
            check_advancement(state(current_phase_id=42), engine.list_phases())
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_by_athlete(self, engine, test_athlete, make_state):
        make_state(test_athlete.id)
        check = engine.check_advancement(test_athlete.id)
        assert check.next_phase["order"] == 2

    def test_by_athlete_without_progression(self, engine):
        with pytest.raises(EngineError) as exc:
            engine.check_advancement(uuid.uuid4())
        assert exc.value.kind == ErrorKind.NOT_FOUND


class TestPromotion:
    """Test promote_to_next_phase"""

    @pytest.mark.parametrize("target", [None, "", "  "])
    def test_target_required(self, engine, test_athlete, target):
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, target)
        assert exc.value.kind == ErrorKind.VALIDATION
        assert exc.value.message == "newPhaseId is required"

    def test_target_must_be_integer(self, engine, test_athlete):
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, "next")
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_no_progression(self, engine, test_athlete):
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, 2)
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_promotes_one_step(self, store, engine, test_athlete, make_state):
        make_state(test_athlete.id, **DEVELOPMENT_READY)

        result = engine.promote_to_next_phase(test_athlete.id, 2)

        assert result["new_phase"]["order"] == 2
        assert result["previous_phase"]["order"] == 1
        assert result["message"] == "Congratulations! You advanced to the Development phase."
        assert "phase_development" in [a["id"] for a in result["unlocked_achievements"]]

        stored = store.find_by_id(ProgressionState, test_athlete.id)
        assert stored.current_phase_id == 2
        assert stored.version == 2
        # Promotion keeps level and XP
        assert stored.current_level == 3
        assert stored.current_xp == 20

    def test_string_target_accepted(self, engine, test_athlete, make_state):
        make_state(test_athlete.id, **DEVELOPMENT_READY)
        assert engine.promote_to_next_phase(str(test_athlete.id), "2")["new_phase"]["id"] == 2

    def test_cannot_skip_phases(self, engine, test_athlete, make_state):
        make_state(test_athlete.id, **DEVELOPMENT_READY)
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, 3)
        assert exc.value.kind == ErrorKind.DOMAIN
        assert exc.value.code == "PHASE_NOT_REACHABLE"

    def test_criteria_not_met(self, store, engine, test_athlete, make_state):
        make_state(test_athlete.id, current_level=3, total_workouts_completed=4, total_distance_run=20.0)
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, 2)
        assert exc.value.code == "CRITERIA_NOT_MET"
        assert exc.value.details["missing_criteria"] == [
            "Complete 12 workouts (current: 4)",
            "Run 50 km in total (current: 20)",
        ]
        assert store.find_by_id(ProgressionState, test_athlete.id).current_phase_id == 1

    def test_maximum_phase(self, engine, test_athlete, make_state):
        make_state(test_athlete.id, current_phase_id=5)
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, 6)
        assert exc.value.kind == ErrorKind.DOMAIN
        assert exc.value.code == "MAX_PHASE_REACHED"
        assert exc.value.message == "Maximum phase already reached"

    def test_unknown_phase(self, engine, test_athlete, make_state):
        make_state(test_athlete.id)
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, 99)
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_order_never_decreases(self, engine, test_athlete, make_state):
        make_state(test_athlete.id, **DEVELOPMENT_READY)
        engine.promote_to_next_phase(test_athlete.id, 2)
        with pytest.raises(EngineError) as exc:
            engine.promote_to_next_phase(test_athlete.id, 1)
        assert exc.value.code == "PHASE_NOT_REACHABLE"
