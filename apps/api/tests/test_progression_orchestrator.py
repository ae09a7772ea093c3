"""
Tests for workout completion, progression stats and ranking
"""
import uuid
from datetime import datetime, timedelta

import pytest

import services.progression_orchestrator as orchestrator_module
from core.exceptions import EngineError, ErrorKind, database_error
from models import ProgressionState, WorkoutLog
from services.achievement_engine import AchievementEngine
from services.plan_service import PlanService
from services.progression_orchestrator import (
    ProgressionOrchestrator,
    compute_ranking,
    next_streak,
)

EASY_5K = {"distance": 5, "duration": 30, "type": "easy_run", "difficulty": "moderate"}


@pytest.fixture
def orchestrator(store):
    return ProgressionOrchestrator(store)


def workout_logs(store, athlete_id):
    with store.unit_of_work() as uow:
        return uow.find_many(WorkoutLog, athlete_id=athlete_id)


class TestCompleteWorkout:
    """Test applying a completion event"""

    def test_first_workout(self, store, orchestrator, test_athlete):
        result = orchestrator.complete_workout(test_athlete.id, EASY_5K)

        assert result["xp_earned"] == {"base_xp": 40, "bonus_xp": 10, "total_xp": 50}
        assert result["leveled_up"] is False
        assert result["new_level"] is None
        assert result["duplicate"] is False
        assert result["progress"]["current_xp"] == 50
        assert result["progress"]["total_xp_earned"] == 50
        assert result["progress"]["total_workouts_completed"] == 1
        assert [a["id"] for a in result["unlocked_achievements"]] == ["first_run", "single_5k"]
        assert result["phase_advancement"]["can_advance"] is False

        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.current_phase_id == 1
        assert state.current_streak_days == 1
        assert len(workout_logs(store, test_athlete.id)) == 1

    def test_carry_over(self, store, orchestrator, test_athlete, make_state):
        """90/100 + 150 XP -> level 2 with 140 XP"""
        make_state(test_athlete.id, current_xp=90, total_xp_earned=90)

        result = orchestrator.complete_workout(test_athlete.id, {
            "distance": 17.5, "duration": 40, "type": "easy_run", "difficulty": "moderate",
        })

        assert result["xp_earned"]["total_xp"] == 150
        assert result["leveled_up"] is True
        assert result["new_level"] == 2
        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.current_level == 2
        assert state.current_xp == 140
        assert state.xp_to_next_level == 150
        assert state.total_xp_earned == 240
        assert state.last_level_up_at is not None

    def test_multiple_levels_in_one_event(self, store, orchestrator, test_athlete):
        result = orchestrator.complete_workout(test_athlete.id, {
            "distance": 75, "duration": 400, "type": "long_run", "difficulty": "hard",
        })

        assert result["xp_earned"]["total_xp"] == 995
        assert result["levels_gained"] == 4
        assert result["new_level"] == 5
        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.current_xp == 182
        assert state.current_xp < state.xp_to_next_level

    def test_missing_fields(self, orchestrator, test_athlete):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(test_athlete.id, {"distance": 5})
        assert exc.value.kind == ErrorKind.VALIDATION
        assert exc.value.message == "Missing required fields: duration, type"

    def test_missing_user(self, orchestrator):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(None, {})
        assert exc.value.message == "Missing required fields: userId, distance, duration, type"

    def test_unknown_athlete(self, orchestrator):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(uuid.uuid4(), EASY_5K)
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_malformed_athlete_id(self, orchestrator):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout("not-a-uuid", EASY_5K)
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_repeated_event_applied_once(self, store, orchestrator, test_athlete):
        payload = dict(EASY_5K, event_id="watch-123")
        first = orchestrator.complete_workout(test_athlete.id, payload)
        second = orchestrator.complete_workout(test_athlete.id, payload)

        assert second["duplicate"] is True
        assert second["xp_earned"] == first["xp_earned"]
        assert second["unlocked_achievements"] == []
        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.total_workouts_completed == 1
        assert state.total_xp_earned == 50

    def test_streak(self, store, orchestrator, test_athlete):
        for day in (1, 2):
            orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, completed_at=f"2026-03-0{day}T07:30:00"))
        result = orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, completed_at="2026-03-03T18:00:00"))

        assert result["progress"]["current_streak_days"] == 3
        # Streak bonus kicks in at 3 days
        assert result["xp_earned"]["total_xp"] == 55
        assert "streak_3" in [a["id"] for a in result["unlocked_achievements"]]

    def test_streak_with_utc_offsets(self, store, test_athlete):
        """Offset timestamps are stored as UTC, so consecutive days still chain"""
        orchestrator = ProgressionOrchestrator(store, clock=lambda: datetime(2026, 3, 3, 12))
        orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, completed_at="2026-03-01T23:30:00-05:00"))
        result = orchestrator.complete_workout(
            test_athlete.id, dict(EASY_5K, completed_at="2026-03-02T23:00:00-05:00")
        )

        assert result["progress"]["current_streak_days"] == 2
        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.last_workout_at == datetime(2026, 3, 3, 4, 0)
        logs = sorted(workout_logs(store, test_athlete.id), key=lambda log: log.completed_at)
        assert [log.completed_at for log in logs] == [datetime(2026, 3, 2, 4, 30), datetime(2026, 3, 3, 4, 0)]
        assert orchestrator.get_gamified_stats(test_athlete.id)["weekly"]["workouts"] == 2

    def test_longest_run_earns_record_bonus(self, store, orchestrator, test_athlete):
        orchestrator.complete_workout(test_athlete.id, EASY_5K)
        result = orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, distance=8, duration=40))

        assert result["xp_earned"] == {"base_xp": 64, "bonus_xp": 35, "total_xp": 99}
        assert store.find_by_id(ProgressionState, test_athlete.id).longest_run_km == 8

    def test_invalid_completed_at(self, orchestrator, test_athlete):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, completed_at="yesterday"))
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_failure_leaves_state_untouched(self, store, orchestrator, test_athlete, monkeypatch):
        """XP, totals, the log and achievements commit together"""
        def fail(*args, **kwargs):
            raise database_error("disk full")

        monkeypatch.setattr(AchievementEngine, "check_and_award_achievements", fail)

        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(test_athlete.id, EASY_5K)

        assert exc.value.kind == ErrorKind.DATABASE
        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.total_xp_earned == 0
        assert state.total_workouts_completed == 0
        assert state.version == 1
        assert workout_logs(store, test_athlete.id) == []

    def test_concurrent_completion_is_retried(self, store, test_athlete, monkeypatch):
        """A write that loses the version race re-runs from a fresh read"""
        orchestrator = ProgressionOrchestrator(store)
        rival = ProgressionOrchestrator(store)
        real_calculate = orchestrator_module.calculate_workout_xp
        calls = {"count": 0}

        def racing_calculate(workout, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                # Another request lands between our read and our write
                rival.complete_workout(test_athlete.id, dict(EASY_5K, event_id="rival"))
            return real_calculate(workout, **kwargs)

        monkeypatch.setattr(orchestrator_module, "calculate_workout_xp", racing_calculate)

        orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, event_id="mine"))

        assert calls["count"] == 3
        state = store.find_by_id(ProgressionState, test_athlete.id)
        assert state.total_workouts_completed == 2
        assert state.total_xp_earned == 100
        assert state.version == 3
        assert {log.event_key for log in workout_logs(store, test_athlete.id)} == {"mine", "rival"}


class TestPlanWorkoutCompletion:
    """Test completions that reference a plan workout"""

    @pytest.fixture
    def plan(self, store, cache, test_athlete):
        return PlanService(store, cache).generate_plan(test_athlete.id)["plan"]

    def test_marks_plan_workout(self, store, cache, orchestrator, test_athlete, plan):
        planned = plan["weeks"][0]["workouts"][0]
        result = orchestrator.complete_workout(test_athlete.id, {
            "distance": planned["distance_km"] + 1,
            "duration": planned["duration_minutes"],
            "type": planned["type"],
            "plan_id": plan["id"],
            "week": 1,
            "workout_index": 1,
            "notes": "felt strong",
        })

        # Beat the planned distance
        assert result["xp_earned"]["bonus_xp"] >= 20
        current = PlanService(store, cache).get_current_plan(test_athlete.id)
        workout = current["weeks"][0]["workouts"][0]
        assert workout["completed"] is True
        assert workout["notes"] == "felt strong"
        assert current["version"] == plan["version"] + 1

    def test_plan_workout_counted_once(self, store, orchestrator, test_athlete, plan):
        payload = {
            "distance": 5, "duration": 30, "type": "easy",
            "plan_id": plan["id"], "week": 1, "workout_index": 2,
        }
        orchestrator.complete_workout(test_athlete.id, payload)
        assert orchestrator.complete_workout(test_athlete.id, payload)["duplicate"] is True

    def test_unknown_plan_workout(self, orchestrator, test_athlete, plan):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(test_athlete.id, dict(
                EASY_5K, plan_id=plan["id"], week=1, workout_index=9,
            ))
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_plan_reference_needs_position(self, orchestrator, test_athlete, plan):
        with pytest.raises(EngineError) as exc:
            orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, plan_id=plan["id"]))
        assert exc.value.kind == ErrorKind.VALIDATION


class TestStreak:
    """Test consecutive-day counting"""

    def test_first_workout(self):
        assert next_streak(None, 0, datetime(2026, 3, 1, 9)) == 1

    def test_same_day(self):
        assert next_streak(datetime(2026, 3, 1, 7), 4, datetime(2026, 3, 1, 20)) == 4

    def test_next_day(self):
        assert next_streak(datetime(2026, 3, 1, 23), 4, datetime(2026, 3, 2, 6)) == 5

    def test_gap_resets(self):
        assert next_streak(datetime(2026, 3, 1), 4, datetime(2026, 3, 3)) == 1


class TestRanking:
    """Test XP ranking"""

    def test_middle_of_three(self, orchestrator, make_athlete, make_state):
        athletes = [make_athlete() for _ in range(3)]
        for athlete, xp in zip(athletes, (2000, 1250, 800)):
            make_state(athlete.id, total_xp_earned=xp)

        ranking = orchestrator.get_ranking(athletes[1].id)

        assert ranking == {
            "position": 2,
            "total_users": 3,
            "percentile": 67,
            "total_xp_earned": 1250,
        }

    def test_tie_goes_to_earliest(self, orchestrator, make_athlete, make_state):
        early, late = make_athlete(), make_athlete()
        start = datetime(2026, 1, 1)
        make_state(late.id, total_xp_earned=500, created_at=start + timedelta(days=3))
        make_state(early.id, total_xp_earned=500, created_at=start)

        assert orchestrator.get_ranking(early.id)["position"] == 1
        assert orchestrator.get_ranking(late.id)["position"] == 2

    def test_not_ranked(self, orchestrator):
        with pytest.raises(EngineError) as exc:
            orchestrator.get_ranking(uuid.uuid4())
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_compute_ranking_single_entry(self):
        athlete_id = uuid.uuid4()
        ranking = compute_ranking(athlete_id, [(athlete_id, 0, datetime(2026, 1, 1))])
        assert ranking["position"] == 1
        assert ranking["percentile"] == 100


class TestReadSide:
    """Test progression and gamified stats"""

    def test_stats_without_progression(self, orchestrator, test_athlete):
        with pytest.raises(EngineError) as exc:
            orchestrator.get_user_progression_stats(test_athlete.id)
        assert exc.value.kind == ErrorKind.NOT_FOUND

    def test_progression_stats(self, orchestrator, test_athlete):
        orchestrator.complete_workout(test_athlete.id, EASY_5K)

        stats = orchestrator.get_user_progression_stats(test_athlete.id)

        assert stats["current_level"] == 1
        assert stats["current_xp"] == 50
        assert stats["level_progress_percentage"] == 50.0
        assert stats["current_phase"]["name"] == "foundation"
        assert stats["achievements_earned"] == 2
        assert stats["achievements_total"] == 21
        assert stats["phase_advancement"]["next_phase"]["name"] == "development"

    def test_gamified_stats(self, orchestrator, test_athlete):
        orchestrator.complete_workout(test_athlete.id, EASY_5K)

        stats = orchestrator.get_gamified_stats(test_athlete.id)

        assert stats["level"] == 1
        assert stats["xp"] == 50
        assert stats["total_xp"] == 50
        assert stats["streak"] == {"current_days": 1, "longest_days": 1}
        assert stats["ranking"]["position"] == 1
        assert stats["achievements"] == {"earned": 2, "total": 21}
        assert stats["weekly"] == {"workouts": 1, "distance_km": 5.0, "xp": 50}
        milestones = stats["next_milestones"]
        assert milestones["next_level"] == {"level": 2, "xp_needed": 50, "progress_percentage": 50.0}
        assert milestones["next_phase"]["can_advance"] is False
        assert len(milestones["next_achievements"]) == 3

    def test_weekly_window(self, store, test_athlete):
        now = datetime(2026, 3, 20, 12)
        orchestrator = ProgressionOrchestrator(store, clock=lambda: now)
        orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, completed_at="2026-03-01T08:00:00"))
        orchestrator.complete_workout(test_athlete.id, dict(EASY_5K, completed_at="2026-03-19T08:00:00"))

        assert orchestrator.get_gamified_stats(test_athlete.id)["weekly"]["workouts"] == 1
