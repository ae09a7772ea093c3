"""
Pytest configuration and fixtures

Every test gets its own file-backed SQLite database under tmp_path, with
the schema created and the phase/achievement catalogs seeded. Nothing is
shared between tests.
"""
import pytest
import sys
import os

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.cache import MemoryResultCache
from core.store import Store
from services.athlete_service import register_athlete
from services.catalog import seed_catalog


@pytest.fixture(scope="function")
def store(tmp_path):
    """Isolated store with schema and catalogs in place."""
    store = Store.from_url(f"sqlite:///{tmp_path / 'engine.db'}", timeout_seconds=5)
    store.create_schema()
    seed_catalog(store)
    yield store
    store.dispose()


@pytest.fixture
def cache():
    cache = MemoryResultCache(default_ttl=60)
    yield cache
    cache.close()


@pytest.fixture
def athlete_profile():
    """Recreational runner: 23:00 5k, three runs a week."""
    return {
        "display_name": "Test Athlete",
        "height_cm": 175,
        "weight_kg": 70,
        "reference_time": "23:00",
        "goal": "run_10k",
        "weekly_frequency": 3,
    }


@pytest.fixture
def make_athlete(store, athlete_profile):
    """Factory: register an athlete, overriding any profile field."""
    def _make(**overrides):
        return register_athlete(store, dict(athlete_profile, **overrides))
    return _make


@pytest.fixture
def test_athlete(make_athlete):
    return make_athlete()


@pytest.fixture
def sample_race_times():
    """Sample 5k times (seconds) from fast to slow."""
    return [15 * 60, 18 * 60, 20 * 60, 23 * 60, 25 * 60, 30 * 60, 40 * 60]


@pytest.fixture
def make_state(store):
    """Factory: store a progression row for an athlete."""
    from models import ProgressionState

    def _make(athlete_id, **overrides):
        values = {
            "athlete_id": athlete_id,
            "current_level": 1,
            "current_xp": 0,
            "xp_to_next_level": 100,
            "total_xp_earned": 0,
            "total_workouts_completed": 0,
            "total_distance_run": 0.0,
            "current_phase_id": 1,
        }
        values.update(overrides)
        return store.insert(ProgressionState, values)
    return _make
