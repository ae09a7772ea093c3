"""
Tests for fitness score and training pace calculation
"""
import re
from datetime import timedelta

import pytest

from core.exceptions import EngineError, ErrorKind
from services.pace_calculator import (
    PaceCalculator,
    ZONES,
    calculate_fitness_score,
    calculate_training_paces,
    format_duration,
    format_pace,
    parse_time,
)

PACE_FORMAT = re.compile(r"^\d+:\d{2}/km$")


class TestParseTime:
    """Test reference time parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("25:00", 1500.0),
        ("1:05:30", 3930.0),
        ("125:00", 7500.0),
        (1500, 1500.0),
        (1234.5, 1234.5),
        ("1500", 1500.0),
        (timedelta(minutes=20), 1200.0),
    ])
    def test_valid_inputs(self, value, expected):
        """Seconds, timedelta and clock strings are accepted"""
        assert parse_time(value) == expected

    @pytest.mark.parametrize("value", ["abc", "", "25:xx", 0, -5, None, True, "0:00"])
    def test_invalid_inputs(self, value):
        """Non-positive or unparseable input is a validation error"""
        with pytest.raises(EngineError) as exc:
            parse_time(value)
        assert exc.value.kind == ErrorKind.VALIDATION


class TestFormatting:
    """Test duration and pace formatting"""

    @pytest.mark.parametrize("seconds,expected", [
        (285, "4:45"),
        (59.6, "1:00"),
        (3930, "1:05:30"),
        (600, "10:00"),
    ])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_format_pace(self):
        assert format_pace(377) == "6:17/km"


class TestFitnessScore:
    """Test VDOT calculation"""

    def test_20min_5k(self):
        """20:00 5k is close to 49.8 in Daniels' tables"""
        score = calculate_fitness_score(20 * 60)
        assert 49 < score < 51

    def test_faster_time_scores_higher(self, sample_race_times):
        """Fitness score strictly decreases as the 5k time increases"""
        scores = [calculate_fitness_score(t) for t in sample_race_times]
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == len(scores)

    def test_other_reference_distance(self):
        """A 10k time gives a comparable score to the equivalent 5k"""
        score_10k = calculate_fitness_score("41:30", distance_m=10000)
        score_5k = calculate_fitness_score("20:00")
        assert abs(score_10k - score_5k) < 1.5

    @pytest.mark.parametrize("time_seconds", [10 * 60, 2 * 3600])
    def test_out_of_range_pace(self, time_seconds):
        """Paces outside 2:20-20:00 per km are rejected"""
        with pytest.raises(EngineError) as exc:
            calculate_fitness_score(time_seconds)
        assert exc.value.kind == ErrorKind.VALIDATION

    def test_non_positive_distance(self):
        with pytest.raises(EngineError) as exc:
            calculate_fitness_score(1500, distance_m=0)
        assert exc.value.kind == ErrorKind.VALIDATION


class TestTrainingPaces:
    """Test zone pace derivation"""

    def test_zone_ordering(self):
        """interval < tempo < easy < long <= recovery"""
        paces = calculate_training_paces(45.0)
        assert paces.interval.seconds_per_km < paces.tempo.seconds_per_km
        assert paces.tempo.seconds_per_km < paces.easy.seconds_per_km
        assert paces.easy.seconds_per_km < paces.long.seconds_per_km
        assert paces.long.seconds_per_km <= paces.recovery.seconds_per_km

    def test_pace_strings_match_seconds(self):
        paces = calculate_training_paces(38.0)
        for zone in ZONES:
            zone_pace = paces.for_zone(zone)
            assert PACE_FORMAT.match(zone_pace.pace)
            assert zone_pace.pace == format_pace(zone_pace.seconds_per_km)

    def test_faster_reference_never_slower(self, sample_race_times):
        """For t1 < t2 every zone pace of t1 is faster or equal"""
        calculator = PaceCalculator()
        results = [calculator.calculate(t) for t in sample_race_times]
        for faster, slower in zip(results, results[1:]):
            for zone in ZONES:
                assert faster.paces.for_zone(zone).seconds_per_km <= slower.paces.for_zone(zone).seconds_per_km

    def test_deterministic(self):
        """Same input gives identical pace strings"""
        first = PaceCalculator().calculate("23:00")
        second = PaceCalculator().calculate(1380)
        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_easy_pace_slower_than_race_pace(self):
        """Easy running is slower than 5k race pace"""
        result = PaceCalculator().calculate("25:00")
        assert result.paces.easy.seconds_per_km > 300

    def test_unknown_zone(self):
        with pytest.raises(EngineError):
            calculate_training_paces(45.0).for_zone("sprint")

    def test_round_trip_dict(self):
        from services.pace_calculator import TrainingPaces
        paces = calculate_training_paces(50.0)
        assert TrainingPaces.from_dict(paces.to_dict()) == paces
