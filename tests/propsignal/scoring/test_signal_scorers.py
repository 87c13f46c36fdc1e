"""
Tests for signal score functions
"""
import pytest

from src.propsignal.scoring.signal_scorers import (
    amenity_score,
    building_health_score,
    data_completeness,
    health_risk_level,
    signal_confidence,
    transit_score,
)


class TestBuildingHealth:
    """Tests for building health scoring"""

    def test_clean_building(self):
        assert building_health_score(0, 0, 0) == 100

    def test_weighted_penalties(self):
        """2 open HPD violations and 1 open DOB complaint"""
        assert building_health_score(2, 1, 0) == 87
        assert building_health_score(0, 0, 5) == 90

    def test_floor_at_zero(self):
        assert building_health_score(30, 10, 10) == 0

    def test_none_counts_as_zero(self):
        assert building_health_score(None, None, None) == 100

    @pytest.mark.parametrize("score,level", [
        (100, "low"), (80, "low"), (79, "medium"), (60, "medium"),
        (59, "high"), (40, "high"), (39, "critical"), (0, "critical"),
    ])
    def test_risk_levels(self, score, level):
        assert health_risk_level(score) == level


class TestTransitScore:
    """Tests for transit step scoring"""

    @pytest.mark.parametrize("distance,expected", [
        (0, 100),
        (150, 100),
        (200, 90),
        (350, 90),
        (550, 75),
        (750, 60),
        (950, 45),
        (1200, 41),
        (3000, 5),
        (10000, 0),
    ])
    def test_steps_and_decay(self, distance, expected):
        assert transit_score(distance) == expected

    def test_unknown_distance(self):
        assert transit_score(None) == 0

    def test_monotone_non_increasing(self):
        scores = [transit_score(d) for d in range(0, 6000, 25)]

        assert all(a >= b for a, b in zip(scores, scores[1:]))


class TestAmenityScore:
    """Tests for amenity scoring"""

    def test_weights(self):
        assert amenity_score(1, 1, 1) == 33
        assert amenity_score(2, 0, 0) == 20

    def test_capped(self):
        assert amenity_score(10, 10, 10) == 100

    def test_nothing_nearby(self):
        assert amenity_score(0, 0, 0) == 0


class TestDataCompleteness:
    """Tests for data completeness and confidence"""

    def test_everything_available(self):
        assert data_completeness(True, True, True, True, True) == 1.0

    def test_bbl_without_records_earns_half(self):
        assert data_completeness(True, True, True, False, True) == 0.9

    def test_records_without_bbl_do_not_count(self):
        assert data_completeness(False, True, True, True, False) == 0.4

    def test_nothing_available(self):
        assert data_completeness(False, False, False, False, False) == 0.0

    @pytest.mark.parametrize("completeness,confidence", [
        (1.0, "high"), (0.8, "high"), (0.7, "medium"), (0.5, "medium"), (0.4, "low"),
    ])
    def test_signal_confidence(self, completeness, confidence):
        assert signal_confidence(completeness) == confidence
