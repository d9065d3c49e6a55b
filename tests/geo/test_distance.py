"""Tests for distance helpers."""

import pytest

from captain_dispatch.geo.distance import eta_minutes, haversine_distance_km, road_distance_km


@pytest.mark.unit
class TestDistance:
    def test_zero_distance(self):
        assert haversine_distance_km(12.97, 77.59, 12.97, 77.59) == 0.0

    def test_one_hundredth_degree_latitude(self):
        assert haversine_distance_km(12.97, 77.59, 12.98, 77.59) == pytest.approx(1.112, abs=0.001)

    def test_symmetry(self):
        there = haversine_distance_km(12.97, 77.59, 13.0, 77.62)
        back = haversine_distance_km(13.0, 77.62, 12.97, 77.59)
        assert there == pytest.approx(back)

    def test_road_factor(self):
        straight = haversine_distance_km(12.97, 77.59, 13.0, 77.62)
        assert road_distance_km((12.97, 77.59), (13.0, 77.62), 1.3) == pytest.approx(straight * 1.3)

    def test_eta(self):
        assert eta_minutes(5.0, 30.0) == 10.0

    def test_eta_requires_positive_speed(self):
        with pytest.raises(ValueError):
            eta_minutes(1.0, 0)
