"""Tests for the demand/supply surge multiplier."""

from decimal import Decimal

import pytest

from captain_dispatch.matching.surge_pricing import surge_multiplier

PICKUP = (12.9716, 77.5946)


@pytest.mark.unit
class TestSurgeMultiplier:
    @pytest.mark.parametrize(
        "pending,available,expected",
        [
            (0, 0, "1.0"),
            (3, 0, "2.5"),
            (2, 4, "1.0"),
            (4, 4, "1.0"),
            (6, 4, "1.25"),
            (8, 4, "1.5"),
            (10, 4, "2.0"),
            (12, 4, "2.5"),
            (40, 4, "2.5"),
        ],
    )
    def test_curve(self, pending, available, expected):
        assert surge_multiplier(pending, available) == Decimal(expected)

    def test_curve_is_monotonic(self):
        values = [surge_multiplier(p, 4) for p in range(0, 20)]
        assert values == sorted(values)


@pytest.mark.unit
class TestSurgeFromStore:
    def test_no_surge_with_idle_supply(self, service, add_captain, ride_request):
        add_captain("c1")
        add_captain("c2", km_north=0.7)

        fare = service.estimate_fare(PICKUP, (13.0050, 77.6200), ride_request().vehicle_class)

        assert fare.surge_multiplier == Decimal("1.0")

    def test_pending_rides_without_supply_surge(self, service, ride_request):
        service.request_ride(ride_request(rider_id="r1"))

        fare = service.estimate_fare(PICKUP, (13.0050, 77.6200), ride_request().vehicle_class)

        assert fare.surge_multiplier == Decimal("2.5")
