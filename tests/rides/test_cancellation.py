"""Tests for rider and captain cancellations and the fee matrix."""

from decimal import Decimal

import pytest

from captain_dispatch.cancellation import DEFAULT_REASON, select_penalty
from captain_dispatch.captain import CaptainStatus
from captain_dispatch.core.exceptions import IllegalTransition, NotAuthorized
from captain_dispatch.db.repositories.config_repository import ConfigRepository
from captain_dispatch.matching.notification_dispatch import TEMPLATE_RIDE_CANCELLED
from captain_dispatch.offer import OfferStatus
from captain_dispatch.ride import RideStatus


@pytest.fixture
def assigned_ride(service, add_captain, ride_request):
    add_captain("c1")
    result = service.request_ride(ride_request())
    service.respond_to_offer(result.offer.id, "c1", "accept")
    return service.get_ride(result.ride.id)


@pytest.fixture
def penalty_bands(session_factory):
    def _bands(cancelled_by, status, locality="default"):
        with session_factory() as session:
            return ConfigRepository(session).penalties(locality, cancelled_by, status)

    return _bands


@pytest.mark.unit
class TestFeeMatrix:
    @pytest.mark.parametrize(
        "seconds,expected",
        [(0, Decimal("0")), (60, Decimal("0")), (120, Decimal("0")), (200, Decimal("15"))],
    )
    def test_rider_matched_bands(self, penalty_bands, seconds, expected):
        band = select_penalty(penalty_bands("rider", RideStatus.MATCHED), seconds)

        assert band.penalty_amount == expected

    def test_matched_bands_end_at_five_minutes(self, penalty_bands):
        assert select_penalty(penalty_bands("rider", RideStatus.MATCHED), 301) is None

    def test_captain_bands(self, penalty_bands):
        matched = select_penalty(penalty_bands("captain", RideStatus.MATCHED), 10)
        arriving = select_penalty(penalty_bands("captain", RideStatus.CAPTAIN_ARRIVING), 10)

        assert matched.penalty_type == "warning"
        assert arriving.penalty_type == "cooldown"
        assert arriving.penalty_amount == Decimal("0")

    def test_unknown_locality_uses_default_bands(self, penalty_bands):
        bands = penalty_bands("rider", RideStatus.CAPTAIN_ARRIVING, locality="atlantis")

        assert select_penalty(bands, 30).penalty_amount == Decimal("25")


@pytest.mark.unit
class TestRiderCancellation:
    def test_pending_ride_cancels_free(self, service, add_captain, ride_request, load_offer):
        add_captain("c1")
        result = service.request_ride(ride_request())

        cancellation = service.cancel_ride(result.ride.id, "rider", "rider-1")

        assert cancellation.fee == Decimal("0")
        ride = cancellation.ride
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancelled_by == "rider"
        assert ride.cancelled_by_user_id == "rider-1"
        assert ride.cancellation_reason == DEFAULT_REASON
        assert load_offer(result.offer.id).response_status == OfferStatus.EXPIRED

    def test_cancel_while_captain_arriving_costs_fee(
        self, service, assigned_ride, clock, mock_sender
    ):
        clock.advance(minutes=2)

        cancellation = service.cancel_ride(assigned_ride.id, "rider", "rider-1", "Plans changed")

        assert cancellation.fee == Decimal("25")
        assert cancellation.penalty_type == "fee"
        assert cancellation.ride.cancellation_fee == Decimal("25")
        assert cancellation.ride.cancellation_reason == "Plans changed"
        assert cancellation.ride.captain_id is None
        assert service.get_captain("c1").status == CaptainStatus.ONLINE
        [call] = [c for c in mock_sender.call_args_list if c.args[1] == TEMPLATE_RIDE_CANCELLED]
        assert call.args[0] == ["c1"]

    def test_other_rider_cannot_cancel(self, service, assigned_ride):
        with pytest.raises(NotAuthorized):
            service.cancel_ride(assigned_ride.id, "rider", "rider-2")

    def test_in_progress_ride_cannot_be_cancelled(self, service, assigned_ride):
        service.mark_arrived(assigned_ride.id, "c1")
        service.verify_otp(assigned_ride.id, assigned_ride.otp)

        with pytest.raises(IllegalTransition):
            service.cancel_ride(assigned_ride.id, "rider", "rider-1")

    def test_cancelled_ride_cannot_be_cancelled_again(self, service, ride_request):
        ride = service.request_ride(ride_request()).ride
        service.cancel_ride(ride.id, "rider", "rider-1")

        with pytest.raises(IllegalTransition):
            service.cancel_ride(ride.id, "rider", "rider-1")


@pytest.mark.unit
class TestCaptainCancellation:
    def test_captain_cancel_without_reassign_ends_ride(self, service, assigned_ride):
        cancellation = service.cancel_ride(assigned_ride.id, "captain", "c1", reassign=False)

        assert cancellation.reassignment is None
        assert cancellation.penalty_type == "cooldown"
        assert cancellation.fee == Decimal("0")
        assert cancellation.ride.status == RideStatus.CANCELLED
        assert cancellation.ride.cancelled_by == "captain"
        assert service.get_captain("c1").status == CaptainStatus.ONLINE
        assert service.get_captain_metrics("c1").daily_cancellations == 1

    def test_unassigned_captain_cannot_cancel(self, service, assigned_ride):
        with pytest.raises(NotAuthorized):
            service.cancel_ride(assigned_ride.id, "captain", "c9")

    def test_captain_cannot_cancel_pending_ride(self, service, add_captain, ride_request):
        add_captain("c1")
        result = service.request_ride(ride_request())

        with pytest.raises(NotAuthorized):
            service.cancel_ride(result.ride.id, "captain", "c1")
