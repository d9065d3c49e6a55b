"""Tests for reassignment, radius expansion and the unmatched-ride retry trigger."""

import pytest

from captain_dispatch.captain import CaptainStatus
from captain_dispatch.core.exceptions import AlreadyResolved, RideNotReassignable
from captain_dispatch.matching.notification_dispatch import (
    TEMPLATE_FINDING_NEW_CAPTAIN,
    TEMPLATE_NO_CAPTAINS,
)
from captain_dispatch.matching.reasons import ReassignmentReason
from captain_dispatch.matching.reassignment import NO_CAPTAINS_REASON
from captain_dispatch.offer import OfferStatus
from captain_dispatch.ride import RideStatus


def sent_templates(mock_sender):
    return [c.args[1] for c in mock_sender.call_args_list]


@pytest.mark.unit
class TestRadiusExpansion:
    def test_radius_grows_by_step_and_stops_at_max(
        self, service, ride_request, matching_config
    ):
        matching_config(max_retry_attempts=10, max_offers_per_ride=10)
        ride = service.request_ride(ride_request()).ride
        assert ride.match.current_radius_km == 1.5

        radii = []
        for _ in range(5):
            result = service.reassign(ride.id, ReassignmentReason.CAPTAIN_NO_RESPONSE)
            assert result.outcome == "awaiting_captains"
            radii.append(result.radius_km)

        assert radii == [2.5, 3.5, 4.5, 5.0, 5.0]

    def test_wider_radius_reaches_farther_captain(self, service, add_captain, ride_request):
        add_captain("far", km_north=2.2)
        ride = service.request_ride(ride_request()).ride

        result = service.reassign(ride.id, ReassignmentReason.CAPTAIN_NO_RESPONSE)

        assert result.outcome == "offered"
        assert result.radius_km == 2.5
        assert service.get_ride(ride.id).match.pending_offer_id == result.offer_id


@pytest.mark.unit
@pytest.mark.critical
class TestRetryLimits:
    def test_ride_cancelled_after_max_retries(self, service, ride_request, mock_sender):
        ride = service.request_ride(ride_request()).ride

        outcomes = [
            service.reassign(ride.id, ReassignmentReason.CAPTAIN_NO_RESPONSE).outcome
            for _ in range(4)
        ]

        assert outcomes == ["awaiting_captains"] * 3 + ["cancelled"]
        ride = service.get_ride(ride.id)
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancelled_by == "system"
        assert ride.cancellation_reason == NO_CAPTAINS_REASON
        assert ride.captain_id is None
        assert ride.match.reassignment_count == 4
        assert TEMPLATE_NO_CAPTAINS in sent_templates(mock_sender)

    def test_repeated_declines_cancel_the_ride(
        self, service, add_captain, ride_request, load_offer, clock
    ):
        for i, km in enumerate([0.2, 0.4, 0.6, 0.8, 1.0], start=1):
            add_captain(f"c{i}", km_north=km)
        ride = service.request_ride(ride_request()).ride

        declined = []
        for _ in range(3):
            offer = load_offer(service.get_ride(ride.id).match.pending_offer_id)
            response = service.respond_to_offer(offer.id, offer.captain_id, "decline")
            assert response.reassignment.outcome == "deferred"
            declined.append(offer.captain_id)
            clock.advance(seconds=1)
            service.process_due_tasks()

        offer = load_offer(service.get_ride(ride.id).match.pending_offer_id)
        assert offer.captain_id == "c4"
        response = service.respond_to_offer(offer.id, "c4", "decline")

        assert declined == ["c1", "c2", "c3"]
        assert response.reassignment.outcome == "cancelled"
        ride = service.get_ride(ride.id)
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancelled_by == "system"

    def test_offer_limit_cancels_the_ride(
        self, service, add_captain, ride_request, matching_config, clock
    ):
        matching_config(max_retry_attempts=10, max_offers_per_ride=2)
        add_captain("c1", km_north=0.2)
        add_captain("c2", km_north=0.4)
        add_captain("c3", km_north=0.6)
        first = service.request_ride(ride_request())
        service.respond_to_offer(first.offer.id, "c1", "decline")
        clock.advance(seconds=1)
        service.process_due_tasks()

        second_offer_id = service.get_ride(first.ride.id).match.pending_offer_id
        response = service.respond_to_offer(second_offer_id, "c2", "decline")

        assert response.reassignment.outcome == "cancelled"
        assert service.get_ride(first.ride.id).match.offers_sent == 2


@pytest.mark.unit
class TestAdmissibility:
    def test_terminal_ride_cannot_be_reassigned(self, service, ride_request):
        ride = service.request_ride(ride_request()).ride
        service.cancel_ride(ride.id, "rider", "rider-1")

        with pytest.raises(RideNotReassignable):
            service.reassign(ride.id, ReassignmentReason.CAPTAIN_NO_RESPONSE)

    def test_captain_reasons_need_an_assigned_ride(self, service, ride_request):
        ride = service.request_ride(ride_request()).ride

        with pytest.raises(RideNotReassignable):
            service.reassign(ride.id, ReassignmentReason.CAPTAIN_DELAY)

    def test_captain_delay_detaches_captain(self, service, add_captain, ride_request):
        add_captain("c1", km_north=0.2)
        add_captain("c2", km_north=0.5)
        result = service.request_ride(ride_request())
        service.respond_to_offer(result.offer.id, "c1", "accept")

        reassigned = service.reassign(result.ride.id, ReassignmentReason.CAPTAIN_DELAY)

        assert reassigned.outcome == "offered"
        ride = service.get_ride(result.ride.id)
        assert ride.status == RideStatus.PENDING
        assert ride.captain_id is None
        assert ride.matched_at is None
        assert "c1" in ride.match.excluded_captain_ids
        assert service.get_captain("c1").status == CaptainStatus.ONLINE

    @pytest.mark.critical
    def test_no_response_on_live_offer_moves_to_next_captain(
        self, service, add_captain, ride_request, load_offer
    ):
        add_captain("c1", km_north=0.2)
        add_captain("c2", km_north=0.6)
        result = service.request_ride(ride_request())

        reassigned = service.reassign(result.ride.id, ReassignmentReason.CAPTAIN_NO_RESPONSE)

        assert reassigned.outcome == "offered"
        assert load_offer(reassigned.offer_id).captain_id == "c2"
        assert load_offer(result.offer.id).response_status == OfferStatus.EXPIRED
        ride = service.get_ride(result.ride.id)
        assert ride.match.pending_offer_id == reassigned.offer_id
        assert "c1" in ride.match.excluded_captain_ids
        with pytest.raises(AlreadyResolved):
            service.respond_to_offer(result.offer.id, "c1", "accept")
        assert service.get_ride(result.ride.id).match.pending_offer_id == reassigned.offer_id


@pytest.mark.unit
class TestCaptainCancellation:
    def test_captain_cancel_reassigns_to_next_captain(
        self, service, add_captain, ride_request, load_offer, mock_sender
    ):
        add_captain("c1", km_north=0.2)
        add_captain("c2", km_north=0.6)
        result = service.request_ride(ride_request())
        service.respond_to_offer(result.offer.id, "c1", "accept")

        cancellation = service.cancel_ride(result.ride.id, "captain", "c1", "vehicle issue")

        assert cancellation.reassignment.outcome == "offered"
        assert load_offer(cancellation.reassignment.offer_id).captain_id == "c2"
        ride = cancellation.ride
        assert ride.status == RideStatus.PENDING
        assert ride.match.excluded_captain_ids == ["c1"]
        assert ride.match.reassignment_count == 1
        assert service.get_captain("c1").status == CaptainStatus.ONLINE
        assert service.get_captain_metrics("c1").daily_cancellations == 1
        assert TEMPLATE_FINDING_NEW_CAPTAIN in sent_templates(mock_sender)

    def test_excluded_captain_not_offered_again(self, service, add_captain, ride_request):
        add_captain("c1", km_north=0.2)
        result = service.request_ride(ride_request())
        service.respond_to_offer(result.offer.id, "c1", "accept")

        cancellation = service.cancel_ride(result.ride.id, "captain", "c1")

        assert cancellation.reassignment.outcome == "awaiting_captains"
        assert cancellation.ride.match.pending_offer_id is None


@pytest.mark.unit
class TestRetryUnmatched:
    def test_retry_waits_for_cutoff(self, service, ride_request, clock):
        service.request_ride(ride_request())
        clock.advance(seconds=5)

        assert service.retry_unmatched() == []

    def test_retry_counts_attempt_and_widens_radius(self, service, ride_request, clock):
        ride = service.request_ride(ride_request()).ride
        clock.advance(seconds=21)

        [result] = service.retry_unmatched()

        assert result.outcome == "awaiting_captains"
        assert result.radius_km == 2.5
        stored = service.get_ride(ride.id)
        assert stored.match.matching_attempts == 1
        assert stored.match.last_offer_sent_at == clock.now

    def test_retry_offers_once_a_captain_appears(
        self, service, add_captain, ride_request, clock
    ):
        ride = service.request_ride(ride_request()).ride
        clock.advance(seconds=21)
        add_captain("late")

        [result] = service.retry_unmatched()

        assert result.outcome == "offered"
        assert service.get_ride(ride.id).match.pending_offer_id == result.offer_id

    def test_retry_cancels_after_max_attempts(self, service, ride_request, clock):
        ride = service.request_ride(ride_request()).ride

        outcomes = []
        for _ in range(4):
            clock.advance(seconds=21)
            outcomes.extend(r.outcome for r in service.retry_unmatched())

        assert outcomes == ["awaiting_captains"] * 3 + ["cancelled"]
        assert service.get_ride(ride.id).status == RideStatus.CANCELLED
