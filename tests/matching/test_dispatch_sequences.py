"""Seeded random walks over dispatch, responses, reassignment and expiry.

After every step each ride must have at most one pending offer, its
pending_offer_id must point at exactly that offer, and a captain must be
attached only while the ride is matched or underway.
"""

import random

import pytest

from captain_dispatch.core.exceptions import NoCandidatesAvailable, NotAuthorized, StateError
from captain_dispatch.matching.reasons import ReassignmentReason
from captain_dispatch.offer import OfferStatus
from captain_dispatch.ride import RideStatus

ATTACHED_STATUSES = {
    RideStatus.MATCHED,
    RideStatus.CAPTAIN_ARRIVING,
    RideStatus.WAITING_FOR_RIDER,
    RideStatus.IN_PROGRESS,
}
MAX_RIDES = 4
STEPS = 60


def assert_ride_invariants(service, ride_ids):
    reserved_captains = []
    for ride_id in ride_ids:
        ride = service.get_ride(ride_id)
        pending = [
            o for o in service.list_offers(ride_id) if o.response_status == OfferStatus.PENDING
        ]

        assert len(pending) <= 1, f"ride {ride_id} has {len(pending)} pending offers"
        expected_pointer = pending[0].id if pending else None
        assert ride.match.pending_offer_id == expected_pointer
        if pending:
            assert ride.status == RideStatus.PENDING
            reserved_captains.append(pending[0].captain_id)
        assert (ride.captain_id is not None) == (ride.status in ATTACHED_STATUSES)
        assert ride.captain_id not in ride.match.excluded_captain_ids

    assert len(reserved_captains) == len(set(reserved_captains))


class RideWalk:
    """Applies one random operation per step to the service."""

    def __init__(self, rng, service, ride_request, clock, captains):
        self.rng = rng
        self.service = service
        self.ride_request = ride_request
        self.clock = clock
        self.captains = captains
        self.ride_ids: list[str] = []

    def ping_captains(self):
        for captain in self.captains:
            self.service.update_captain_location(captain.id, captain.lat, captain.lng)

    def rides_in(self, *statuses):
        return [r for r in map(self.service.get_ride, self.ride_ids) if r.status in statuses]

    def request(self):
        if len(self.ride_ids) < MAX_RIDES:
            rider = f"rider-{len(self.ride_ids)}"
            result = self.service.request_ride(self.ride_request(rider_id=rider))
            self.ride_ids.append(result.ride.id)

    def respond(self):
        offered = [r for r in self.rides_in(RideStatus.PENDING) if r.match.pending_offer_id]
        if not offered:
            return
        ride = self.rng.choice(offered)
        offer = next(
            o for o in self.service.list_offers(ride.id) if o.id == ride.match.pending_offer_id
        )
        self.service.respond_to_offer(
            offer.id, offer.captain_id, self.rng.choice(["accept", "decline"])
        )

    def reassign(self):
        live = self.rides_in(
            RideStatus.PENDING, RideStatus.CAPTAIN_ARRIVING, RideStatus.WAITING_FOR_RIDER
        )
        if live:
            reason = self.rng.choice(list(ReassignmentReason))
            self.service.reassign(self.rng.choice(live).id, reason)

    def expire(self):
        self.clock.advance(seconds=self.rng.randint(1, 20))
        self.ping_captains()
        self.service.sweep_expired()

    def drain_tasks(self):
        self.clock.advance(seconds=1)
        self.service.process_due_tasks()

    def progress(self):
        underway = self.rides_in(
            RideStatus.CAPTAIN_ARRIVING, RideStatus.WAITING_FOR_RIDER, RideStatus.IN_PROGRESS
        )
        if not underway:
            return
        ride = self.rng.choice(underway)
        if ride.status == RideStatus.CAPTAIN_ARRIVING:
            self.service.mark_arrived(ride.id, ride.captain_id)
        elif ride.status == RideStatus.WAITING_FOR_RIDER:
            self.service.verify_otp(ride.id, ride.otp)
        else:
            self.service.complete_ride(ride.id, ride.captain_id)

    def cancel(self):
        live = self.rides_in(
            RideStatus.PENDING, RideStatus.CAPTAIN_ARRIVING, RideStatus.WAITING_FOR_RIDER
        )
        if not live:
            return
        ride = self.rng.choice(live)
        if ride.captain_id and self.rng.random() < 0.5:
            self.service.cancel_ride(ride.id, "captain", ride.captain_id)
        else:
            self.service.cancel_ride(ride.id, "rider", ride.rider_id)

    def step(self):
        action = self.rng.choices(
            [
                self.request,
                self.respond,
                self.reassign,
                self.expire,
                self.drain_tasks,
                self.progress,
                self.cancel,
            ],
            weights=[3, 5, 2, 2, 3, 3, 1],
        )[0]
        try:
            action()
        except (StateError, NoCandidatesAvailable, NotAuthorized):
            # Lost races and inadmissible picks are legal outcomes of a random walk
            pass


@pytest.mark.unit
@pytest.mark.critical
@pytest.mark.parametrize("seed", range(8))
def test_random_walk_keeps_one_pending_offer_per_ride(
    seed, service, add_captain, ride_request, clock
):
    rng = random.Random(seed)
    captains = [
        add_captain(f"c{i}", km_north=rng.uniform(0.1, 2.0), rating=rng.choice([4.5, 4.8, 5.0]))
        for i in range(6)
    ]
    walk = RideWalk(rng, service, ride_request, clock, captains)

    for _ in range(STEPS):
        walk.step()
        assert_ride_invariants(service, walk.ride_ids)
