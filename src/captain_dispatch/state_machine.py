"""Ride State Machine: the only writer of ride status."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from .core.exceptions import (
    AlreadyResolved,
    IllegalTransition,
    NotAuthorized,
    NotFoundError,
    RideNotReassignable,
)
from .db.repositories.ride_repository import RideRepository, match_values
from .db.utils import Clock, utc_now
from .ride import (
    REASSIGNABLE_STATUSES,
    CancelledBy,
    MatchState,
    Ride,
    RideStatus,
    can_transition,
)

logger = logging.getLogger(__name__)

# Timestamp column stamped when a ride enters the status
_ENTERED_AT: dict[RideStatus, str] = {
    RideStatus.MATCHED: "matched_at",
    RideStatus.WAITING_FOR_RIDER: "captain_arrived_at",
    RideStatus.IN_PROGRESS: "started_at",
    RideStatus.COMPLETED: "completed_at",
    RideStatus.CANCELLED: "cancelled_at",
}

# captain_id is only set while a captain is attached to the ride
_DETACH_CAPTAIN = {"captain_id": None, "vehicle_id": None}


class RideStateMachine:
    """Enforces legal ride transitions with compare-and-set writes.

    A write that loses a race re-reads the ride once and re-evaluates before
    raising IllegalTransition. Replaying a transition to the status the ride
    already has is a no-op that returns the current ride.
    """

    MAX_ATTEMPTS = 2

    def __init__(self, session: Session, clock: Clock = utc_now):
        self.rides = RideRepository(session)
        self.clock = clock

    def get(self, ride_id: str) -> Ride:
        ride = self.rides.get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
        return ride

    def transition(
        self,
        ride_id: str,
        target: RideStatus,
        values: dict[str, Any] | None = None,
        expected_from: frozenset[RideStatus] | None = None,
        pending_offer_id: str | None = None,
    ) -> Ride:
        for _ in range(self.MAX_ATTEMPTS):
            ride = self.get(ride_id)
            if ride.status == target:
                return ride
            if expected_from is not None and ride.status not in expected_from:
                raise IllegalTransition(
                    f"Ride {ride_id} is {ride.status.value}, cannot move to {target.value}",
                    {"ride_id": ride_id, "status": ride.status.value, "target": target.value},
                )
            if not can_transition(ride.status, target):
                raise IllegalTransition(
                    f"Invalid transition from {ride.status.value} to {target.value}",
                    {"ride_id": ride_id, "status": ride.status.value, "target": target.value},
                )

            now = self.clock()
            update = dict(values or {})
            update["status"] = target.value
            if target in _ENTERED_AT:
                update.setdefault(_ENTERED_AT[target], now)
            if target.is_terminal:
                update.update(_DETACH_CAPTAIN)
                update["pending_offer_id"] = None

            if self.rides.compare_and_set(
                ride_id, ride.status, ride.version, update, now, pending_offer_id=pending_offer_id
            ):
                logger.debug(f"Ride {ride_id}: {ride.status.value} -> {target.value}")
                return self.get(ride_id)

            logger.info(f"Ride {ride_id} changed concurrently, re-evaluating {target.value}")

        raise IllegalTransition(
            f"Ride {ride_id} changed concurrently; transition to {target.value} abandoned",
            {"ride_id": ride_id, "target": target.value},
        )

    def assign_captain(
        self, ride_id: str, offer_id: str, captain_id: str, vehicle_id: str | None
    ) -> Ride:
        """pending -> matched -> captain_arriving for the captain holding the ride's offer."""
        matched = self.transition(
            ride_id,
            RideStatus.MATCHED,
            values={"captain_id": captain_id, "vehicle_id": vehicle_id, "pending_offer_id": None},
            expected_from=frozenset({RideStatus.PENDING}),
            pending_offer_id=offer_id,
        )
        if matched.captain_id != captain_id:
            raise AlreadyResolved(
                f"Ride {ride_id} was matched to another captain", {"ride_id": ride_id}
            )
        return self.transition(
            ride_id,
            RideStatus.CAPTAIN_ARRIVING,
            expected_from=frozenset({RideStatus.MATCHED}),
        )

    def mark_arrived(self, ride_id: str, captain_id: str) -> Ride:
        self._require_captain(ride_id, captain_id)
        return self.transition(
            ride_id,
            RideStatus.WAITING_FOR_RIDER,
            expected_from=frozenset({RideStatus.CAPTAIN_ARRIVING}),
        )

    def start(self, ride_id: str) -> Ride:
        return self.transition(
            ride_id,
            RideStatus.IN_PROGRESS,
            expected_from=frozenset({RideStatus.WAITING_FOR_RIDER}),
        )

    def complete(self, ride_id: str) -> Ride:
        return self.transition(
            ride_id,
            RideStatus.COMPLETED,
            expected_from=frozenset({RideStatus.IN_PROGRESS}),
        )

    def cancel(
        self,
        ride_id: str,
        cancelled_by: CancelledBy,
        reason: str,
        fee: Decimal | None = None,
        actor_id: str | None = None,
        match: MatchState | None = None,
        expected_from: frozenset[RideStatus] | None = None,
    ) -> Ride:
        values: dict[str, Any] = {
            "cancelled_by": cancelled_by,
            "cancellation_reason": reason,
            "cancellation_fee": fee if fee is not None else Decimal("0"),
            "cancelled_by_user_id": actor_id,
        }
        if match is not None:
            values.update(match_values(match))
        return self.transition(
            ride_id, RideStatus.CANCELLED, values=values, expected_from=expected_from
        )

    def reset_to_pending(self, ride: Ride, match: MatchState) -> Ride:
        """Write a new match state and put the ride back to pending.

        The only backward transition. Accepts rides already pending (after an
        offer failure) and rides in the reassignable statuses; detaches the captain.
        """
        allowed = REASSIGNABLE_STATUSES | {RideStatus.PENDING}
        if ride.status not in allowed:
            raise RideNotReassignable(
                f"Ride {ride.id} is {ride.status.value} and cannot return to pending",
                {"ride_id": ride.id, "status": ride.status.value},
            )
        now = self.clock()
        values = {
            **match_values(match),
            **_DETACH_CAPTAIN,
            "status": RideStatus.PENDING.value,
            "matched_at": None,
            "captain_arrived_at": None,
            "pending_offer_id": None,
        }
        if not self.rides.compare_and_set(ride.id, ride.status, ride.version, values, now):
            raise IllegalTransition(
                f"Ride {ride.id} changed during reassignment",
                {"ride_id": ride.id, "status": ride.status.value},
            )
        return self.get(ride.id)

    def write_match_state(self, ride: Ride, match: MatchState) -> Ride:
        """Persist match progress on a pending ride without changing its status."""
        now = self.clock()
        if not self.rides.compare_and_set(
            ride.id, RideStatus.PENDING, ride.version, match_values(match), now
        ):
            raise IllegalTransition(
                f"Ride {ride.id} changed while updating match state", {"ride_id": ride.id}
            )
        return self.get(ride.id)

    def _require_captain(self, ride_id: str, captain_id: str) -> Ride:
        ride = self.get(ride_id)
        if ride.captain_id != captain_id:
            raise NotAuthorized(
                f"Captain {captain_id} is not assigned to ride {ride_id}",
                {"ride_id": ride_id, "captain_id": captain_id},
            )
        return ride


def seconds_since(moment: datetime | None, now: datetime) -> float:
    if moment is None:
        return 0.0
    return max((now - moment).total_seconds(), 0.0)
