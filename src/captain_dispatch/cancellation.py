"""Rider and captain cancellations with the time-banded fee matrix."""

import logging
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel
from sqlalchemy.orm import Session

from .captain import CaptainStatus
from .core.exceptions import IllegalTransition, NotAuthorized
from .db.repositories.captain_repository import CaptainRepository
from .db.repositories.config_repository import ConfigRepository
from .db.utils import Clock, utc_now
from .dispatch_logging import log_ride_context
from .events.feed import ChangeFeed
from .events.outbox import defer
from .matching.admission import CaptainAdmissionPolicy
from .matching.notification_dispatch import TEMPLATE_RIDE_CANCELLED, NotificationDispatch
from .matching.offer_dispatch import OfferDispatchEngine
from .matching.reasons import ReassignmentReason
from .matching.reassignment import ReassignmentController, ReassignmentResult
from .metrics import prometheus_exporter as prom
from .policy import CancellationPenalty
from .ride import CANCELLABLE_STATUSES, REASSIGNABLE_STATUSES, Ride
from .state_machine import RideStateMachine, seconds_since

logger = logging.getLogger(__name__)

DEFAULT_REASON = "User cancelled"

Actor = Literal["rider", "captain"]


class CancellationResult(BaseModel):
    ride: Ride
    fee: Decimal = Decimal("0")
    penalty_type: str | None = None
    reassignment: ReassignmentResult | None = None


def select_penalty(
    bands: list[CancellationPenalty], seconds_after_match: float
) -> CancellationPenalty | None:
    """First band whose window covers the elapsed time, in lookup order."""
    for band in bands:
        if band.covers(seconds_after_match):
            return band
    return None


class CancellationHandler:
    def __init__(
        self,
        session: Session,
        state_machine: RideStateMachine,
        engine: OfferDispatchEngine,
        reassignment: ReassignmentController,
        admission: CaptainAdmissionPolicy,
        configs: ConfigRepository,
        notifications: NotificationDispatch,
        feed: ChangeFeed,
        clock: Clock = utc_now,
    ):
        self.session = session
        self.state_machine = state_machine
        self.engine = engine
        self.reassignment = reassignment
        self.admission = admission
        self.configs = configs
        self.notifications = notifications
        self.feed = feed
        self.clock = clock
        self.captains = CaptainRepository(session)

    def cancel(
        self,
        ride_id: str,
        cancelled_by: Actor,
        actor_id: str,
        reason: str | None = None,
        reassign: bool | None = None,
    ) -> CancellationResult:
        """Cancel a ride on behalf of its rider or its assigned captain.

        A captain cancelling after match is routed to reassignment unless
        reassign=False, so the rider keeps the ride.
        """
        with log_ride_context(ride_id, **{f"{cancelled_by}_id": actor_id}):
            ride = self.state_machine.get(ride_id)
            self._authorize(ride, cancelled_by, actor_id)
            if ride.status not in CANCELLABLE_STATUSES:
                raise IllegalTransition(
                    f"Ride {ride_id} is {ride.status.value} and can no longer be cancelled",
                    {"ride_id": ride_id, "status": ride.status.value},
                )

            if reassign is None:
                reassign = cancelled_by == "captain"
            if cancelled_by == "captain" and reassign and ride.status in REASSIGNABLE_STATUSES:
                result = self.reassignment.handle(
                    ride_id, ReassignmentReason.CAPTAIN_CANCELLED, acting_captain_id=actor_id
                )
                logger.info(f"Captain {actor_id} dropped ride {ride_id}; reassigning")
                return CancellationResult(
                    ride=self.state_machine.get(ride_id), reassignment=result
                )

            config = self.configs.matching_config(ride.locality)
            elapsed = seconds_since(ride.matched_at, self.clock())
            penalty = select_penalty(
                self.configs.penalties(ride.locality, cancelled_by, ride.status), elapsed
            )
            fee = penalty.penalty_amount if penalty else Decimal("0")

            attached_captain = ride.captain_id
            self.engine.expire_pending_for_ride(ride_id)
            cancelled = self.state_machine.cancel(
                ride_id,
                cancelled_by=cancelled_by,
                reason=reason or DEFAULT_REASON,
                fee=fee,
                actor_id=actor_id,
                expected_from=CANCELLABLE_STATUSES,
            )

            if attached_captain is not None:
                if self.captains.transition_status(
                    attached_captain, {CaptainStatus.ON_RIDE}, CaptainStatus.ONLINE
                ):
                    captain = self.captains.get(attached_captain)
                    if captain is not None:
                        self.feed.captain_changed(captain)

            if cancelled_by == "captain":
                cooldown_minutes = None
                if penalty is not None and penalty.penalty_type == "cooldown":
                    cooldown_minutes = penalty.cooldown_minutes
                self.admission.record_cancellation(actor_id, config, cooldown_minutes)

            recipients = [cancelled.rider_id, attached_captain or ""]
            self.notifications.notify(
                [r for r in recipients if r != actor_id],
                TEMPLATE_RIDE_CANCELLED,
                {"ride_id": ride_id, "cancelled_by": cancelled_by, "fee": str(fee)},
            )
            self.feed.ride_changed(cancelled)
            defer(self.session, lambda: prom.record_cancellation(cancelled_by))
            logger.info(
                f"Ride {ride_id} cancelled by {cancelled_by} after {elapsed:.0f}s, fee {fee}"
            )
            return CancellationResult(
                ride=cancelled,
                fee=fee,
                penalty_type=penalty.penalty_type if penalty else None,
            )

    def _authorize(self, ride: Ride, cancelled_by: Actor, actor_id: str) -> None:
        owner = ride.rider_id if cancelled_by == "rider" else ride.captain_id
        if owner is None or owner != actor_id:
            raise NotAuthorized(
                f"{cancelled_by.capitalize()} {actor_id} cannot cancel ride {ride.id}",
                {"ride_id": ride.id, "cancelled_by": cancelled_by},
            )
