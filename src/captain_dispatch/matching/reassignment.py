"""Reassignment Controller: retry a failed match with a wider radius, or give up."""

import logging
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..captain import CaptainStatus
from ..core.exceptions import (
    DispatchError,
    IllegalTransition,
    NoCandidatesAvailable,
    OfferLimitReached,
    RideNotReassignable,
)
from ..db.repositories.captain_repository import CaptainRepository
from ..db.repositories.config_repository import ConfigRepository
from ..db.transaction import savepoint
from ..db.utils import Clock, utc_now
from ..dispatch_logging import log_ride_context
from ..events.feed import ChangeFeed
from ..events.outbox import defer
from ..metrics import prometheus_exporter as prom
from ..policy import MatchingConfig
from ..ride import REASSIGNABLE_STATUSES, MatchState, Ride, RideStatus
from ..state_machine import RideStateMachine
from .admission import CaptainAdmissionPolicy
from .notification_dispatch import (
    TEMPLATE_FINDING_NEW_CAPTAIN,
    TEMPLATE_NO_CAPTAINS,
    NotificationDispatch,
)
from .offer_dispatch import OfferDispatchEngine
from .reasons import ReassignmentReason
from .task_queue import DispatchTaskQueue

logger = logging.getLogger(__name__)

NO_CAPTAINS_REASON = "No captains available after multiple attempts"

Outcome = Literal["offered", "deferred", "awaiting_captains", "cancelled"]
RedispatchMode = Literal["inline", "deferred"]


class ReassignmentResult(BaseModel):
    ride_id: str
    outcome: Outcome
    reassignment_count: int
    radius_km: float
    offer_id: str | None = None


class ReassignmentController:
    """Sole writer of a ride's match state after creation.

    Registers itself as the dispatch engine's offer-failure handler, so
    declines and expiries re-enter here with a deferred re-dispatch.
    """

    def __init__(
        self,
        session: Session,
        state_machine: RideStateMachine,
        engine: OfferDispatchEngine,
        admission: CaptainAdmissionPolicy,
        configs: ConfigRepository,
        task_queue: DispatchTaskQueue,
        notifications: NotificationDispatch,
        feed: ChangeFeed,
        clock: Clock = utc_now,
    ):
        self.session = session
        self.state_machine = state_machine
        self.engine = engine
        self.admission = admission
        self.configs = configs
        self.task_queue = task_queue
        self.notifications = notifications
        self.feed = feed
        self.clock = clock
        self.captains = CaptainRepository(session)
        engine.on_offer_failed = self._on_offer_failed

    def _on_offer_failed(
        self, ride_id: str, reason: ReassignmentReason, captain_id: str | None
    ) -> ReassignmentResult:
        return self.handle(ride_id, reason, acting_captain_id=captain_id, redispatch="deferred")

    def handle(
        self,
        ride_id: str,
        reason: ReassignmentReason,
        acting_captain_id: str | None = None,
        redispatch: RedispatchMode = "inline",
    ) -> ReassignmentResult:
        """Run one reassignment cycle for the ride.

        Steps 1-6 (exclude, count, terminate-or-continue, cancellation
        bookkeeping, radius expansion, reset to pending) share the caller's
        transaction. The re-dispatch runs inline in a savepoint, or is queued.
        """
        with log_ride_context(ride_id, reason=reason.value):
            ride = self.state_machine.get(ride_id)
            self._check_admissible(ride, reason)
            config = self.configs.matching_config(ride.locality)

            # A live offer would keep the ride and its captain reserved after the reset
            abandoned = []
            if ride.status == RideStatus.PENDING and ride.match.pending_offer_id is not None:
                abandoned = self.engine.expire_pending_for_ride(ride_id)

            captain_id = acting_captain_id or ride.captain_id
            if captain_id is None and abandoned:
                captain_id = abandoned[0].captain_id
            match = ride.match.with_excluded(captain_id)
            match.reassignment_count += 1
            defer(self.session, lambda: prom.record_reassignment(reason.value))

            if match.reassignment_count > config.max_retry_attempts:
                logger.warning(
                    f"Ride {ride_id} exhausted {config.max_retry_attempts} reassignments"
                )
                return self.terminate(ride, match_override=match)

            if ride.captain_id is not None:
                self._release_captain(ride.captain_id)

            if reason == ReassignmentReason.CAPTAIN_CANCELLED and captain_id is not None:
                self.admission.record_cancellation(captain_id, config)
                self.engine.expire_pending_for_ride(ride_id, captain_id)

            match.current_radius_km = match.expanded_radius(
                config.radius_expansion_step_km, config.max_radius_km
            )
            was_matched = ride.status in REASSIGNABLE_STATUSES
            ride = self.state_machine.reset_to_pending(ride, match)
            self.feed.ride_changed(ride)
            if was_matched:
                self.notifications.notify_rider(
                    ride.rider_id, TEMPLATE_FINDING_NEW_CAPTAIN, {"ride_id": ride.id}
                )

            logger.info(
                f"Reassigning ride {ride_id} ({reason.value}): attempt "
                f"{match.reassignment_count}, radius {match.current_radius_km:.1f} km"
            )

            if match.offers_sent >= config.max_offers_per_ride:
                return self.terminate(ride)

            if redispatch == "deferred":
                self.task_queue.enqueue(ride.id, reason.value, config.redispatch_delay_seconds)
                return self._result(ride, "deferred")
            return self._dispatch_inline(ride, config)

    def _check_admissible(self, ride: Ride, reason: ReassignmentReason) -> None:
        if ride.status in REASSIGNABLE_STATUSES:
            return
        if ride.status == RideStatus.PENDING and reason.is_offer_failure:
            return
        raise RideNotReassignable(
            f"Ride {ride.id} is {ride.status.value}; cannot reassign for {reason.value}",
            {"ride_id": ride.id, "status": ride.status.value, "reason": reason.value},
        )

    def _dispatch_inline(self, ride: Ride, config: MatchingConfig) -> ReassignmentResult:
        try:
            with savepoint(self.session):
                offer = self.engine.dispatch(ride.id, config)
        except OfferLimitReached:
            return self.terminate(self.state_machine.get(ride.id))
        except NoCandidatesAvailable:
            logger.info(f"No captains yet for ride {ride.id}; waiting for the retry trigger")
            return self._result(self.state_machine.get(ride.id), "awaiting_captains")
        return self._result(self.state_machine.get(ride.id), "offered", offer.id)

    def redispatch(self, ride_id: str) -> ReassignmentResult:
        """Run a queued re-dispatch. No candidates leaves the ride pending."""
        ride = self.state_machine.get(ride_id)
        if ride.status != RideStatus.PENDING or ride.match.pending_offer_id is not None:
            return self._result(ride, "awaiting_captains")
        config = self.configs.matching_config(ride.locality)
        return self._dispatch_inline(ride, config)

    def retry_unmatched(self, older_than_seconds: int, limit: int = 50) -> list[ReassignmentResult]:
        """Retry trigger for pending rides with no outstanding offer.

        Each miss counts a matching attempt and widens the radius; the ride is
        cancelled once attempts pass max_retry_attempts or offers run out.
        """
        cutoff = self.clock() - timedelta(seconds=older_than_seconds)
        results = []
        for ride in self.state_machine.rides.list_unmatched(cutoff, limit):
            try:
                with savepoint(self.session):
                    results.append(self._retry_one(ride))
            except DispatchError as e:
                logger.error(f"Retry of ride {ride.id} failed: {e.message}")
        return results

    def _retry_one(self, ride: Ride) -> ReassignmentResult:
        with log_ride_context(ride.id):
            config = self.configs.matching_config(ride.locality)
            try:
                with savepoint(self.session):
                    offer = self.engine.dispatch(ride.id, config)
                return self._result(self.state_machine.get(ride.id), "offered", offer.id)
            except OfferLimitReached:
                return self.terminate(self.state_machine.get(ride.id))
            except NoCandidatesAvailable:
                pass

            ride = self.state_machine.get(ride.id)
            match = ride.match.model_copy()
            match.matching_attempts += 1
            match.last_offer_sent_at = self.clock()
            if match.matching_attempts > config.max_retry_attempts:
                return self.terminate(ride, match_override=match)

            match.current_radius_km = match.expanded_radius(
                config.radius_expansion_step_km, config.max_radius_km
            )
            ride = self.state_machine.write_match_state(ride, match)
            logger.info(
                f"No captains for ride {ride.id}; attempt {match.matching_attempts}, "
                f"radius now {match.current_radius_km:.1f} km"
            )
            return self._result(ride, "awaiting_captains")

    def terminate(self, ride: Ride, match_override: MatchState | None = None) -> ReassignmentResult:
        """Cancel the ride on behalf of the system and release everyone attached to it."""
        attached_captain = ride.captain_id
        self.engine.expire_pending_for_ride(ride.id)
        try:
            cancelled = self.state_machine.cancel(
                ride.id,
                cancelled_by="system",
                reason=NO_CAPTAINS_REASON,
                match=match_override,
            )
        except IllegalTransition:
            current = self.state_machine.get(ride.id)
            if current.status.is_terminal:
                return self._result(current, "cancelled")
            raise

        if attached_captain is not None:
            self._release_captain(attached_captain)

        self.notifications.notify_rider(
            cancelled.rider_id,
            TEMPLATE_NO_CAPTAINS,
            {"ride_id": cancelled.id, "reason": NO_CAPTAINS_REASON},
        )
        self.feed.ride_changed(cancelled)
        defer(self.session, lambda: prom.record_cancellation("system"))
        logger.warning(f"Ride {ride.id} cancelled: {NO_CAPTAINS_REASON}")
        return self._result(cancelled, "cancelled")

    def _release_captain(self, captain_id: str) -> None:
        if self.captains.transition_status(captain_id, {CaptainStatus.ON_RIDE}, CaptainStatus.ONLINE):
            captain = self.captains.get(captain_id)
            if captain is not None:
                self.feed.captain_changed(captain)

    def _result(self, ride: Ride, outcome: Outcome, offer_id: str | None = None) -> ReassignmentResult:
        return ReassignmentResult(
            ride_id=ride.id,
            outcome=outcome,
            reassignment_count=ride.match.reassignment_count,
            radius_km=ride.match.current_radius_km,
            offer_id=offer_id,
        )
