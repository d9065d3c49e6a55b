"""Offer Dispatch Engine: one time-boxed offer per ride, resolved exactly once."""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..captain import CaptainStatus
from ..core.exceptions import (
    AlreadyResolved,
    DispatchError,
    IllegalTransition,
    NoCandidatesAvailable,
    NotAuthorized,
    NotFoundError,
    OfferExpired,
    OfferLimitReached,
)
from ..db.repositories.captain_repository import CaptainRepository
from ..db.repositories.config_repository import ConfigRepository
from ..db.repositories.offer_repository import OfferRepository
from ..db.transaction import savepoint
from ..db.utils import Clock, utc_now
from ..dispatch_logging import log_ride_context
from ..events.feed import ChangeFeed
from ..events.outbox import defer
from ..fare import captain_earnings
from ..geo.distance import eta_minutes
from ..metrics import prometheus_exporter as prom
from ..offer import Offer, OfferResponse, OfferStatus
from ..policy import AVERAGE_SPEED_KMH, MatchingConfig
from ..ride import Ride, RideStatus
from ..state_machine import RideStateMachine
from .admission import CaptainAdmissionPolicy
from .notification_dispatch import TEMPLATE_CAPTAIN_ASSIGNED, NotificationDispatch
from .proximity import Candidate, ProximitySearch
from .reasons import ReassignmentReason

logger = logging.getLogger(__name__)

# (ride_id, reason, acting captain) -> reassignment outcome
OfferFailureHandler = Callable[[str, ReassignmentReason, str | None], Any]


class RespondResult(BaseModel):
    offer: Offer
    ride: Ride
    reassignment: Any = None


class OfferDispatchEngine:
    """Creates and resolves offers. The only writer of offer rows."""

    def __init__(
        self,
        session: Session,
        state_machine: RideStateMachine,
        proximity: ProximitySearch,
        admission: CaptainAdmissionPolicy,
        configs: ConfigRepository,
        notifications: NotificationDispatch,
        feed: ChangeFeed,
        earnings_share: float = 0.80,
        clock: Clock = utc_now,
    ):
        self.session = session
        self.state_machine = state_machine
        self.proximity = proximity
        self.admission = admission
        self.configs = configs
        self.notifications = notifications
        self.feed = feed
        self.earnings_share = earnings_share
        self.clock = clock
        self.offers = OfferRepository(session)
        self.captains = CaptainRepository(session)
        self.on_offer_failed: OfferFailureHandler | None = None

    def dispatch(self, ride_id: str, config: MatchingConfig | None = None) -> Offer:
        """Offer a pending ride to the best eligible captain.

        Raises:
            IllegalTransition: ride is not pending or already has a pending offer
            OfferLimitReached: ride already received max_offers_per_ride offers
            NoCandidatesAvailable: nobody eligible within the current radius
        """
        with log_ride_context(ride_id):
            ride = self.state_machine.get(ride_id)
            config = config or self.configs.matching_config(ride.locality)
            self._check_dispatchable(ride, config)

            candidates = self.proximity.find_nearby(
                ride.pickup_lat,
                ride.pickup_lng,
                ride.match.current_radius_km,
                ride.vehicle_class,
                excluded=ride.match.excluded_captain_ids,
                staleness_seconds=config.location_staleness_seconds,
            )
            if not candidates:
                defer(self.session, prom.record_no_candidates)
                raise NoCandidatesAvailable(
                    f"No captains within {ride.match.current_radius_km:.1f} km",
                    {"ride_id": ride_id, "radius_km": ride.match.current_radius_km},
                )

            for candidate in candidates:
                offer = self._try_offer(ride, candidate, config)
                if offer is not None:
                    return offer
                ride = self.state_machine.get(ride_id)
                self._check_dispatchable(ride, config)

            defer(self.session, prom.record_no_candidates)
            raise NoCandidatesAvailable(
                "Every nearby captain was reserved by another ride", {"ride_id": ride_id}
            )

    def _check_dispatchable(self, ride: Ride, config: MatchingConfig) -> None:
        if ride.status != RideStatus.PENDING:
            raise IllegalTransition(
                f"Ride {ride.id} is {ride.status.value}, only pending rides are dispatched",
                {"ride_id": ride.id, "status": ride.status.value},
            )
        if ride.match.pending_offer_id is not None:
            raise IllegalTransition(
                f"Ride {ride.id} already has a pending offer",
                {"ride_id": ride.id, "offer_id": ride.match.pending_offer_id},
            )
        if ride.match.offers_sent >= config.max_offers_per_ride:
            raise OfferLimitReached(
                f"Ride {ride.id} reached {config.max_offers_per_ride} offers",
                {"ride_id": ride.id, "offers_sent": ride.match.offers_sent},
            )

    def _try_offer(
        self, ride: Ride, candidate: Candidate, config: MatchingConfig
    ) -> Offer | None:
        """Claim the ride and reserve the captain. None if the captain was taken meanwhile."""
        now = self.clock()
        offer = Offer(
            id=str(uuid.uuid4()),
            ride_id=ride.id,
            captain_id=candidate.captain_id,
            sequence=ride.match.offers_sent + 1,
            sent_at=now,
            expires_at=now + timedelta(seconds=config.offer_timeout_seconds),
            distance_to_pickup_km=candidate.distance_km,
            eta_minutes=eta_minutes(candidate.distance_km, AVERAGE_SPEED_KMH[ride.vehicle_class]),
            estimated_earnings=(
                captain_earnings(ride.fare.final_fare, self.earnings_share) if ride.fare else None
            ),
        )

        try:
            with savepoint(self.session):
                if not self.state_machine.rides.claim_for_offer(ride.id, ride.version, offer.id, now):
                    raise IllegalTransition(
                        f"Ride {ride.id} changed while dispatching", {"ride_id": ride.id}
                    )
                self.offers.create(offer)
        except IntegrityError:
            logger.info(f"Captain {candidate.captain_id} reserved by another ride, trying next")
            return None

        self.admission.record_offer_received(candidate.captain_id)
        self.notifications.send_captain_offer(
            candidate.captain_id,
            {
                "offer_id": offer.id,
                "ride_id": ride.id,
                "pickup": ride.pickup,
                "pickup_address": ride.pickup_address,
                "drop_address": ride.drop_address,
                "distance_to_pickup_km": round(offer.distance_to_pickup_km, 2),
                "eta_minutes": round(offer.eta_minutes, 1),
                "estimated_earnings": str(offer.estimated_earnings),
                "expires_at": offer.expires_at.isoformat(),
            },
        )
        self.feed.offer_changed(offer)
        defer(self.session, lambda: prom.record_offer("sent"))
        logger.info(
            f"Offer {offer.sequence} for ride {ride.id} sent to captain {candidate.captain_id} "
            f"({candidate.distance_km:.2f} km)"
        )
        return offer

    def respond(
        self,
        offer_id: str,
        captain_id: str,
        response: OfferResponse,
        reason: str | None = None,
    ) -> RespondResult:
        offer = self.offers.get(offer_id)
        if offer is None:
            raise NotFoundError(f"Offer {offer_id} not found", {"offer_id": offer_id})

        with log_ride_context(offer.ride_id, offer_id=offer_id, captain_id=captain_id):
            if offer.captain_id != captain_id:
                raise NotAuthorized(
                    f"Offer {offer_id} is not addressed to captain {captain_id}",
                    {"offer_id": offer_id},
                )
            if offer.response_status != OfferStatus.PENDING:
                raise AlreadyResolved(
                    f"Offer {offer_id} is already {offer.response_status.value}",
                    {"offer_id": offer_id, "status": offer.response_status.value},
                )

            now = self.clock()
            if offer.is_expired_at(now):
                self.expire(offer, now)
                raise OfferExpired(f"Offer {offer_id} expired", {"offer_id": offer_id})

            if response == "accept":
                return self._accept(offer, now)
            return self._decline(offer, reason, now)

    def _accept(self, offer: Offer, now: datetime) -> RespondResult:
        ride = self.state_machine.get(offer.ride_id)
        if ride.status != RideStatus.PENDING or ride.match.pending_offer_id != offer.id:
            self._resolve_lost(offer, now)
            raise AlreadyResolved(
                f"Ride {ride.id} is no longer waiting for offer {offer.id}",
                {"ride_id": ride.id, "offer_id": offer.id},
            )

        captain = self.captains.get(offer.captain_id)
        if captain is None or captain.status != CaptainStatus.ONLINE:
            raise IllegalTransition(
                f"Captain {offer.captain_id} must be online to accept",
                {"captain_id": offer.captain_id},
            )

        try:
            with savepoint(self.session):
                if not self.offers.resolve(offer.id, OfferStatus.ACCEPTED, now):
                    raise AlreadyResolved(
                        f"Offer {offer.id} was resolved concurrently", {"offer_id": offer.id}
                    )
                ride = self.state_machine.assign_captain(
                    ride.id,
                    offer.id,
                    offer.captain_id,
                    captain.vehicle_id,
                )
                if not self.captains.transition_status(
                    offer.captain_id, {CaptainStatus.ONLINE}, CaptainStatus.ON_RIDE
                ):
                    raise AlreadyResolved(
                        f"Captain {offer.captain_id} changed status concurrently",
                        {"captain_id": offer.captain_id},
                    )
        except IllegalTransition as e:
            self._resolve_lost(offer, now)
            raise AlreadyResolved(
                f"Ride {offer.ride_id} was resolved before offer {offer.id} was accepted",
                {"ride_id": offer.ride_id, "offer_id": offer.id},
            ) from e

        self.admission.record_offer_outcome(offer.captain_id, OfferStatus.ACCEPTED)
        self.notifications.notify_rider(
            ride.rider_id,
            TEMPLATE_CAPTAIN_ASSIGNED,
            {
                "ride_id": ride.id,
                "captain_id": offer.captain_id,
                "vehicle_id": ride.vehicle_id,
                "eta_minutes": round(offer.eta_minutes, 1),
                "otp": ride.otp,
            },
        )
        accepted = self.offers.get(offer.id) or offer
        self.feed.offer_changed(accepted)
        self.feed.ride_changed(ride)
        defer(self.session, lambda: prom.record_offer("accepted"))
        logger.info(f"Captain {offer.captain_id} accepted ride {ride.id}")
        return RespondResult(offer=accepted, ride=ride)

    def _decline(self, offer: Offer, reason: str | None, now: datetime) -> RespondResult:
        if not self.offers.resolve(offer.id, OfferStatus.DECLINED, now, decline_reason=reason):
            raise AlreadyResolved(
                f"Offer {offer.id} was resolved concurrently", {"offer_id": offer.id}
            )
        self.admission.record_offer_outcome(offer.captain_id, OfferStatus.DECLINED)
        declined = self.offers.get(offer.id) or offer
        self.feed.offer_changed(declined)
        defer(self.session, lambda: prom.record_offer("declined"))
        logger.info(f"Captain {offer.captain_id} declined ride {offer.ride_id}: {reason or '-'}")

        reassignment = self._hand_off(offer, ReassignmentReason.ALL_DECLINED)
        return RespondResult(
            offer=declined,
            ride=self.state_machine.get(offer.ride_id),
            reassignment=reassignment,
        )

    def expire(self, offer: Offer, now: datetime | None = None) -> bool:
        """Expire a pending offer and hand its ride to reassignment. False if already resolved."""
        now = now or self.clock()
        if not self.offers.resolve(offer.id, OfferStatus.EXPIRED, now):
            return False
        self.admission.record_offer_outcome(offer.captain_id, OfferStatus.EXPIRED)
        expired = self.offers.get(offer.id) or offer
        self.feed.offer_changed(expired)
        defer(self.session, lambda: prom.record_offer("expired"))
        logger.info(f"Offer {offer.id} to captain {offer.captain_id} expired")
        self._hand_off(offer, ReassignmentReason.CAPTAIN_NO_RESPONSE)
        return True

    def expire_pending_for_ride(self, ride_id: str, captain_id: str | None = None) -> list[Offer]:
        """Expire a ride's pending offers without triggering reassignment."""
        now = self.clock()
        expired = []
        for offer in self.offers.list_pending_for_ride(ride_id, captain_id):
            if self.offers.resolve(offer.id, OfferStatus.EXPIRED, now):
                self.admission.record_offer_outcome(offer.captain_id, OfferStatus.EXPIRED)
                resolved = self.offers.get(offer.id) or offer
                self.feed.offer_changed(resolved)
                expired.append(resolved)
        return expired

    def sweep_expired(self, limit: int = 100) -> int:
        """Resolve pending offers past their TTL. Each offer is isolated in a savepoint."""
        now = self.clock()
        swept = 0
        for offer in self.offers.list_expired(now, limit):
            try:
                with savepoint(self.session):
                    if self.expire(offer, now):
                        swept += 1
            except DispatchError as e:
                logger.error(f"Failed to expire offer {offer.id}: {e.message}")
        if swept:
            logger.info(f"Expired {swept} offers")
        return swept

    def _resolve_lost(self, offer: Offer, now: datetime) -> None:
        if self.offers.resolve(offer.id, OfferStatus.EXPIRED, now):
            self.admission.record_offer_outcome(offer.captain_id, OfferStatus.EXPIRED)

    def _hand_off(self, offer: Offer, reason: ReassignmentReason) -> Any:
        ride = self.state_machine.get(offer.ride_id)
        if ride.status != RideStatus.PENDING or ride.match.pending_offer_id != offer.id:
            logger.debug(f"Ride {ride.id} moved on from offer {offer.id}, nothing to reassign")
            return None
        if self.on_offer_failed is None:
            logger.warning(f"No reassignment handler; ride {ride.id} waits for the retry trigger")
            return None
        return self.on_offer_failed(ride.id, reason, offer.captain_id)
