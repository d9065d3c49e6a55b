"""Dispatch Service: composes the matching components into request-sized operations.

Every public method runs in its own session and transaction. Components are
built per unit of work so nothing holds ride state between calls; the store
is the only synchronization point.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .cancellation import CancellationHandler, CancellationResult
from .captain import Captain, CaptainMetrics, CaptainStatus
from .core.exceptions import (
    AlreadyResolved,
    DispatchError,
    IllegalTransition,
    NoCandidatesAvailable,
    NotAuthorized,
    NotFoundError,
    ValidationError,
)
from .db.repositories.captain_repository import CaptainRepository
from .db.repositories.config_repository import ConfigRepository
from .db.repositories.promo_repository import PromoRepository
from .db.transaction import savepoint
from .db.utils import Clock, utc_now
from .dispatch_logging import log_ride_context
from .events.feed import ChangeFeed
from .events.outbox import defer
from .events.publisher import RedisPublisher
from .fare import FareEstimate, TripGeometryResolver, calculate_fare
from .geo.osrm_client import OSRMClient
from .matching.admission import CaptainAdmissionPolicy
from .matching.captain_index import CaptainCellIndex
from .matching.notification_dispatch import (
    TEMPLATE_CAPTAIN_ARRIVED,
    TEMPLATE_RIDE_COMPLETED,
    TEMPLATE_RIDE_STARTED,
    NotificationDispatch,
    NotificationSender,
)
from .matching.offer_dispatch import OfferDispatchEngine, RespondResult
from .matching.proximity import ProximitySearch
from .matching.reasons import ReassignmentReason
from .matching.reassignment import ReassignmentController, ReassignmentResult
from .matching.surge_pricing import SurgePricingCalculator
from .matching.task_queue import DispatchTaskQueue
from .metrics import prometheus_exporter as prom
from .offer import Offer, OfferResponse
from .otp import OtpResult, OtpVerifier, generate_otp
from .policy import DEFAULT_LOCALITY
from .ride import MatchState, Ride, RideStatus, VehicleClass
from .settings import Settings
from .state_machine import RideStateMachine

logger = logging.getLogger(__name__)


class RideRequest(BaseModel):
    rider_id: str = Field(min_length=1)
    pickup_lat: float = Field(ge=-90, le=90)
    pickup_lng: float = Field(ge=-180, le=180)
    drop_lat: float = Field(ge=-90, le=90)
    drop_lng: float = Field(ge=-180, le=180)
    pickup_address: str | None = None
    drop_address: str | None = None
    locality: str = DEFAULT_LOCALITY
    vehicle_class: VehicleClass
    promo_code: str | None = None


class RideRequestResult(BaseModel):
    ride: Ride
    fare: FareEstimate
    offer: Offer | None = None


class OtpVerification(BaseModel):
    result: OtpResult
    ride: Ride


class MaintenanceReport(BaseModel):
    expired_offers: int = 0
    tasks_claimed: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    rides_retried: int = 0
    rides_cancelled: int = 0


@dataclass
class UnitOfWork:
    """Components bound to one session."""

    session: Session
    state_machine: RideStateMachine
    configs: ConfigRepository
    captains: CaptainRepository
    promos: PromoRepository
    admission: CaptainAdmissionPolicy
    proximity: ProximitySearch
    surge: SurgePricingCalculator
    notifications: NotificationDispatch
    feed: ChangeFeed
    engine: OfferDispatchEngine
    task_queue: DispatchTaskQueue
    reassignment: ReassignmentController
    cancellations: CancellationHandler
    otp: OtpVerifier


class DispatchService:
    def __init__(
        self,
        session_factory: sessionmaker[Any],
        settings: Settings,
        clock: Clock = utc_now,
        notification_sender: NotificationSender | None = None,
        publisher: RedisPublisher | None = None,
        osrm_client: OSRMClient | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.notification_sender = notification_sender
        self.publisher = publisher
        self.index = CaptainCellIndex(settings.matching.h3_resolution)
        self.geometry = TripGeometryResolver(
            osrm_client, road_factor=settings.fare.road_distance_factor
        )

    @contextmanager
    def _unit_of_work(self) -> Iterator[UnitOfWork]:
        """Commit on success, roll back on error.

        AlreadyResolved (and OfferExpired) still commit: the losing side of a
        race records the offer it lost before reporting it.
        """
        with self.session_factory() as session:
            try:
                yield self._build(session)
                session.commit()
            except AlreadyResolved:
                session.commit()
                raise
            except Exception:
                session.rollback()
                raise

    def _build(self, session: Session) -> UnitOfWork:
        clock = self.clock
        configs = ConfigRepository(session, fallback=self.settings.matching)
        state_machine = RideStateMachine(session, clock)
        admission = CaptainAdmissionPolicy(session, clock)
        proximity = ProximitySearch(session, self.index, clock)
        surge = SurgePricingCalculator(
            session,
            self.index,
            clock,
            staleness_seconds=self.settings.matching.location_staleness_seconds,
        )
        notifications = NotificationDispatch(session, self.notification_sender)
        feed = ChangeFeed(session, self.publisher)
        engine = OfferDispatchEngine(
            session,
            state_machine,
            proximity,
            admission,
            configs,
            notifications,
            feed,
            earnings_share=self.settings.fare.captain_earnings_share,
            clock=clock,
        )
        task_queue = DispatchTaskQueue(session, clock)
        reassignment = ReassignmentController(
            session,
            state_machine,
            engine,
            admission,
            configs,
            task_queue,
            notifications,
            feed,
            clock,
        )
        cancellations = CancellationHandler(
            session,
            state_machine,
            engine,
            reassignment,
            admission,
            configs,
            notifications,
            feed,
            clock,
        )
        return UnitOfWork(
            session=session,
            state_machine=state_machine,
            configs=configs,
            captains=CaptainRepository(session),
            promos=PromoRepository(session),
            admission=admission,
            proximity=proximity,
            surge=surge,
            notifications=notifications,
            feed=feed,
            engine=engine,
            task_queue=task_queue,
            reassignment=reassignment,
            cancellations=cancellations,
            otp=OtpVerifier(session),
        )

    # --- Captains ---

    def register_captain(self, captain: Captain) -> Captain:
        with self._unit_of_work() as uow:
            h3_cell = self.index.cell_for(captain.lat, captain.lng) if captain.has_location else None
            if captain.has_location and captain.location_updated_at is None:
                captain = captain.model_copy(update={"location_updated_at": self.clock()})
            uow.captains.upsert(captain, h3_cell)
            stored = self._get_captain(uow, captain.id)
            uow.feed.captain_changed(stored)
            logger.info(f"Registered captain {captain.id} ({captain.vehicle_class.value})")
            return stored

    def get_captain(self, captain_id: str) -> Captain:
        with self._unit_of_work() as uow:
            return self._get_captain(uow, captain_id)

    def update_captain_location(self, captain_id: str, lat: float, lng: float) -> Captain:
        with self._unit_of_work() as uow:
            h3_cell = self.index.cell_for(lat, lng)
            if not uow.captains.update_location(captain_id, lat, lng, h3_cell, self.clock()):
                raise NotFoundError(f"Captain {captain_id} not found", {"captain_id": captain_id})
            captain = self._get_captain(uow, captain_id)
            uow.feed.captain_changed(captain)
            return captain

    def set_captain_status(
        self, captain_id: str, status: Literal["online", "offline"]
    ) -> Captain:
        """Captains toggle between online and offline; on_ride is owned by dispatch."""
        target = CaptainStatus(status)
        if target == CaptainStatus.ON_RIDE:
            raise ValidationError("on_ride is set by dispatch, not by the captain")

        with self._unit_of_work() as uow:
            captain = self._get_captain(uow, captain_id)
            if captain.status == target:
                return captain
            source = CaptainStatus.ONLINE if target == CaptainStatus.OFFLINE else CaptainStatus.OFFLINE
            if not uow.captains.transition_status(captain_id, {source}, target):
                raise IllegalTransition(
                    f"Captain {captain_id} is {captain.status.value}, cannot go {target.value}",
                    {"captain_id": captain_id, "status": captain.status.value},
                )
            captain = self._get_captain(uow, captain_id)
            uow.feed.captain_changed(captain)
            logger.info(f"Captain {captain_id} is now {target.value}")
            return captain

    def get_captain_metrics(self, captain_id: str) -> CaptainMetrics | None:
        with self._unit_of_work() as uow:
            self._get_captain(uow, captain_id)
            return uow.admission.get(captain_id)

    def _get_captain(self, uow: UnitOfWork, captain_id: str) -> Captain:
        captain = uow.captains.get(captain_id)
        if captain is None:
            raise NotFoundError(f"Captain {captain_id} not found", {"captain_id": captain_id})
        return captain

    # --- Fares ---

    def estimate_fare(
        self,
        pickup: tuple[float, float],
        drop: tuple[float, float],
        vehicle_class: VehicleClass,
        locality: str = DEFAULT_LOCALITY,
        promo_code: str | None = None,
    ) -> FareEstimate:
        with self._unit_of_work() as uow:
            return self._estimate(uow, pickup, drop, vehicle_class, locality, promo_code)

    def _estimate(
        self,
        uow: UnitOfWork,
        pickup: tuple[float, float],
        drop: tuple[float, float],
        vehicle_class: VehicleClass,
        locality: str,
        promo_code: str | None,
    ) -> FareEstimate:
        config = uow.configs.matching_config(locality)
        pricing = uow.configs.pricing(locality, vehicle_class)
        geometry = self.geometry.resolve(pickup, drop, vehicle_class)
        surge = uow.surge.get_surge(pickup[0], pickup[1], config.initial_radius_km)
        promo = uow.promos.get(promo_code) if promo_code else None
        return calculate_fare(
            geometry.distance_km,
            geometry.duration_min,
            pricing,
            surge_multiplier=surge,
            promo_code=promo_code,
            promo=promo,
            now=self.clock(),
            is_fallback=geometry.is_fallback,
        )

    # --- Ride lifecycle ---

    def request_ride(self, request: RideRequest) -> RideRequestResult:
        """Price the trip, create the ride and offer it to the nearest captain.

        Having nobody nearby is not an error: the ride stays pending for the
        retry trigger.
        """
        ride_id = str(uuid.uuid4())
        with self._unit_of_work() as uow, log_ride_context(ride_id, rider_id=request.rider_id):
            pickup = (request.pickup_lat, request.pickup_lng)
            drop = (request.drop_lat, request.drop_lng)
            fare = self._estimate(
                uow, pickup, drop, request.vehicle_class, request.locality, request.promo_code
            )
            if fare.promo_code and fare.promo_rejection_reason is None:
                if not uow.promos.redeem(fare.promo_code):
                    fare = self._without_promo(fare, "Promo code usage limit reached")

            config = uow.configs.matching_config(request.locality)
            now = self.clock()
            ride = Ride(
                id=ride_id,
                rider_id=request.rider_id,
                pickup_lat=request.pickup_lat,
                pickup_lng=request.pickup_lng,
                pickup_address=request.pickup_address,
                drop_lat=request.drop_lat,
                drop_lng=request.drop_lng,
                drop_address=request.drop_address,
                locality=request.locality.lower(),
                vehicle_class=request.vehicle_class,
                otp=generate_otp(),
                fare=fare.to_breakdown(),
                estimated_distance_km=fare.distance_km,
                estimated_duration_min=fare.duration_min,
                requested_at=now,
                updated_at=now,
                match=MatchState(current_radius_km=config.initial_radius_km),
            )
            uow.state_machine.rides.create(ride, pickup_h3_cell=self.index.cell_for(*pickup))
            logger.info(
                f"Ride {ride_id} requested ({request.vehicle_class.value}, "
                f"fare {fare.display()['final_fare']})"
            )

            offer = None
            try:
                with savepoint(uow.session):
                    offer = uow.engine.dispatch(ride_id, config)
            except NoCandidatesAvailable:
                logger.info(f"No captains near ride {ride_id} yet")

            ride = uow.state_machine.get(ride_id)
            uow.feed.ride_changed(ride)
            return RideRequestResult(ride=ride, fare=fare, offer=offer)

    def _without_promo(self, fare: FareEstimate, reason: str) -> FareEstimate:
        return fare.model_copy(
            update={
                "discount": Decimal("0"),
                "final_fare": fare.total,
                "promo_rejection_reason": reason,
            }
        )

    def get_ride(self, ride_id: str) -> Ride:
        with self._unit_of_work() as uow:
            return uow.state_machine.get(ride_id)

    def dispatch(self, ride_id: str) -> Offer:
        with self._unit_of_work() as uow:
            return uow.engine.dispatch(ride_id)

    def list_offers(self, ride_id: str) -> list[Offer]:
        """Every offer made for the ride, in the order it was sent."""
        with self._unit_of_work() as uow:
            uow.state_machine.get(ride_id)
            return uow.engine.offers.list_for_ride(ride_id)

    def respond_to_offer(
        self,
        offer_id: str,
        captain_id: str,
        response: OfferResponse,
        reason: str | None = None,
    ) -> RespondResult:
        with self._unit_of_work() as uow:
            return uow.engine.respond(offer_id, captain_id, response, reason)

    def reassign(
        self,
        ride_id: str,
        reason: ReassignmentReason,
        captain_id: str | None = None,
    ) -> ReassignmentResult:
        with self._unit_of_work() as uow:
            return uow.reassignment.handle(ride_id, reason, acting_captain_id=captain_id)

    def cancel_ride(
        self,
        ride_id: str,
        cancelled_by: Literal["rider", "captain"],
        actor_id: str,
        reason: str | None = None,
        reassign: bool | None = None,
    ) -> CancellationResult:
        with self._unit_of_work() as uow:
            return uow.cancellations.cancel(ride_id, cancelled_by, actor_id, reason, reassign)

    def mark_arrived(self, ride_id: str, captain_id: str) -> Ride:
        with self._unit_of_work() as uow, log_ride_context(ride_id, captain_id=captain_id):
            ride = uow.state_machine.mark_arrived(ride_id, captain_id)
            uow.notifications.notify_rider(
                ride.rider_id, TEMPLATE_CAPTAIN_ARRIVED, {"ride_id": ride_id, "otp": ride.otp}
            )
            uow.feed.ride_changed(ride)
            return ride

    def verify_otp(self, ride_id: str, code: str) -> OtpVerification:
        """Check the pickup code and start the ride when it matches.

        A mismatch is committed so the attempt counts toward the lockout.
        """
        with self._unit_of_work() as uow, log_ride_context(ride_id):
            ride = uow.state_machine.get(ride_id)
            if ride.status != RideStatus.WAITING_FOR_RIDER:
                raise IllegalTransition(
                    f"Ride {ride_id} is {ride.status.value}; OTP is checked at pickup",
                    {"ride_id": ride_id, "status": ride.status.value},
                )
            result = uow.otp.verify(ride_id, code)
            if not result.verified:
                return OtpVerification(result=result, ride=uow.state_machine.get(ride_id))

            ride = uow.state_machine.start(ride_id)
            uow.notifications.notify(
                [ride.rider_id, ride.captain_id or ""], TEMPLATE_RIDE_STARTED, {"ride_id": ride_id}
            )
            uow.feed.ride_changed(ride)
            logger.info(f"Ride {ride_id} started")
            return OtpVerification(result=result, ride=ride)

    def reset_otp(self, ride_id: str, regenerate: bool = False) -> str | None:
        with self._unit_of_work() as uow:
            return uow.otp.reset(ride_id, regenerate)

    def complete_ride(self, ride_id: str, captain_id: str) -> Ride:
        with self._unit_of_work() as uow, log_ride_context(ride_id, captain_id=captain_id):
            ride = uow.state_machine.get(ride_id)
            if ride.captain_id != captain_id:
                raise NotAuthorized(
                    f"Captain {captain_id} is not assigned to ride {ride_id}",
                    {"ride_id": ride_id, "captain_id": captain_id},
                )
            ride = uow.state_machine.complete(ride_id)
            if uow.captains.transition_status(
                captain_id, {CaptainStatus.ON_RIDE}, CaptainStatus.ONLINE
            ):
                uow.feed.captain_changed(self._get_captain(uow, captain_id))
            uow.admission.record_completion(captain_id)

            payload: dict[str, Any] = {"ride_id": ride_id}
            if ride.fare is not None:
                payload["final_fare"] = str(ride.fare.final_fare)
            uow.notifications.notify([ride.rider_id, captain_id], TEMPLATE_RIDE_COMPLETED, payload)
            uow.feed.ride_changed(ride)
            defer(uow.session, prom.record_completion)
            logger.info(f"Ride {ride_id} completed")
            return ride

    # --- Background maintenance ---

    def sweep_expired(self, limit: int = 100) -> int:
        with self._unit_of_work() as uow:
            return uow.engine.sweep_expired(limit)

    def process_due_tasks(self, limit: int | None = None) -> tuple[int, int, int]:
        """Drain due re-dispatch tasks. Returns (claimed, completed, failed)."""
        limit = limit or self.settings.dispatch.task_batch_size
        with self._unit_of_work() as uow:
            tasks = uow.task_queue.claim_due(limit)
        prom.set_tasks_due(len(tasks))

        completed = failed = 0
        for task in tasks:
            try:
                with self._unit_of_work() as uow:
                    uow.reassignment.redispatch(task.ride_id)
                    uow.task_queue.complete(task)
                completed += 1
            except (DispatchError, SQLAlchemyError) as e:
                message = e.message if isinstance(e, DispatchError) else str(e)
                prom.record_error("task_queue", type(e).__name__)
                with self._unit_of_work() as uow:
                    if uow.task_queue.fail(task, message) == "failed":
                        failed += 1
        return len(tasks), completed, failed

    def retry_unmatched(self, limit: int = 50) -> list[ReassignmentResult]:
        with self._unit_of_work() as uow:
            return uow.reassignment.retry_unmatched(
                self.settings.dispatch.retry_unmatched_after_seconds, limit
            )

    def run_maintenance(self) -> MaintenanceReport:
        """One pass of the background worker: expire offers, drain tasks, retry unmatched rides."""
        expired = self.sweep_expired()
        claimed, completed, failed = self.process_due_tasks()
        retried = self.retry_unmatched()
        report = MaintenanceReport(
            expired_offers=expired,
            tasks_claimed=claimed,
            tasks_completed=completed,
            tasks_failed=failed,
            rides_retried=len(retried),
            rides_cancelled=sum(1 for r in retried if r.outcome == "cancelled"),
        )
        if expired or claimed or retried:
            logger.info(f"Maintenance pass: {report.model_dump()}")
        return report
