"""Tests for the conditional writes and constraints that keep matching single-flight."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from captain_dispatch.db.database import SCHEMA_VERSION
from captain_dispatch.db.repositories.config_repository import ConfigRepository
from captain_dispatch.db.repositories.offer_repository import OfferRepository
from captain_dispatch.db.repositories.promo_repository import PromoRepository
from captain_dispatch.db.repositories.ride_repository import RideRepository
from captain_dispatch.db.schema import ServiceMetadata
from captain_dispatch.db.transaction import savepoint
from captain_dispatch.offer import Offer, OfferStatus
from captain_dispatch.policy import PricingConfig
from captain_dispatch.ride import RideStatus, VehicleClass

NOW = datetime(2025, 6, 2, 9, 0)


def make_offer(offer_id, ride_id="r1", captain_id="c1"):
    return Offer(
        id=offer_id,
        ride_id=ride_id,
        captain_id=captain_id,
        sequence=1,
        sent_at=NOW,
        expires_at=NOW + timedelta(seconds=15),
        distance_to_pickup_km=0.5,
        eta_minutes=1.2,
    )


@pytest.fixture
def db_session(session_factory):
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.mark.unit
class TestDatabaseInit:
    def test_schema_version_recorded(self, db_session):
        assert db_session.get(ServiceMetadata, "schema_version").value == SCHEMA_VERSION

    def test_seeded_localities(self, db_session):
        configs = ConfigRepository(db_session)

        assert configs.matching_config("bangalore").initial_radius_km == 2.0
        assert configs.matching_config("BANGALORE").offer_timeout_seconds == 12

    def test_unknown_locality_falls_back_to_default(self, db_session):
        config = ConfigRepository(db_session).matching_config("atlantis")

        assert config.initial_radius_km == 1.5
        assert config.max_offers_per_ride == 5


@pytest.mark.unit
@pytest.mark.critical
class TestPendingOfferConstraints:
    def test_one_pending_offer_per_captain(self, db_session):
        offers = OfferRepository(db_session)
        offers.create(make_offer("o1", ride_id="r1"))

        with pytest.raises(IntegrityError):
            with savepoint(db_session):
                offers.create(make_offer("o2", ride_id="r2"))

    def test_one_pending_offer_per_ride(self, db_session):
        offers = OfferRepository(db_session)
        offers.create(make_offer("o1", captain_id="c1"))

        with pytest.raises(IntegrityError):
            with savepoint(db_session):
                offers.create(make_offer("o2", captain_id="c2"))

    def test_resolved_offers_free_the_slot(self, db_session):
        offers = OfferRepository(db_session)
        offers.create(make_offer("o1"))
        assert offers.resolve("o1", OfferStatus.DECLINED, NOW)

        offers.create(make_offer("o2"))

        assert [o.id for o in offers.list_for_ride("r1")] == ["o1", "o2"]

    def test_resolve_happens_once(self, db_session):
        offers = OfferRepository(db_session)
        offers.create(make_offer("o1"))

        assert offers.resolve("o1", OfferStatus.ACCEPTED, NOW)
        assert not offers.resolve("o1", OfferStatus.EXPIRED, NOW)
        assert offers.get("o1").response_status == OfferStatus.ACCEPTED


@pytest.mark.unit
@pytest.mark.critical
class TestRideCompareAndSet:
    def test_stale_version_rejected(self, service, ride_request, db_session):
        ride = service.request_ride(ride_request()).ride
        rides = RideRepository(db_session)

        assert rides.compare_and_set(
            ride.id, RideStatus.PENDING, ride.version, {"pickup_address": "A"}, NOW
        )
        assert not rides.compare_and_set(
            ride.id, RideStatus.PENDING, ride.version, {"pickup_address": "B"}, NOW
        )
        assert rides.get(ride.id).pickup_address == "A"

    def test_claim_requires_no_outstanding_offer(self, service, ride_request, db_session):
        ride = service.request_ride(ride_request()).ride
        rides = RideRepository(db_session)

        assert rides.claim_for_offer(ride.id, ride.version, "o1", NOW)
        claimed = rides.get(ride.id)
        assert claimed.match.pending_offer_id == "o1"
        assert claimed.match.offers_sent == 1
        assert not rides.claim_for_offer(ride.id, claimed.version, "o2", NOW)

    def test_otp_mismatch_counter_stops_at_limit(self, service, ride_request, db_session):
        ride = service.request_ride(ride_request()).ride
        rides = RideRepository(db_session)

        results = [rides.record_otp_mismatch(ride.id, 3) for _ in range(4)]

        assert results == [True, True, True, False]
        assert rides.get(ride.id).otp_attempts == 3


@pytest.mark.unit
class TestOfferHistory:
    def test_accepted_offer_keeps_captain_after_cancel(
        self, service, add_captain, ride_request
    ):
        add_captain("c1")
        result = service.request_ride(ride_request())
        service.respond_to_offer(result.offer.id, "c1", "accept")
        service.cancel_ride(result.ride.id, "rider", "rider-1")

        [offer] = service.list_offers(result.ride.id)

        assert service.get_ride(result.ride.id).captain_id is None
        assert offer.captain_id == "c1"
        assert offer.response_status == OfferStatus.ACCEPTED


@pytest.mark.unit
class TestPromoRepository:
    def test_missing_code(self, db_session):
        assert PromoRepository(db_session).get("NOPE") is None


@pytest.mark.unit
class TestPricingConfig:
    def test_builtin_defaults_without_rows(self, db_session):
        pricing = ConfigRepository(db_session).pricing("mumbai", VehicleClass.AUTO)

        assert pricing.base_fare == Decimal("25")
        assert pricing.min_fare == Decimal("40")

    def test_locality_override(self, db_session):
        configs = ConfigRepository(db_session)
        configs.save_pricing(
            PricingConfig(
                locality="mumbai",
                vehicle_class=VehicleClass.BIKE,
                base_fare=Decimal("18"),
                per_km_rate=Decimal("9"),
                per_min_rate=Decimal("1.5"),
                min_fare=Decimal("30"),
            )
        )

        assert configs.pricing("Mumbai", VehicleClass.BIKE).base_fare == Decimal("18")
        assert configs.pricing("delhi", VehicleClass.BIKE).base_fare == Decimal("15")
