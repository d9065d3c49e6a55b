import os

# Credential fields have no defaults (services must fail without secrets).
# Provide test values so Settings() can be constructed in tests.
os.environ.setdefault("API_KEY", "test-api-key")

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from captain_dispatch.captain import Captain, CaptainStatus
from captain_dispatch.db.database import init_database
from captain_dispatch.db.repositories.config_repository import ConfigRepository
from captain_dispatch.db.repositories.offer_repository import OfferRepository
from captain_dispatch.db.repositories.task_repository import DispatchTaskRepository
from captain_dispatch.ride import VehicleClass
from captain_dispatch.service import DispatchService, RideRequest
from captain_dispatch.settings import Settings

# Central Bangalore; 0.009 degrees of latitude is roughly 1 km
PICKUP = (12.9716, 77.5946)
DROP = (13.0050, 77.6200)
KM_LAT = 0.009


class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 6, 2, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def temp_sqlite_db(tmp_path):
    """Temporary SQLite database for persistence tests."""
    return tmp_path / "test_dispatch.db"


@pytest.fixture
def session_factory(temp_sqlite_db):
    return init_database(f"sqlite:///{temp_sqlite_db}")


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def mock_sender():
    """Notification sender; calls are recorded after commit."""
    return Mock()


@pytest.fixture
def mock_osrm_client():
    """Mock OSRM routing client for geo tests."""
    return Mock()


@pytest.fixture
def service(session_factory, settings, clock, mock_sender) -> DispatchService:
    return DispatchService(session_factory, settings, clock=clock, notification_sender=mock_sender)


@pytest.fixture
def add_captain(service):
    """Register an online captain at a distance north of the pickup."""

    def _add(
        captain_id: str,
        km_north: float = 0.5,
        vehicle_class: VehicleClass = VehicleClass.BIKE,
        rating: float = 4.8,
        status: CaptainStatus = CaptainStatus.ONLINE,
    ) -> Captain:
        return service.register_captain(
            Captain(
                id=captain_id,
                lat=PICKUP[0] + km_north * KM_LAT,
                lng=PICKUP[1],
                status=status,
                vehicle_class=vehicle_class,
                vehicle_id=f"KA-01-{captain_id}",
                rating=rating,
            )
        )

    return _add


@pytest.fixture
def ride_request():
    def _request(**overrides) -> RideRequest:
        values = {
            "rider_id": "rider-1",
            "pickup_lat": PICKUP[0],
            "pickup_lng": PICKUP[1],
            "drop_lat": DROP[0],
            "drop_lng": DROP[1],
            "vehicle_class": VehicleClass.BIKE,
        }
        values.update(overrides)
        return RideRequest(**values)

    return _request


@pytest.fixture
def load_offer(session_factory):
    def _load(offer_id):
        with session_factory() as session:
            return OfferRepository(session).get(offer_id)

    return _load


@pytest.fixture
def has_queued_task(session_factory):
    def _check(ride_id):
        with session_factory() as session:
            return DispatchTaskRepository(session).has_queued_for_ride(ride_id)

    return _check


@pytest.fixture
def matching_config(session_factory):
    """Override fields of the default locality's matching config."""

    def _override(**fields):
        with session_factory() as session:
            configs = ConfigRepository(session)
            config = configs.matching_config("default").model_copy(update=fields)
            configs.save_matching_config(config)
            session.commit()

    return _override
