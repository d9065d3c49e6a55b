"""Captain and captain metrics models."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel

from .ride import VehicleClass


class CaptainStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    ON_RIDE = "on_ride"


class Captain(BaseModel):
    id: str
    name: str | None = None
    lat: float | None = None
    lng: float | None = None
    location_updated_at: datetime | None = None
    status: CaptainStatus = CaptainStatus.OFFLINE
    vehicle_class: VehicleClass
    vehicle_id: str | None = None
    rating: float = 5.0
    verified: bool = True

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lng is not None


class CaptainMetrics(BaseModel):
    """Cancellation and offer counters backing the admission policy."""

    captain_id: str
    daily_cancellations: int = 0
    daily_reset_date: date | None = None
    total_completed: int = 0
    total_cancelled: int = 0
    cancellation_rate: float = 0.0
    offers_received: int = 0
    offers_accepted: int = 0
    offers_declined: int = 0
    offers_expired: int = 0
    acceptance_rate: float = 0.0
    cooldown_until: datetime | None = None

    def in_cooldown(self, now: datetime) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now
