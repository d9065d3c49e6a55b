"""Change feed channel definitions and message schemas."""

from pydantic import BaseModel

CHANNEL_RIDE_UPDATES = "ride-updates"
CHANNEL_OFFER_UPDATES = "offer-updates"
CHANNEL_CAPTAIN_UPDATES = "captain-updates"

ALL_CHANNELS = [
    CHANNEL_RIDE_UPDATES,
    CHANNEL_OFFER_UPDATES,
    CHANNEL_CAPTAIN_UPDATES,
]


class RideUpdateMessage(BaseModel):
    """Ride status change with the fields a rider or captain screen needs."""

    event: str
    ride_id: str
    status: str
    rider_id: str
    captain_id: str | None
    vehicle_id: str | None
    reassignment_count: int
    current_radius_km: float
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    timestamp: str


class OfferUpdateMessage(BaseModel):
    event: str
    offer_id: str
    ride_id: str
    captain_id: str
    response_status: str
    expires_at: str
    timestamp: str


class CaptainUpdateMessage(BaseModel):
    captain_id: str
    status: str
    location: tuple[float, float] | None
    timestamp: str
