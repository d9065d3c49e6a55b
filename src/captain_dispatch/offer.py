"""Captain offer models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    def to_event_type(self) -> str:
        return f"offer.{self.value}"


OfferResponse = Literal["accept", "decline"]


class Offer(BaseModel):
    """A time-boxed proposal of one ride to one captain."""

    id: str
    ride_id: str
    captain_id: str
    sequence: int
    sent_at: datetime
    expires_at: datetime
    response_status: OfferStatus = OfferStatus.PENDING
    responded_at: datetime | None = None
    decline_reason: str | None = None
    distance_to_pickup_km: float
    eta_minutes: float
    estimated_earnings: Decimal | None = None

    def is_expired_at(self, now: datetime) -> bool:
        return now >= self.expires_at
