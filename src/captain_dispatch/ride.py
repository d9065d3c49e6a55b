"""Ride state machine definitions and models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class RideStatus(str, Enum):
    """Ride lifecycle states."""

    PENDING = "pending"
    MATCHED = "matched"
    CAPTAIN_ARRIVING = "captain_arriving"
    WAITING_FOR_RIDER = "waiting_for_rider"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def to_event_type(self) -> str:
        """Change feed event type (e.g., 'ride.matched')."""
        return f"ride.{self.value}"


class VehicleClass(str, Enum):
    BIKE = "bike"
    AUTO = "auto"
    CAB = "cab"


CancelledBy = Literal["rider", "captain", "system"]

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

# Forward transitions. The reset back to PENDING is not listed here: it is
# only reachable through reassignment from REASSIGNABLE_STATUSES.
VALID_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.MATCHED, RideStatus.CANCELLED},
    RideStatus.MATCHED: {RideStatus.CAPTAIN_ARRIVING, RideStatus.CANCELLED},
    RideStatus.CAPTAIN_ARRIVING: {RideStatus.WAITING_FOR_RIDER, RideStatus.CANCELLED},
    RideStatus.WAITING_FOR_RIDER: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

REASSIGNABLE_STATUSES = frozenset(
    {RideStatus.MATCHED, RideStatus.CAPTAIN_ARRIVING, RideStatus.WAITING_FOR_RIDER}
)

CANCELLABLE_STATUSES = frozenset({RideStatus.PENDING}) | REASSIGNABLE_STATUSES


def can_transition(current: RideStatus, target: RideStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


class MatchState(BaseModel):
    """Matching progress embedded on a ride, written only by reassignment and dispatch."""

    excluded_captain_ids: list[str] = Field(default_factory=list)
    reassignment_count: int = 0
    current_radius_km: float
    matching_attempts: int = 0
    offers_sent: int = 0
    pending_offer_id: str | None = None
    last_offer_sent_at: datetime | None = None

    def with_excluded(self, captain_id: str | None) -> "MatchState":
        """Return a copy with the captain appended to the exclusion list."""
        if captain_id is None or captain_id in self.excluded_captain_ids:
            return self.model_copy()
        return self.model_copy(
            update={"excluded_captain_ids": [*self.excluded_captain_ids, captain_id]}
        )

    def expanded_radius(self, step_km: float, max_km: float) -> float:
        return min(self.current_radius_km + step_km, max_km)


class FareBreakdown(BaseModel):
    """Monetary terms attached to a ride, in unrounded decimal amounts."""

    base_fare: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    surge_multiplier: Decimal = Decimal("1")
    subtotal: Decimal
    total: Decimal
    discount: Decimal = Decimal("0")
    final_fare: Decimal
    promo_code: str | None = None


class Ride(BaseModel):
    """Ride with its match state and lifecycle timestamps."""

    id: str
    rider_id: str
    pickup_lat: float
    pickup_lng: float
    pickup_address: str | None = None
    drop_lat: float
    drop_lng: float
    drop_address: str | None = None
    locality: str = "default"
    vehicle_class: VehicleClass
    status: RideStatus = RideStatus.PENDING
    captain_id: str | None = None
    vehicle_id: str | None = None
    otp: str
    otp_attempts: int = 0
    fare: FareBreakdown | None = None
    estimated_distance_km: float | None = None
    estimated_duration_min: float | None = None
    cancelled_by: CancelledBy | None = None
    cancelled_by_user_id: str | None = None
    cancellation_reason: str | None = None
    cancellation_fee: Decimal | None = None
    requested_at: datetime
    matched_at: datetime | None = None
    captain_arrived_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    updated_at: datetime | None = None
    match: MatchState
    version: int = 1

    @property
    def pickup(self) -> tuple[float, float]:
        return (self.pickup_lat, self.pickup_lng)

    @property
    def drop(self) -> tuple[float, float]:
        return (self.drop_lat, self.drop_lng)
