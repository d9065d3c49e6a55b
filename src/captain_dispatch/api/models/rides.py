from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from ...matching.reasons import ReassignmentReason
from ...offer import Offer
from ...ride import FareBreakdown, MatchState, Ride, RideStatus, VehicleClass
from .fares import FareEstimateResponse


class RideResponse(BaseModel):
    """Ride as seen by API clients. The pickup OTP is only returned at creation."""

    id: str
    rider_id: str
    status: RideStatus
    vehicle_class: VehicleClass
    locality: str
    pickup_lat: float
    pickup_lng: float
    pickup_address: str | None = None
    drop_lat: float
    drop_lng: float
    drop_address: str | None = None
    captain_id: str | None = None
    vehicle_id: str | None = None
    fare: FareBreakdown | None = None
    estimated_distance_km: float | None = None
    estimated_duration_min: float | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    cancellation_fee: Decimal | None = None
    requested_at: datetime
    matched_at: datetime | None = None
    captain_arrived_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    match: MatchState

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideResponse":
        return cls.model_validate(ride.model_dump(exclude={"otp", "otp_attempts", "version"}))


class RideCreateResponse(BaseModel):
    ride: RideResponse
    otp: str
    fare: FareEstimateResponse
    offer: Offer | None = None


class ReassignRequest(BaseModel):
    reason: ReassignmentReason
    captain_id: str | None = None


class CancelRideRequest(BaseModel):
    cancelled_by: Literal["rider", "captain"]
    actor_id: str = Field(..., min_length=1)
    reason: str | None = Field(None, max_length=200)
    reassign: bool | None = None


class CancelRideResponse(BaseModel):
    ride: RideResponse
    fee: Decimal
    penalty_type: str | None = None
    reassignment_outcome: str | None = None


class ArriveRequest(BaseModel):
    captain_id: str = Field(..., min_length=1)


class CompleteRideRequest(BaseModel):
    captain_id: str = Field(..., min_length=1)


class VerifyOtpRequest(BaseModel):
    code: str


class VerifyOtpResponse(BaseModel):
    verified: bool
    attempts_remaining: int
    ride: RideResponse
