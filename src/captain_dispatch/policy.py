"""Tunable matching, pricing and cancellation policy values."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from .ride import CancelledBy, RideStatus, VehicleClass
from .settings import MatchingSettings

DEFAULT_LOCALITY = "default"


class MatchingConfig(BaseModel):
    """Matching policy for one locality, read fresh at the start of each cycle."""

    locality: str = DEFAULT_LOCALITY
    initial_radius_km: float = 1.5
    radius_expansion_step_km: float = 1.0
    max_radius_km: float = 5.0
    max_retry_attempts: int = 3
    max_offers_per_ride: int = 5
    offer_timeout_seconds: int = 15
    redispatch_delay_seconds: float = 0.5
    location_staleness_seconds: int = 120
    cooldown_threshold: int = 3
    cooldown_minutes: int = 30
    timezone: str = "UTC"

    @classmethod
    def from_settings(
        cls, settings: MatchingSettings, locality: str = DEFAULT_LOCALITY
    ) -> "MatchingConfig":
        return cls(
            locality=locality,
            initial_radius_km=settings.initial_radius_km,
            radius_expansion_step_km=settings.radius_expansion_step_km,
            max_radius_km=settings.max_radius_km,
            max_retry_attempts=settings.max_retry_attempts,
            max_offers_per_ride=settings.max_offers_per_ride,
            offer_timeout_seconds=settings.offer_timeout_seconds,
            redispatch_delay_seconds=settings.redispatch_delay_seconds,
            location_staleness_seconds=settings.location_staleness_seconds,
            cooldown_threshold=settings.cooldown_threshold,
            cooldown_minutes=settings.cooldown_minutes,
            timezone=settings.day_boundary_timezone,
        )


class PricingConfig(BaseModel):
    locality: str = DEFAULT_LOCALITY
    vehicle_class: VehicleClass
    base_fare: Decimal = Field(ge=0)
    per_km_rate: Decimal = Field(ge=0)
    per_min_rate: Decimal = Field(ge=0)
    min_fare: Decimal = Field(ge=0)
    max_surge_multiplier: Decimal = Decimal("3.0")


DEFAULT_PRICING: dict[VehicleClass, PricingConfig] = {
    VehicleClass.BIKE: PricingConfig(
        vehicle_class=VehicleClass.BIKE,
        base_fare=Decimal("15"),
        per_km_rate=Decimal("8"),
        per_min_rate=Decimal("1"),
        min_fare=Decimal("25"),
    ),
    VehicleClass.AUTO: PricingConfig(
        vehicle_class=VehicleClass.AUTO,
        base_fare=Decimal("25"),
        per_km_rate=Decimal("12"),
        per_min_rate=Decimal("1.5"),
        min_fare=Decimal("40"),
    ),
    VehicleClass.CAB: PricingConfig(
        vehicle_class=VehicleClass.CAB,
        base_fare=Decimal("50"),
        per_km_rate=Decimal("15"),
        per_min_rate=Decimal("2"),
        min_fare=Decimal("80"),
    ),
}

# km/h, used to derive a duration when the directions provider is unavailable
AVERAGE_SPEED_KMH: dict[VehicleClass, float] = {
    VehicleClass.BIKE: 25.0,
    VehicleClass.AUTO: 20.0,
    VehicleClass.CAB: 30.0,
}


PenaltyType = Literal["fee", "cooldown", "warning"]


class CancellationPenalty(BaseModel):
    """One band of the cancellation-fee matrix."""

    locality: str = DEFAULT_LOCALITY
    cancelled_by: CancelledBy
    ride_status: RideStatus
    min_seconds_after_match: int = 0
    max_seconds_after_match: int | None = None
    penalty_amount: Decimal = Decimal("0")
    penalty_type: PenaltyType = "fee"
    cooldown_minutes: int | None = None

    def covers(self, seconds_after_match: float) -> bool:
        if seconds_after_match < self.min_seconds_after_match:
            return False
        return (
            self.max_seconds_after_match is None
            or seconds_after_match <= self.max_seconds_after_match
        )
