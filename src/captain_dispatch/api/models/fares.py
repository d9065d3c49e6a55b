from decimal import Decimal

from pydantic import BaseModel, Field

from ...fare import FareEstimate
from ...ride import VehicleClass


class FareEstimateRequest(BaseModel):
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    drop_lat: float = Field(..., ge=-90, le=90)
    drop_lng: float = Field(..., ge=-180, le=180)
    vehicle_class: VehicleClass
    locality: str = "default"
    promo_code: str | None = None


class FareEstimateResponse(BaseModel):
    """Fare amounts rounded to the currency minor unit."""

    vehicle_class: VehicleClass
    base_fare: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    surge_multiplier: Decimal
    subtotal: Decimal
    total: Decimal
    discount: Decimal
    final_fare: Decimal
    promo_code: str | None = None
    promo_applied: bool = False
    promo_rejection_reason: str | None = None
    distance_km: float
    duration_min: float
    is_fallback: bool

    @classmethod
    def from_estimate(cls, estimate: FareEstimate, places: int = 2) -> "FareEstimateResponse":
        return cls(
            vehicle_class=estimate.vehicle_class,
            surge_multiplier=estimate.surge_multiplier,
            promo_code=estimate.promo_code,
            promo_applied=estimate.promo_code is not None and estimate.promo_rejection_reason is None,
            promo_rejection_reason=estimate.promo_rejection_reason,
            distance_km=round(estimate.distance_km, 3),
            duration_min=round(estimate.duration_min, 1),
            is_fallback=estimate.is_fallback,
            **estimate.display(places),
        )
