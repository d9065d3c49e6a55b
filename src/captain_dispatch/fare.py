"""Fare computation: distance, time, surge, minimum fare and promo discount."""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field

from .core.exceptions import DispatchError
from .geo.distance import eta_minutes, road_distance_km
from .geo.osrm_client import OSRMClient
from .policy import AVERAGE_SPEED_KMH, PricingConfig
from .promo import PromoCode, apply_promo
from .ride import FareBreakdown, VehicleClass

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


class TripGeometry(BaseModel):
    distance_km: float = Field(ge=0)
    duration_min: float = Field(ge=0)
    is_fallback: bool = False


class FareEstimate(BaseModel):
    """Unrounded fare breakdown. Use display() for amounts shown to people."""

    vehicle_class: VehicleClass
    base_fare: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    surge_multiplier: Decimal
    subtotal: Decimal
    total: Decimal
    discount: Decimal = ZERO
    final_fare: Decimal
    promo_code: str | None = None
    promo_rejection_reason: str | None = None
    distance_km: float
    duration_min: float
    is_fallback: bool = False

    def display(self, places: int = 2) -> dict[str, Decimal]:
        """Round money fields to the currency minor unit, half-up."""
        quantum = Decimal(1).scaleb(-places)
        fields = (
            "base_fare",
            "distance_fare",
            "time_fare",
            "subtotal",
            "total",
            "discount",
            "final_fare",
        )
        return {
            name: getattr(self, name).quantize(quantum, rounding=ROUND_HALF_UP)
            for name in fields
        }

    def to_breakdown(self) -> FareBreakdown:
        return FareBreakdown(
            base_fare=self.base_fare,
            distance_fare=self.distance_fare,
            time_fare=self.time_fare,
            surge_multiplier=self.surge_multiplier,
            subtotal=self.subtotal,
            total=self.total,
            discount=self.discount,
            final_fare=self.final_fare,
            promo_code=self.promo_code if self.promo_rejection_reason is None else None,
        )


def calculate_fare(
    distance_km: float,
    duration_min: float,
    pricing: PricingConfig,
    surge_multiplier: Decimal = ONE,
    promo_code: str | None = None,
    promo: PromoCode | None = None,
    now: datetime | None = None,
    is_fallback: bool = False,
) -> FareEstimate:
    """Calculate the fare for a trip.

    total = max((base + distance_km * per_km + duration_min * per_min) * surge, min_fare)

    A promo code that fails validation leaves the fare unchanged and carries the
    rejection reason on the estimate.
    """
    if distance_km < 0:
        raise ValueError("Distance must be non-negative")
    if duration_min < 0:
        raise ValueError("Duration must be non-negative")
    if surge_multiplier < ONE:
        raise ValueError("Surge multiplier must be >= 1.0")

    surge = min(Decimal(surge_multiplier), pricing.max_surge_multiplier)

    base_fare = pricing.base_fare
    distance_fare = Decimal(str(distance_km)) * pricing.per_km_rate
    time_fare = Decimal(str(duration_min)) * pricing.per_min_rate
    subtotal = base_fare + distance_fare + time_fare
    total = max(subtotal * surge, pricing.min_fare)

    discount = ZERO
    applied_code = None
    rejection_reason = None
    if promo_code:
        if now is None:
            raise ValueError("Promo validation requires the current time")
        result = apply_promo(promo_code, promo, total, now)
        applied_code = result.code
        discount = result.discount
        rejection_reason = result.rejection_reason

    return FareEstimate(
        vehicle_class=pricing.vehicle_class,
        base_fare=base_fare,
        distance_fare=distance_fare,
        time_fare=time_fare,
        surge_multiplier=surge,
        subtotal=subtotal,
        total=total,
        discount=discount,
        final_fare=max(total - discount, ZERO),
        promo_code=applied_code,
        promo_rejection_reason=rejection_reason,
        distance_km=distance_km,
        duration_min=duration_min,
        is_fallback=is_fallback,
    )


def fallback_geometry(
    pickup: tuple[float, float],
    drop: tuple[float, float],
    vehicle_class: VehicleClass,
    road_factor: float = 1.3,
) -> TripGeometry:
    distance = road_distance_km(pickup, drop, road_factor)
    duration = eta_minutes(distance, AVERAGE_SPEED_KMH[vehicle_class])
    return TripGeometry(distance_km=distance, duration_min=duration, is_fallback=True)


class TripGeometryResolver:
    """Resolves trip distance and duration, degrading to the haversine fallback."""

    def __init__(self, osrm_client: OSRMClient | None = None, road_factor: float = 1.3):
        self.osrm_client = osrm_client
        self.road_factor = road_factor

    def resolve(
        self,
        pickup: tuple[float, float],
        drop: tuple[float, float],
        vehicle_class: VehicleClass,
    ) -> TripGeometry:
        if self.osrm_client is None:
            return fallback_geometry(pickup, drop, vehicle_class, self.road_factor)
        try:
            route = self.osrm_client.route(pickup, drop)
        except DispatchError as e:
            logger.warning(f"Directions provider unavailable, using fallback estimate: {e}")
            return fallback_geometry(pickup, drop, vehicle_class, self.road_factor)
        return TripGeometry(distance_km=route.distance_km, duration_min=route.duration_minutes)


def captain_earnings(final_fare: Decimal, share: float) -> Decimal:
    return final_fare * Decimal(str(share))
