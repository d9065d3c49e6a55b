"""Per-locality policy lookups with fallback to the default row and built-in values."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from ...policy import (
    DEFAULT_LOCALITY,
    DEFAULT_PRICING,
    CancellationPenalty,
    MatchingConfig,
    PricingConfig,
)
from ...ride import CancelledBy, RideStatus, VehicleClass
from ...settings import MatchingSettings
from ..schema import CancellationPenalty as PenaltyRow
from ..schema import MatchingConfig as MatchingConfigRow
from ..schema import PricingConfig as PricingConfigRow


class ConfigRepository:
    def __init__(self, session: Session, fallback: MatchingSettings | None = None):
        self.session = session
        self.fallback = fallback or MatchingSettings()

    def matching_config(self, locality: str = DEFAULT_LOCALITY) -> MatchingConfig:
        """Fresh read: locality row, else the default row, else settings."""
        for key in dict.fromkeys((locality.lower(), DEFAULT_LOCALITY)):
            row = self.session.get(MatchingConfigRow, key, populate_existing=True)
            if row is not None:
                return MatchingConfig(
                    locality=row.locality,
                    initial_radius_km=row.initial_radius_km,
                    radius_expansion_step_km=row.radius_expansion_step_km,
                    max_radius_km=row.max_radius_km,
                    max_retry_attempts=row.max_retry_attempts,
                    max_offers_per_ride=row.max_offers_per_ride,
                    offer_timeout_seconds=row.offer_timeout_seconds,
                    redispatch_delay_seconds=row.redispatch_delay_seconds,
                    location_staleness_seconds=row.location_staleness_seconds,
                    cooldown_threshold=row.cooldown_threshold,
                    cooldown_minutes=row.cooldown_minutes,
                    timezone=row.timezone,
                )
        return MatchingConfig.from_settings(self.fallback, locality)

    def save_matching_config(self, config: MatchingConfig) -> None:
        row = self.session.get(MatchingConfigRow, config.locality)
        if row is None:
            row = MatchingConfigRow(locality=config.locality)
            self.session.add(row)
        for field, value in config.model_dump(exclude={"locality"}).items():
            setattr(row, field, value)
        self.session.flush()

    def pricing(self, locality: str, vehicle_class: VehicleClass) -> PricingConfig:
        for key in dict.fromkeys((locality.lower(), DEFAULT_LOCALITY)):
            stmt = select(PricingConfigRow).where(
                PricingConfigRow.locality == key,
                PricingConfigRow.vehicle_class == vehicle_class.value,
                PricingConfigRow.is_active.is_(True),
            )
            row = self.session.execute(stmt).scalar_one_or_none()
            if row is not None:
                return PricingConfig(
                    locality=row.locality,
                    vehicle_class=VehicleClass(row.vehicle_class),
                    base_fare=row.base_fare,
                    per_km_rate=row.per_km_rate,
                    per_min_rate=row.per_min_rate,
                    min_fare=row.min_fare,
                    max_surge_multiplier=row.max_surge_multiplier,
                )
        return DEFAULT_PRICING[vehicle_class]

    def save_pricing(self, pricing: PricingConfig) -> None:
        stmt = select(PricingConfigRow).where(
            PricingConfigRow.locality == pricing.locality,
            PricingConfigRow.vehicle_class == pricing.vehicle_class.value,
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = PricingConfigRow(
                locality=pricing.locality, vehicle_class=pricing.vehicle_class.value
            )
            self.session.add(row)
        row.base_fare = pricing.base_fare
        row.per_km_rate = pricing.per_km_rate
        row.per_min_rate = pricing.per_min_rate
        row.min_fare = pricing.min_fare
        row.max_surge_multiplier = pricing.max_surge_multiplier
        row.is_active = True
        self.session.flush()

    def penalties(
        self, locality: str, cancelled_by: CancelledBy, status: RideStatus
    ) -> list[CancellationPenalty]:
        """Active penalty bands, locality rows ahead of default rows, narrowest window first."""
        bands: list[CancellationPenalty] = []
        for key in dict.fromkeys((locality.lower(), DEFAULT_LOCALITY)):
            stmt = (
                select(PenaltyRow)
                .where(
                    PenaltyRow.locality == key,
                    PenaltyRow.cancelled_by == cancelled_by,
                    PenaltyRow.ride_status == status.value,
                    PenaltyRow.is_active.is_(True),
                )
                .order_by(PenaltyRow.min_seconds_after_match)
            )
            bands.extend(
                CancellationPenalty(
                    locality=row.locality,
                    cancelled_by=row.cancelled_by,  # type: ignore[arg-type]
                    ride_status=RideStatus(row.ride_status),
                    min_seconds_after_match=row.min_seconds_after_match,
                    max_seconds_after_match=row.max_seconds_after_match,
                    penalty_amount=row.penalty_amount,
                    penalty_type=row.penalty_type,  # type: ignore[arg-type]
                    cooldown_minutes=row.cooldown_minutes,
                )
                for row in self.session.execute(stmt).scalars().all()
            )
        return bands
