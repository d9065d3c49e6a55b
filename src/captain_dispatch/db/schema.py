"""SQLAlchemy ORM models for dispatch persistence."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from .utils import utc_now


class Money(TypeDecorator[Decimal]):
    """Exact decimal amounts stored as text, so SQLite never rounds through float."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    rider_id: Mapped[str] = mapped_column(String, nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    pickup_h3_cell: Mapped[str | None] = mapped_column(String, nullable=True)
    drop_lat: Mapped[float] = mapped_column(Float, nullable=False)
    drop_lng: Mapped[float] = mapped_column(Float, nullable=False)
    drop_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    locality: Mapped[str] = mapped_column(String, nullable=False, default="default")
    vehicle_class: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    captain_id: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_id: Mapped[str | None] = mapped_column(String, nullable=True)
    otp: Mapped[str] = mapped_column(String(4), nullable=False)
    otp_attempts: Mapped[int] = mapped_column(Integer, default=0)

    base_fare: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    distance_fare: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    time_fare: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    surge_multiplier: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    subtotal: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    total_fare: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    discount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    final_fare: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    promo_code: Mapped[str | None] = mapped_column(String, nullable=True)
    estimated_distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_duration_min: Mapped[float | None] = mapped_column(Float, nullable=True)

    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancelled_by_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    cancellation_fee: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    matched_at: Mapped[datetime | None] = mapped_column(nullable=True)
    captain_arrived_at: Mapped[datetime | None] = mapped_column(nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(default=lambda: utc_now())

    # Match state
    excluded_captain_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    reassignment_count: Mapped[int] = mapped_column(Integer, default=0)
    current_radius_km: Mapped[float] = mapped_column(Float, nullable=False)
    matching_attempts: Mapped[int] = mapped_column(Integer, default=0)
    offers_sent: Mapped[int] = mapped_column(Integer, default=0)
    pending_offer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    last_offer_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_ride_status", "status"),
        Index("idx_ride_captain", "captain_id"),
        Index("idx_ride_rider", "rider_id"),
        Index("idx_ride_pickup_cell", "pickup_h3_cell"),
    )


_PENDING_OFFER = text("response_status = 'pending'")


class Offer(Base):
    __tablename__ = "ride_offers"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    ride_id: Mapped[str] = mapped_column(String, nullable=False)
    captain_id: Mapped[str] = mapped_column(String, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    response_status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    distance_to_pickup_km: Mapped[float] = mapped_column(Float, nullable=False)
    eta_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_earnings: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    __table_args__ = (
        Index("idx_offer_ride_status", "ride_id", "response_status"),
        Index("idx_offer_captain_status", "captain_id", "response_status"),
        Index("idx_offer_expiry", "response_status", "expires_at"),
        # At most one pending offer per ride and per captain
        Index(
            "uq_offer_pending_ride",
            "ride_id",
            unique=True,
            sqlite_where=_PENDING_OFFER,
            postgresql_where=_PENDING_OFFER,
        ),
        Index(
            "uq_offer_pending_captain",
            "captain_id",
            unique=True,
            sqlite_where=_PENDING_OFFER,
            postgresql_where=_PENDING_OFFER,
        ),
    )


class Captain(Base):
    __tablename__ = "captains"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    h3_cell: Mapped[str | None] = mapped_column(String, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="offline")
    vehicle_class: Mapped[str] = mapped_column(String, nullable=False)
    vehicle_id: Mapped[str | None] = mapped_column(String, nullable=True)
    rating: Mapped[float] = mapped_column(Float, default=5.0)
    verified: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )

    __table_args__ = (
        Index("idx_captain_status_class", "status", "vehicle_class"),
        Index("idx_captain_cell", "h3_cell"),
    )


class CaptainMetrics(Base):
    __tablename__ = "captain_metrics"

    captain_id: Mapped[str] = mapped_column(String, primary_key=True)
    daily_cancellations: Mapped[int] = mapped_column(Integer, default=0)
    daily_reset_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_completed: Mapped[int] = mapped_column(Integer, default=0)
    total_cancelled: Mapped[int] = mapped_column(Integer, default=0)
    cancellation_rate: Mapped[float] = mapped_column(Float, default=0.0)
    offers_received: Mapped[int] = mapped_column(Integer, default=0)
    offers_accepted: Mapped[int] = mapped_column(Integer, default=0)
    offers_declined: Mapped[int] = mapped_column(Integer, default=0)
    offers_expired: Mapped[int] = mapped_column(Integer, default=0)
    acceptance_rate: Mapped[float] = mapped_column(Float, default=0.0)
    cooldown_until: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )


class MatchingConfig(Base):
    __tablename__ = "matching_config"

    locality: Mapped[str] = mapped_column(String, primary_key=True)
    initial_radius_km: Mapped[float] = mapped_column(Float, nullable=False)
    radius_expansion_step_km: Mapped[float] = mapped_column(Float, nullable=False)
    max_radius_km: Mapped[float] = mapped_column(Float, nullable=False)
    max_retry_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    max_offers_per_ride: Mapped[int] = mapped_column(Integer, nullable=False)
    offer_timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    redispatch_delay_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    location_staleness_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    cooldown_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="UTC")
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )


class PricingConfig(Base):
    __tablename__ = "pricing_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    locality: Mapped[str] = mapped_column(String, nullable=False)
    vehicle_class: Mapped[str] = mapped_column(String, nullable=False)
    base_fare: Mapped[Decimal] = mapped_column(Money, nullable=False)
    per_km_rate: Mapped[Decimal] = mapped_column(Money, nullable=False)
    per_min_rate: Mapped[Decimal] = mapped_column(Money, nullable=False)
    min_fare: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_surge_multiplier: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (UniqueConstraint("locality", "vehicle_class"),)


class PromoCode(Base):
    __tablename__ = "promo_codes"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    discount_type: Mapped[str] = mapped_column(String, nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_discount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    min_ride_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    valid_from: Mapped[datetime] = mapped_column(nullable=False)
    valid_until: Mapped[datetime] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class CancellationPenalty(Base):
    __tablename__ = "cancellation_penalties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    locality: Mapped[str] = mapped_column(String, nullable=False)
    cancelled_by: Mapped[str] = mapped_column(String, nullable=False)
    ride_status: Mapped[str] = mapped_column(String, nullable=False)
    min_seconds_after_match: Mapped[int] = mapped_column(Integer, default=0)
    max_seconds_after_match: Mapped[int | None] = mapped_column(Integer, nullable=True)
    penalty_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    penalty_type: Mapped[str] = mapped_column(String, nullable=False, default="fee")
    cooldown_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("idx_penalty_lookup", "locality", "cancelled_by", "ride_status"),
    )


class DispatchTask(Base):
    __tablename__ = "dispatch_tasks"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    ride_id: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)
    run_after: Mapped[datetime] = mapped_column(nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String, nullable=False, default="queued")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=lambda: utc_now())

    __table_args__ = (Index("idx_task_due", "status", "run_after"),)


class ServiceMetadata(Base):
    __tablename__ = "service_metadata"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )
