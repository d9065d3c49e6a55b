"""Seed rows for per-locality matching policy and the cancellation-fee matrix."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .schema import CancellationPenalty, MatchingConfig

# locality: (initial radius, max radius, offer timeout seconds)
MATCHING_SEEDS: dict[str, tuple[float, float, int]] = {
    "default": (1.5, 5.0, 15),
    "bangalore": (2.0, 6.0, 12),
    "mumbai": (1.5, 5.0, 15),
    "delhi": (2.0, 5.0, 15),
}

# (cancelled_by, ride status, min s after match, max s after match, amount, type)
PENALTY_SEEDS: list[tuple[str, str, int, int | None, str, str]] = [
    ("rider", "pending", 0, None, "0", "fee"),
    ("rider", "matched", 0, 120, "0", "fee"),
    ("rider", "matched", 120, 300, "15", "fee"),
    ("rider", "captain_arriving", 0, None, "25", "fee"),
    ("rider", "waiting_for_rider", 0, None, "25", "fee"),
    ("captain", "matched", 0, None, "0", "warning"),
    ("captain", "captain_arriving", 0, None, "0", "cooldown"),
]


def seed_defaults(session: Session) -> None:
    """Insert seed rows that are not present yet. Existing rows are left alone."""
    existing = set(session.execute(select(MatchingConfig.locality)).scalars())
    for locality, (initial, maximum, timeout) in MATCHING_SEEDS.items():
        if locality in existing:
            continue
        session.add(
            MatchingConfig(
                locality=locality,
                initial_radius_km=initial,
                radius_expansion_step_km=1.0,
                max_radius_km=maximum,
                max_retry_attempts=3,
                max_offers_per_ride=5,
                offer_timeout_seconds=timeout,
                redispatch_delay_seconds=0.5,
                location_staleness_seconds=120,
                cooldown_threshold=3,
                cooldown_minutes=30,
                timezone="UTC",
            )
        )

    has_penalties = session.execute(
        select(CancellationPenalty.id).where(CancellationPenalty.locality == "default").limit(1)
    ).first()
    if has_penalties is None:
        for cancelled_by, status, lo, hi, amount, penalty_type in PENALTY_SEEDS:
            session.add(
                CancellationPenalty(
                    locality="default",
                    cancelled_by=cancelled_by,
                    ride_status=status,
                    min_seconds_after_match=lo,
                    max_seconds_after_match=hi,
                    penalty_amount=Decimal(amount),
                    penalty_type=penalty_type,
                )
            )
