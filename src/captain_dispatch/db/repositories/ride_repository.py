"""Ride repository with compare-and-set writes."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ...ride import FareBreakdown, MatchState, RideStatus, VehicleClass
from ...ride import Ride as RideDomain
from ..schema import Ride


def match_values(match: MatchState) -> dict[str, Any]:
    """Column values for an embedded MatchState."""
    return {
        "excluded_captain_ids": list(match.excluded_captain_ids),
        "reassignment_count": match.reassignment_count,
        "current_radius_km": match.current_radius_km,
        "matching_attempts": match.matching_attempts,
        "offers_sent": match.offers_sent,
        "pending_offer_id": match.pending_offer_id,
        "last_offer_sent_at": match.last_offer_sent_at,
    }


def fare_values(fare: FareBreakdown | None) -> dict[str, Any]:
    if fare is None:
        return {}
    return {
        "base_fare": fare.base_fare,
        "distance_fare": fare.distance_fare,
        "time_fare": fare.time_fare,
        "surge_multiplier": fare.surge_multiplier,
        "subtotal": fare.subtotal,
        "total_fare": fare.total,
        "discount": fare.discount,
        "final_fare": fare.final_fare,
        "promo_code": fare.promo_code,
    }


class RideRepository:
    """Repository for ride rows.

    Every status or match-state write is a conditional UPDATE on the observed
    (status, version) pair; callers check the returned flag and re-read.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, ride: RideDomain, pickup_h3_cell: str | None = None) -> None:
        row = Ride(
            id=ride.id,
            rider_id=ride.rider_id,
            pickup_lat=ride.pickup_lat,
            pickup_lng=ride.pickup_lng,
            pickup_address=ride.pickup_address,
            pickup_h3_cell=pickup_h3_cell,
            drop_lat=ride.drop_lat,
            drop_lng=ride.drop_lng,
            drop_address=ride.drop_address,
            locality=ride.locality,
            vehicle_class=ride.vehicle_class.value,
            status=ride.status.value,
            otp=ride.otp,
            otp_attempts=ride.otp_attempts,
            estimated_distance_km=ride.estimated_distance_km,
            estimated_duration_min=ride.estimated_duration_min,
            requested_at=ride.requested_at,
            updated_at=ride.requested_at,
            version=ride.version,
            **match_values(ride.match),
            **fare_values(ride.fare),
        )
        self.session.add(row)
        self.session.flush()

    def get(self, ride_id: str) -> RideDomain | None:
        """Read the committed-or-flushed row, bypassing the identity map cache."""
        stmt = select(Ride).where(Ride.id == ride_id).execution_options(populate_existing=True)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            return None
        return self._to_domain(row)

    def compare_and_set(
        self,
        ride_id: str,
        expected_status: RideStatus,
        expected_version: int,
        values: dict[str, Any],
        now: datetime,
        pending_offer_id: str | None = None,
    ) -> bool:
        """Apply values only if the ride still has the observed status and version.

        When pending_offer_id is given the ride must also still point at that offer.
        """
        stmt = update(Ride).where(
            Ride.id == ride_id,
            Ride.status == expected_status.value,
            Ride.version == expected_version,
        )
        if pending_offer_id is not None:
            stmt = stmt.where(Ride.pending_offer_id == pending_offer_id)
        stmt = stmt.values(**values, version=Ride.version + 1, updated_at=now)
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount == 1  # type: ignore[attr-defined]

    def claim_for_offer(
        self, ride_id: str, expected_version: int, offer_id: str, now: datetime
    ) -> bool:
        """Point a pending ride at a new offer if it has no outstanding one."""
        stmt = (
            update(Ride)
            .where(
                Ride.id == ride_id,
                Ride.status == RideStatus.PENDING.value,
                Ride.version == expected_version,
                Ride.pending_offer_id.is_(None),
            )
            .values(
                pending_offer_id=offer_id,
                offers_sent=Ride.offers_sent + 1,
                last_offer_sent_at=now,
                version=Ride.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]

    def record_otp_mismatch(self, ride_id: str, max_attempts: int) -> bool:
        """Increment the OTP attempt counter unless already at the limit."""
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id, Ride.otp_attempts < max_attempts)
            .values(otp_attempts=Ride.otp_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]

    def reset_otp(self, ride_id: str, otp: str | None = None) -> None:
        values: dict[str, Any] = {"otp_attempts": 0}
        if otp is not None:
            values["otp"] = otp
        self.session.execute(
            update(Ride)
            .where(Ride.id == ride_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def list_unmatched(self, attempted_before: datetime, limit: int) -> list[RideDomain]:
        """Pending rides with no outstanding offer whose last attempt is older than the cutoff."""
        stmt = (
            select(Ride)
            .where(
                Ride.status == RideStatus.PENDING.value,
                Ride.pending_offer_id.is_(None),
                func.coalesce(Ride.last_offer_sent_at, Ride.requested_at) <= attempted_before,
            )
            .order_by(Ride.requested_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def count_pending_in_cells(self, cells: set[str]) -> int:
        stmt = (
            select(func.count())
            .select_from(Ride)
            .where(Ride.status == RideStatus.PENDING.value, Ride.pickup_h3_cell.in_(cells))
        )
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, ride: Ride) -> RideDomain:
        """Convert ORM model to domain model."""
        fare = None
        if ride.total_fare is not None:
            fare = FareBreakdown(
                base_fare=ride.base_fare,
                distance_fare=ride.distance_fare,
                time_fare=ride.time_fare,
                surge_multiplier=ride.surge_multiplier,
                subtotal=ride.subtotal,
                total=ride.total_fare,
                discount=ride.discount,
                final_fare=ride.final_fare,
                promo_code=ride.promo_code,
            )

        return RideDomain(
            id=ride.id,
            rider_id=ride.rider_id,
            pickup_lat=ride.pickup_lat,
            pickup_lng=ride.pickup_lng,
            pickup_address=ride.pickup_address,
            drop_lat=ride.drop_lat,
            drop_lng=ride.drop_lng,
            drop_address=ride.drop_address,
            locality=ride.locality,
            vehicle_class=VehicleClass(ride.vehicle_class),
            status=RideStatus(ride.status),
            captain_id=ride.captain_id,
            vehicle_id=ride.vehicle_id,
            otp=ride.otp,
            otp_attempts=ride.otp_attempts,
            fare=fare,
            estimated_distance_km=ride.estimated_distance_km,
            estimated_duration_min=ride.estimated_duration_min,
            cancelled_by=ride.cancelled_by,  # type: ignore[arg-type]
            cancelled_by_user_id=ride.cancelled_by_user_id,
            cancellation_reason=ride.cancellation_reason,
            cancellation_fee=ride.cancellation_fee,
            requested_at=ride.requested_at,
            matched_at=ride.matched_at,
            captain_arrived_at=ride.captain_arrived_at,
            started_at=ride.started_at,
            completed_at=ride.completed_at,
            cancelled_at=ride.cancelled_at,
            updated_at=ride.updated_at,
            match=MatchState(
                excluded_captain_ids=list(ride.excluded_captain_ids or []),
                reassignment_count=ride.reassignment_count,
                current_radius_km=ride.current_radius_km,
                matching_attempts=ride.matching_attempts,
                offers_sent=ride.offers_sent,
                pending_offer_id=ride.pending_offer_id,
                last_offer_sent_at=ride.last_offer_sent_at,
            ),
            version=ride.version,
        )
