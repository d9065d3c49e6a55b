"""Offer repository. Resolution is a conditional write on response_status."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ...offer import Offer as OfferDomain
from ...offer import OfferStatus
from ..schema import Offer

PENDING = OfferStatus.PENDING.value


class OfferRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, offer: OfferDomain) -> None:
        self.session.add(
            Offer(
                id=offer.id,
                ride_id=offer.ride_id,
                captain_id=offer.captain_id,
                sequence=offer.sequence,
                sent_at=offer.sent_at,
                expires_at=offer.expires_at,
                response_status=offer.response_status.value,
                distance_to_pickup_km=offer.distance_to_pickup_km,
                eta_minutes=offer.eta_minutes,
                estimated_earnings=offer.estimated_earnings,
            )
        )
        self.session.flush()

    def get(self, offer_id: str) -> OfferDomain | None:
        stmt = select(Offer).where(Offer.id == offer_id).execution_options(populate_existing=True)
        row = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(row) if row is not None else None

    def resolve(
        self,
        offer_id: str,
        status: OfferStatus,
        now: datetime,
        decline_reason: str | None = None,
    ) -> bool:
        """Move a pending offer to a final status. False if someone else resolved it first."""
        stmt = (
            update(Offer)
            .where(Offer.id == offer_id, Offer.response_status == PENDING)
            .values(response_status=status.value, responded_at=now, decline_reason=decline_reason)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]

    def list_pending_for_ride(
        self, ride_id: str, captain_id: str | None = None
    ) -> list[OfferDomain]:
        stmt = select(Offer).where(Offer.ride_id == ride_id, Offer.response_status == PENDING)
        if captain_id is not None:
            stmt = stmt.where(Offer.captain_id == captain_id)
        stmt = stmt.execution_options(populate_existing=True)
        return [self._to_domain(o) for o in self.session.execute(stmt).scalars().all()]

    def list_expired(self, now: datetime, limit: int) -> list[OfferDomain]:
        stmt = (
            select(Offer)
            .where(Offer.response_status == PENDING, Offer.expires_at <= now)
            .order_by(Offer.expires_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(o) for o in self.session.execute(stmt).scalars().all()]

    def list_for_ride(self, ride_id: str) -> list[OfferDomain]:
        stmt = select(Offer).where(Offer.ride_id == ride_id).order_by(Offer.sequence)
        return [self._to_domain(o) for o in self.session.execute(stmt).scalars().all()]

    def _to_domain(self, offer: Offer) -> OfferDomain:
        return OfferDomain(
            id=offer.id,
            ride_id=offer.ride_id,
            captain_id=offer.captain_id,
            sequence=offer.sequence,
            sent_at=offer.sent_at,
            expires_at=offer.expires_at,
            response_status=OfferStatus(offer.response_status),
            responded_at=offer.responded_at,
            decline_reason=offer.decline_reason,
            distance_to_pickup_km=offer.distance_to_pickup_km,
            eta_minutes=offer.eta_minutes,
            estimated_earnings=offer.estimated_earnings,
        )

