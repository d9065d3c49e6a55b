"""Captain repository: locations, status and candidate queries."""

from datetime import datetime

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import Session

from ...captain import Captain as CaptainDomain
from ...captain import CaptainStatus
from ...offer import OfferStatus
from ...ride import VehicleClass
from ..schema import Captain, CaptainMetrics, Offer


class CaptainRepository:
    def __init__(self, session: Session):
        self.session = session

    def upsert(self, captain: CaptainDomain, h3_cell: str | None = None) -> None:
        row = self.session.get(Captain, captain.id)
        if row is None:
            row = Captain(id=captain.id)
            self.session.add(row)
        row.name = captain.name
        row.lat = captain.lat
        row.lng = captain.lng
        row.h3_cell = h3_cell
        row.location_updated_at = captain.location_updated_at
        row.status = captain.status.value
        row.vehicle_class = captain.vehicle_class.value
        row.vehicle_id = captain.vehicle_id
        row.rating = captain.rating
        row.verified = captain.verified
        self.session.flush()

    def get(self, captain_id: str) -> CaptainDomain | None:
        stmt = (
            select(Captain)
            .where(Captain.id == captain_id)
            .execution_options(populate_existing=True)
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(row) if row is not None else None

    def update_location(
        self, captain_id: str, lat: float, lng: float, h3_cell: str, now: datetime
    ) -> bool:
        stmt = (
            update(Captain)
            .where(Captain.id == captain_id)
            .values(lat=lat, lng=lng, h3_cell=h3_cell, location_updated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]

    def transition_status(
        self,
        captain_id: str,
        from_statuses: set[CaptainStatus],
        to_status: CaptainStatus,
    ) -> bool:
        """Conditionally move a captain between statuses. False if the precondition failed."""
        stmt = (
            update(Captain)
            .where(
                Captain.id == captain_id,
                Captain.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1  # type: ignore[attr-defined]

    def find_candidates(
        self,
        cells: set[str],
        vehicle_class: VehicleClass,
        fresh_since: datetime,
        excluded: list[str],
        now: datetime,
    ) -> list[CaptainDomain]:
        """Online, verified captains in the given cells that pass every eligibility filter."""
        holds_pending_offer = exists().where(
            Offer.captain_id == Captain.id,
            Offer.response_status == OfferStatus.PENDING.value,
        )
        in_cooldown = exists().where(
            CaptainMetrics.captain_id == Captain.id,
            CaptainMetrics.cooldown_until.is_not(None),
            CaptainMetrics.cooldown_until > now,
        )
        stmt = select(Captain).where(
            Captain.h3_cell.in_(cells),
            Captain.status == CaptainStatus.ONLINE.value,
            Captain.vehicle_class == vehicle_class.value,
            Captain.verified.is_(True),
            Captain.location_updated_at.is_not(None),
            Captain.location_updated_at >= fresh_since,
            ~holds_pending_offer,
            ~in_cooldown,
        )
        if excluded:
            stmt = stmt.where(Captain.id.not_in(excluded))
        return [self._to_domain(c) for c in self.session.execute(stmt).scalars().all()]

    def count_online_in_cells(self, cells: set[str], fresh_since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(Captain)
            .where(
                Captain.h3_cell.in_(cells),
                Captain.status == CaptainStatus.ONLINE.value,
                Captain.location_updated_at >= fresh_since,
            )
        )
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, captain: Captain) -> CaptainDomain:
        return CaptainDomain(
            id=captain.id,
            name=captain.name,
            lat=captain.lat,
            lng=captain.lng,
            location_updated_at=captain.location_updated_at,
            status=CaptainStatus(captain.status),
            vehicle_class=VehicleClass(captain.vehicle_class),
            vehicle_id=captain.vehicle_id,
            rating=captain.rating,
            verified=captain.verified,
        )
