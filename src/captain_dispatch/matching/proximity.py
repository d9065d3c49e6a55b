"""Proximity Search: eligible online captains near a pickup, nearest first."""

import logging
from datetime import timedelta

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db.repositories.captain_repository import CaptainRepository
from ..db.utils import Clock, utc_now
from ..geo.distance import haversine_distance_km
from ..ride import VehicleClass
from .captain_index import CaptainCellIndex

logger = logging.getLogger(__name__)


class Candidate(BaseModel):
    captain_id: str
    lat: float
    lng: float
    distance_km: float
    rating: float
    vehicle_id: str | None = None


def rank_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Nearest first; ties by highest rating, then captain id."""
    return sorted(candidates, key=lambda c: (c.distance_km, -c.rating, c.captain_id))


class ProximitySearch:
    def __init__(
        self,
        session: Session,
        index: CaptainCellIndex | None = None,
        clock: Clock = utc_now,
    ):
        self.captains = CaptainRepository(session)
        self.index = index or CaptainCellIndex()
        self.clock = clock

    def find_nearby(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        vehicle_class: VehicleClass,
        excluded: list[str] | None = None,
        staleness_seconds: int = 120,
    ) -> list[Candidate]:
        """Captains within radius_km who are online, verified, fresh and not excluded.

        Captains in cooldown or already holding a pending offer are filtered in
        the query; the H3 disk is only a prefilter and every row is re-checked
        against the exact distance.
        """
        now = self.clock()
        cells = self.index.cells_within(lat, lng, radius_km)
        rows = self.captains.find_candidates(
            cells=cells,
            vehicle_class=vehicle_class,
            fresh_since=now - timedelta(seconds=staleness_seconds),
            excluded=list(excluded or []),
            now=now,
        )

        candidates = []
        for captain in rows:
            if not captain.has_location:
                continue
            distance = haversine_distance_km(lat, lng, captain.lat, captain.lng)  # type: ignore[arg-type]
            if distance <= radius_km:
                candidates.append(
                    Candidate(
                        captain_id=captain.id,
                        lat=captain.lat,  # type: ignore[arg-type]
                        lng=captain.lng,  # type: ignore[arg-type]
                        distance_km=distance,
                        rating=captain.rating,
                        vehicle_id=captain.vehicle_id,
                    )
                )

        logger.debug(
            f"{len(candidates)} of {len(rows)} indexed captains within {radius_km:.1f} km"
        )
        return rank_candidates(candidates)
