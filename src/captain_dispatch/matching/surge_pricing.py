"""Demand/supply surge multiplier around a pickup point."""

import logging
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from ..db.repositories.captain_repository import CaptainRepository
from ..db.repositories.ride_repository import RideRepository
from ..db.utils import Clock, utc_now
from .captain_index import CaptainCellIndex

logger = logging.getLogger(__name__)


def surge_multiplier(pending_requests: int, available_captains: int) -> Decimal:
    """Map the demand/supply ratio onto a multiplier between 1.0 and 2.5."""
    if available_captains == 0:
        return Decimal("2.5") if pending_requests > 0 else Decimal("1.0")

    ratio = Decimal(pending_requests) / Decimal(available_captains)
    if ratio <= 1:
        return Decimal("1.0")
    elif ratio <= 2:
        return Decimal("1.0") + (ratio - 1) * Decimal("0.5")
    elif ratio <= 3:
        return Decimal("1.5") + (ratio - 2)
    else:
        return Decimal("2.5")


class SurgePricingCalculator:
    def __init__(
        self,
        session: Session,
        index: CaptainCellIndex | None = None,
        clock: Clock = utc_now,
        staleness_seconds: int = 120,
    ):
        self.rides = RideRepository(session)
        self.captains = CaptainRepository(session)
        self.index = index or CaptainCellIndex()
        self.clock = clock
        self.staleness_seconds = staleness_seconds

    def get_surge(self, lat: float, lng: float, radius_km: float) -> Decimal:
        cells = self.index.cells_within(lat, lng, radius_km)
        pending = self.rides.count_pending_in_cells(cells)
        fresh_since = self.clock() - timedelta(seconds=self.staleness_seconds)
        available = self.captains.count_online_in_cells(cells, fresh_since)
        multiplier = surge_multiplier(pending, available)
        if multiplier > 1:
            logger.info(
                f"Surge {multiplier} near ({lat:.4f}, {lng:.4f}): "
                f"{pending} pending, {available} online"
            )
        return multiplier
