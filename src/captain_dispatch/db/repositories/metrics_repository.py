"""Captain metrics repository."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from ...captain import CaptainMetrics as MetricsDomain
from ..schema import CaptainMetrics


class CaptainMetricsRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, captain_id: str) -> MetricsDomain | None:
        row = self._load(captain_id)
        return self._to_domain(row) if row is not None else None

    def get_for_update(self, captain_id: str) -> MetricsDomain:
        """Load (creating if needed) the metrics row, locking it where the backend supports it."""
        row = self._load(captain_id, lock=True)
        if row is None:
            row = CaptainMetrics(
                captain_id=captain_id,
                daily_cancellations=0,
                total_completed=0,
                total_cancelled=0,
                cancellation_rate=0.0,
                offers_received=0,
                offers_accepted=0,
                offers_declined=0,
                offers_expired=0,
                acceptance_rate=0.0,
            )
            self.session.add(row)
            self.session.flush()
        return self._to_domain(row)

    def save(self, metrics: MetricsDomain) -> None:
        row = self._load(metrics.captain_id)
        if row is None:
            row = CaptainMetrics(captain_id=metrics.captain_id)
            self.session.add(row)
        for field, value in metrics.model_dump(exclude={"captain_id"}).items():
            setattr(row, field, value)
        self.session.flush()

    def _load(self, captain_id: str, lock: bool = False) -> CaptainMetrics | None:
        stmt = (
            select(CaptainMetrics)
            .where(CaptainMetrics.captain_id == captain_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def _to_domain(self, row: CaptainMetrics) -> MetricsDomain:
        return MetricsDomain(
            captain_id=row.captain_id,
            daily_cancellations=row.daily_cancellations,
            daily_reset_date=row.daily_reset_date,
            total_completed=row.total_completed,
            total_cancelled=row.total_cancelled,
            cancellation_rate=row.cancellation_rate,
            offers_received=row.offers_received,
            offers_accepted=row.offers_accepted,
            offers_declined=row.offers_declined,
            offers_expired=row.offers_expired,
            acceptance_rate=row.acceptance_rate,
            cooldown_until=row.cooldown_until,
        )
