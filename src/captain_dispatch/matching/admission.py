"""Captain Admission Policy: cancellation cooldowns and offer acceptance metrics."""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from ..captain import CaptainMetrics
from ..db.repositories.metrics_repository import CaptainMetricsRepository
from ..db.utils import Clock, local_date, utc_now
from ..offer import OfferStatus
from ..policy import MatchingConfig

logger = logging.getLogger(__name__)


def cancellation_rate(cancelled: int, completed: int) -> float:
    total = cancelled + completed
    return cancelled / total if total else 0.0


def acceptance_rate(accepted: int, received: int) -> float:
    return accepted / max(received, 1)


class CaptainAdmissionPolicy:
    """Sole writer of captain metrics."""

    def __init__(self, session: Session, clock: Clock = utc_now):
        self.metrics = CaptainMetricsRepository(session)
        self.clock = clock

    def get(self, captain_id: str) -> CaptainMetrics | None:
        return self.metrics.get(captain_id)

    def is_in_cooldown(self, captain_id: str) -> bool:
        metrics = self.metrics.get(captain_id)
        return metrics is not None and metrics.in_cooldown(self.clock())

    def record_cancellation(
        self,
        captain_id: str,
        config: MatchingConfig,
        cooldown_minutes: int | None = None,
    ) -> CaptainMetrics:
        """Count a captain cancellation and start a cooldown at the daily threshold."""
        now = self.clock()
        today = local_date(now, config.timezone)
        metrics = self.metrics.get_for_update(captain_id)

        if metrics.daily_reset_date is None or metrics.daily_reset_date < today:
            metrics.daily_cancellations = 0
            metrics.daily_reset_date = today

        metrics.daily_cancellations += 1
        metrics.total_cancelled += 1
        metrics.cancellation_rate = cancellation_rate(
            metrics.total_cancelled, metrics.total_completed
        )

        if metrics.daily_cancellations >= config.cooldown_threshold:
            minutes = cooldown_minutes or config.cooldown_minutes
            metrics.cooldown_until = now + timedelta(minutes=minutes)
            logger.warning(
                f"Captain {captain_id} placed in {minutes} min cooldown after "
                f"{metrics.daily_cancellations} cancellations today"
            )

        self.metrics.save(metrics)
        return metrics

    def record_completion(self, captain_id: str) -> CaptainMetrics:
        metrics = self.metrics.get_for_update(captain_id)
        metrics.total_completed += 1
        metrics.cancellation_rate = cancellation_rate(
            metrics.total_cancelled, metrics.total_completed
        )
        self.metrics.save(metrics)
        return metrics

    def record_offer_received(self, captain_id: str) -> CaptainMetrics:
        metrics = self.metrics.get_for_update(captain_id)
        metrics.offers_received += 1
        metrics.acceptance_rate = acceptance_rate(metrics.offers_accepted, metrics.offers_received)
        self.metrics.save(metrics)
        return metrics

    def record_offer_outcome(self, captain_id: str, outcome: OfferStatus) -> CaptainMetrics:
        metrics = self.metrics.get_for_update(captain_id)
        if outcome == OfferStatus.ACCEPTED:
            metrics.offers_accepted += 1
        elif outcome == OfferStatus.DECLINED:
            metrics.offers_declined += 1
        elif outcome == OfferStatus.EXPIRED:
            metrics.offers_expired += 1
        else:
            raise ValueError(f"Not a final offer status: {outcome.value}")
        metrics.acceptance_rate = acceptance_rate(metrics.offers_accepted, metrics.offers_received)
        self.metrics.save(metrics)
        return metrics

    def clear_cooldown(self, captain_id: str) -> None:
        metrics = self.metrics.get_for_update(captain_id)
        metrics.cooldown_until = None
        self.metrics.save(metrics)
