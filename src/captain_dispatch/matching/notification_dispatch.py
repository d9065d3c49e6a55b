"""Fire-and-forget notifications to riders and captains."""

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from ..events.outbox import defer

logger = logging.getLogger(__name__)

NotificationSender = Callable[[list[str], str, dict[str, Any]], None]

TEMPLATE_RIDE_OFFER = "ride_offer"
TEMPLATE_CAPTAIN_ASSIGNED = "captain_assigned"
TEMPLATE_CAPTAIN_ARRIVED = "captain_arrived"
TEMPLATE_RIDE_STARTED = "ride_started"
TEMPLATE_RIDE_COMPLETED = "ride_completed"
TEMPLATE_RIDE_CANCELLED = "ride_cancelled"
TEMPLATE_FINDING_NEW_CAPTAIN = "finding_new_captain"
TEMPLATE_NO_CAPTAINS = "no_captains_available"


def log_sender(user_ids: list[str], template: str, payload: dict[str, Any]) -> None:
    logger.info(f"notify {template} -> {len(user_ids)} recipient(s)")


class NotificationDispatch:
    """Queues notifications to be sent after the current transaction commits.

    Delivery failures are logged and never affect ride progress.
    """

    def __init__(self, session: Session, sender: NotificationSender | None = None):
        self.session = session
        self.sender = sender or log_sender

    def notify(self, user_ids: list[str], template: str, payload: dict[str, Any]) -> None:
        recipients = [u for u in user_ids if u]
        if not recipients:
            return
        sender = self.sender

        def send() -> None:
            try:
                sender(recipients, template, payload)
            except Exception as e:
                logger.warning(f"Notification {template} failed: {e}")

        defer(self.session, send)

    def send_captain_offer(self, captain_id: str, payload: dict[str, Any]) -> None:
        self.notify([captain_id], TEMPLATE_RIDE_OFFER, payload)

    def notify_rider(self, rider_id: str, template: str, payload: dict[str, Any]) -> None:
        self.notify([rider_id], template, payload)
