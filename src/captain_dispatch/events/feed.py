"""Publishes ride, offer and captain mutations to the change feed after commit."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ..captain import Captain
from ..offer import Offer
from ..ride import Ride
from .channels import (
    CHANNEL_CAPTAIN_UPDATES,
    CHANNEL_OFFER_UPDATES,
    CHANNEL_RIDE_UPDATES,
    CaptainUpdateMessage,
    OfferUpdateMessage,
    RideUpdateMessage,
)
from .outbox import defer
from .publisher import RedisPublisher

logger = logging.getLogger(__name__)


class ChangeFeed:
    """Change feed bound to one session. Without a publisher it only logs."""

    def __init__(self, session: Session, publisher: RedisPublisher | None = None):
        self.session = session
        self.publisher = publisher

    def ride_changed(self, ride: Ride) -> None:
        message = RideUpdateMessage(
            event=ride.status.to_event_type(),
            ride_id=ride.id,
            status=ride.status.value,
            rider_id=ride.rider_id,
            captain_id=ride.captain_id,
            vehicle_id=ride.vehicle_id,
            reassignment_count=ride.match.reassignment_count,
            current_radius_km=ride.match.current_radius_km,
            cancelled_by=ride.cancelled_by,
            cancellation_reason=ride.cancellation_reason,
            timestamp=_iso(ride.updated_at or ride.requested_at),
        )
        self._publish(CHANNEL_RIDE_UPDATES, message.model_dump())

    def offer_changed(self, offer: Offer) -> None:
        message = OfferUpdateMessage(
            event=offer.response_status.to_event_type(),
            offer_id=offer.id,
            ride_id=offer.ride_id,
            captain_id=offer.captain_id,
            response_status=offer.response_status.value,
            expires_at=_iso(offer.expires_at),
            timestamp=_iso(offer.responded_at or offer.sent_at),
        )
        self._publish(CHANNEL_OFFER_UPDATES, message.model_dump())

    def captain_changed(self, captain: Captain) -> None:
        location = (captain.lat, captain.lng) if captain.has_location else None
        message = CaptainUpdateMessage(
            captain_id=captain.id,
            status=captain.status.value,
            location=location,  # type: ignore[arg-type]
            timestamp=_iso(captain.location_updated_at),
        )
        self._publish(CHANNEL_CAPTAIN_UPDATES, message.model_dump())

    def _publish(self, channel: str, payload: dict[str, Any]) -> None:
        publisher = self.publisher

        def send() -> None:
            if publisher is None:
                logger.debug(f"change feed {channel}: {payload.get('event', payload)}")
                return
            publisher.publish_sync(channel, payload)

        defer(self.session, send)


def _iso(moment: datetime | None) -> str:
    return moment.isoformat() + "Z" if moment is not None else ""
