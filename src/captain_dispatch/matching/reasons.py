from enum import Enum


class ReassignmentReason(str, Enum):
    CAPTAIN_CANCELLED = "captain_cancelled"
    CAPTAIN_DELAY = "captain_delay"
    CAPTAIN_NO_RESPONSE = "captain_no_response"
    ALL_DECLINED = "all_declined"

    @property
    def is_offer_failure(self) -> bool:
        """Offer failures may arrive while the ride is still pending."""
        return self in (ReassignmentReason.CAPTAIN_NO_RESPONSE, ReassignmentReason.ALL_DECLINED)
