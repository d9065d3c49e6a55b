"""Standardized exception hierarchy for the dispatch service."""

from typing import Any


class DispatchError(Exception):
    """Base exception for all dispatch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(DispatchError):
    """Errors that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Network-related transient errors (timeout, connection refused)."""

    pass


class ServiceUnavailableError(TransientError):
    """External service temporarily unavailable (5xx responses)."""

    pass


class PersistenceError(TransientError):
    """Database or state persistence failed after retries."""

    pass


class PermanentError(DispatchError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class StateError(PermanentError):
    """Invalid state transition."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass


class IllegalTransition(StateError):
    """Ride status precondition failed. Re-read the ride and retry if still relevant."""

    pass


class RideNotReassignable(StateError):
    """Reassignment requested for a ride outside the reassignable statuses."""

    pass


class NotAuthorized(PermanentError):
    """Actor does not own the resource it is acting on."""

    pass


class AlreadyResolved(StateError):
    """Lost a race: the offer or ride was resolved by someone else first."""

    pass


class OfferExpired(AlreadyResolved):
    """Offer TTL elapsed before the response arrived."""

    pass


class NoCandidatesAvailable(PermanentError):
    """No eligible captain within the search radius.

    Consumed by the reassignment controller, never surfaced to riders directly.
    """

    pass


class OfferLimitReached(NoCandidatesAvailable):
    """Ride already received the maximum number of offers."""

    pass


class InvalidLength(ValidationError):
    """OTP submission is not exactly four digits."""

    pass


class LockedOut(PermanentError):
    """OTP verification locked after too many mismatches."""

    pass
