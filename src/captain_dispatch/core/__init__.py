"""Cross-cutting primitives: errors, retry policy, correlation context."""

from .exceptions import (
    AlreadyResolved,
    DispatchError,
    IllegalTransition,
    InvalidLength,
    LockedOut,
    NoCandidatesAvailable,
    NotAuthorized,
    NotFoundError,
    OfferExpired,
    OfferLimitReached,
    RideNotReassignable,
    TransientError,
)
from .retry import RetryConfig, with_retry, with_retry_sync

__all__ = [
    "AlreadyResolved",
    "DispatchError",
    "IllegalTransition",
    "InvalidLength",
    "LockedOut",
    "NoCandidatesAvailable",
    "NotAuthorized",
    "NotFoundError",
    "OfferExpired",
    "OfferLimitReached",
    "RideNotReassignable",
    "RetryConfig",
    "TransientError",
    "with_retry",
    "with_retry_sync",
]
