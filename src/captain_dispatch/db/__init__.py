"""Database persistence module."""

from .database import init_database
from .schema import Captain, CaptainMetrics, DispatchTask, Offer, Ride, ServiceMetadata
from .transaction import savepoint
from .utils import utc_now

__all__ = [
    "init_database",
    "Captain",
    "CaptainMetrics",
    "DispatchTask",
    "Offer",
    "Ride",
    "ServiceMetadata",
    "savepoint",
    "utc_now",
]
