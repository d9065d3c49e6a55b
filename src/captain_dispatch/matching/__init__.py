"""Matching engine: proximity search, offers, reassignment, captain admission."""

from .admission import CaptainAdmissionPolicy
from .captain_index import CaptainCellIndex
from .notification_dispatch import NotificationDispatch
from .offer_dispatch import OfferDispatchEngine, RespondResult
from .proximity import Candidate, ProximitySearch
from .reasons import ReassignmentReason
from .reassignment import ReassignmentController, ReassignmentResult
from .surge_pricing import SurgePricingCalculator
from .task_queue import DispatchTaskQueue

__all__ = [
    "Candidate",
    "CaptainAdmissionPolicy",
    "CaptainCellIndex",
    "DispatchTaskQueue",
    "NotificationDispatch",
    "OfferDispatchEngine",
    "ProximitySearch",
    "ReassignmentController",
    "ReassignmentReason",
    "ReassignmentResult",
    "RespondResult",
    "SurgePricingCalculator",
]
