"""Request and response models for the dispatch API."""

from .captains import (
    CaptainLocationRequest,
    CaptainRegisterRequest,
    CaptainResponse,
    CaptainStatusRequest,
)
from .fares import FareEstimateRequest, FareEstimateResponse
from .health import HealthResponse
from .offers import OfferRespondRequest, OfferRespondResponse
from .rides import (
    ArriveRequest,
    CancelRideRequest,
    CancelRideResponse,
    CompleteRideRequest,
    ReassignRequest,
    RideCreateResponse,
    RideResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)

__all__ = [
    "ArriveRequest",
    "CancelRideRequest",
    "CancelRideResponse",
    "CaptainLocationRequest",
    "CaptainRegisterRequest",
    "CaptainResponse",
    "CaptainStatusRequest",
    "CompleteRideRequest",
    "FareEstimateRequest",
    "FareEstimateResponse",
    "HealthResponse",
    "OfferRespondRequest",
    "OfferRespondResponse",
    "ReassignRequest",
    "RideCreateResponse",
    "RideResponse",
    "VerifyOtpRequest",
    "VerifyOtpResponse",
]
