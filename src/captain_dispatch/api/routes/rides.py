from fastapi import APIRouter, Depends, status

from ...offer import Offer
from ...service import RideRequest
from ..auth import verify_api_key
from ..dependencies import ServiceDep, SettingsDep
from ..models.fares import FareEstimateResponse
from ..models.rides import (
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

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("", response_model=RideCreateResponse, status_code=status.HTTP_201_CREATED)
def create_ride(request: RideRequest, service: ServiceDep, settings: SettingsDep):
    """Request a ride: price it and offer it to the nearest eligible captain."""
    result = service.request_ride(request)
    return RideCreateResponse(
        ride=RideResponse.from_ride(result.ride),
        otp=result.ride.otp,
        fare=FareEstimateResponse.from_estimate(result.fare, settings.fare.currency_minor_units),
        offer=result.offer,
    )


@router.get("/{ride_id}", response_model=RideResponse)
def get_ride(ride_id: str, service: ServiceDep):
    return RideResponse.from_ride(service.get_ride(ride_id))


@router.get("/{ride_id}/offers", response_model=list[Offer])
def list_offers(ride_id: str, service: ServiceDep):
    """Offer history; the accepted offer records which captain served the ride."""
    return service.list_offers(ride_id)


@router.post("/{ride_id}/dispatch")
def dispatch_ride(ride_id: str, service: ServiceDep):
    """Offer a pending ride to the next captain."""
    return service.dispatch(ride_id)


@router.post("/{ride_id}/reassign")
def reassign_ride(ride_id: str, request: ReassignRequest, service: ServiceDep):
    return service.reassign(ride_id, request.reason, request.captain_id)


@router.post("/{ride_id}/cancel", response_model=CancelRideResponse)
def cancel_ride(ride_id: str, request: CancelRideRequest, service: ServiceDep):
    result = service.cancel_ride(
        ride_id, request.cancelled_by, request.actor_id, request.reason, request.reassign
    )
    return CancelRideResponse(
        ride=RideResponse.from_ride(result.ride),
        fee=result.fee,
        penalty_type=result.penalty_type,
        reassignment_outcome=result.reassignment.outcome if result.reassignment else None,
    )


@router.post("/{ride_id}/arrive", response_model=RideResponse)
def mark_arrived(ride_id: str, request: ArriveRequest, service: ServiceDep):
    return RideResponse.from_ride(service.mark_arrived(ride_id, request.captain_id))


@router.post("/{ride_id}/verify-otp", response_model=VerifyOtpResponse)
def verify_otp(ride_id: str, request: VerifyOtpRequest, service: ServiceDep):
    """Check the pickup code; a match starts the ride."""
    verification = service.verify_otp(ride_id, request.code)
    return VerifyOtpResponse(
        verified=verification.result.verified,
        attempts_remaining=verification.result.attempts_remaining,
        ride=RideResponse.from_ride(verification.ride),
    )


@router.post("/{ride_id}/reset-otp")
def reset_otp(ride_id: str, service: ServiceDep, regenerate: bool = False) -> dict[str, str | None]:
    """Support intervention: unlock OTP verification after a lockout."""
    otp = service.reset_otp(ride_id, regenerate)
    return {"ride_id": ride_id, "otp": otp}


@router.post("/{ride_id}/complete", response_model=RideResponse)
def complete_ride(ride_id: str, request: CompleteRideRequest, service: ServiceDep):
    return RideResponse.from_ride(service.complete_ride(ride_id, request.captain_id))
