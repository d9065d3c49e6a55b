from fastapi import APIRouter, Depends

from ...captain import Captain, CaptainStatus
from ..auth import verify_api_key
from ..dependencies import ServiceDep
from ..models.captains import (
    CaptainLocationRequest,
    CaptainRegisterRequest,
    CaptainResponse,
    CaptainStatusRequest,
)

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.put("/{captain_id}", response_model=CaptainResponse)
def register_captain(captain_id: str, request: CaptainRegisterRequest, service: ServiceDep):
    """Create or replace a captain profile."""
    captain = service.register_captain(
        Captain(
            id=captain_id,
            name=request.name,
            vehicle_class=request.vehicle_class,
            vehicle_id=request.vehicle_id,
            rating=request.rating,
            verified=request.verified,
            lat=request.lat,
            lng=request.lng,
            status=CaptainStatus(request.status),
        )
    )
    return CaptainResponse.from_captain(captain)


@router.get("/{captain_id}", response_model=CaptainResponse)
def get_captain(captain_id: str, service: ServiceDep):
    captain = service.get_captain(captain_id)
    return CaptainResponse.from_captain(captain, service.get_captain_metrics(captain_id))


@router.post("/{captain_id}/location", response_model=CaptainResponse)
def update_location(captain_id: str, request: CaptainLocationRequest, service: ServiceDep):
    return CaptainResponse.from_captain(
        service.update_captain_location(captain_id, request.lat, request.lng)
    )


@router.put("/{captain_id}/status", response_model=CaptainResponse)
def set_status(captain_id: str, request: CaptainStatusRequest, service: ServiceDep):
    return CaptainResponse.from_captain(service.set_captain_status(captain_id, request.status))
