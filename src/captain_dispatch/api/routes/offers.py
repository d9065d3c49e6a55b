from fastapi import APIRouter, Depends

from ..auth import verify_api_key
from ..dependencies import ServiceDep
from ..models.offers import OfferRespondRequest, OfferRespondResponse
from ..models.rides import RideResponse

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/{offer_id}/respond", response_model=OfferRespondResponse)
def respond_to_offer(offer_id: str, request: OfferRespondRequest, service: ServiceDep):
    """Accept or decline an offer. Only the addressed captain may respond."""
    result = service.respond_to_offer(offer_id, request.captain_id, request.response, request.reason)
    return OfferRespondResponse(
        offer=result.offer,
        ride=RideResponse.from_ride(result.ride),
        reassignment_outcome=result.reassignment.outcome if result.reassignment else None,
    )
