from fastapi import APIRouter, Depends

from ..auth import verify_api_key
from ..dependencies import ServiceDep, SettingsDep
from ..models.fares import FareEstimateRequest, FareEstimateResponse

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/estimate", response_model=FareEstimateResponse)
def estimate_fare(request: FareEstimateRequest, service: ServiceDep, settings: SettingsDep):
    estimate = service.estimate_fare(
        (request.pickup_lat, request.pickup_lng),
        (request.drop_lat, request.drop_lng),
        request.vehicle_class,
        request.locality,
        request.promo_code,
    )
    return FareEstimateResponse.from_estimate(estimate, settings.fare.currency_minor_units)
