from fastapi import APIRouter, Depends

from ...service import MaintenanceReport
from ..auth import verify_api_key
from ..dependencies import ServiceDep

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/sweep", response_model=MaintenanceReport)
def sweep(service: ServiceDep):
    """Run one maintenance pass: expire stale offers, drain re-dispatch tasks, retry unmatched rides."""
    return service.run_maintenance()
