from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ...metrics import generate_prometheus_metrics

router = APIRouter()


@router.get("")
def prometheus_metrics() -> Response:
    """Prometheus scrape endpoint (unauthenticated for infrastructure)."""
    return Response(content=generate_prometheus_metrics(), media_type=CONTENT_TYPE_LATEST)
