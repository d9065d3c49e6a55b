from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ...captain import Captain, CaptainMetrics, CaptainStatus
from ...ride import VehicleClass


class CaptainRegisterRequest(BaseModel):
    name: str | None = None
    vehicle_class: VehicleClass
    vehicle_id: str | None = None
    rating: float = Field(5.0, ge=1.0, le=5.0)
    verified: bool = True
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)
    status: Literal["online", "offline"] = "offline"


class CaptainLocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class CaptainStatusRequest(BaseModel):
    status: Literal["online", "offline"]


class CaptainResponse(BaseModel):
    id: str
    status: CaptainStatus
    vehicle_class: VehicleClass
    vehicle_id: str | None = None
    lat: float | None = None
    lng: float | None = None
    location_updated_at: datetime | None = None
    rating: float
    metrics: CaptainMetrics | None = None

    @classmethod
    def from_captain(
        cls, captain: Captain, metrics: CaptainMetrics | None = None
    ) -> "CaptainResponse":
        return cls(
            id=captain.id,
            status=captain.status,
            vehicle_class=captain.vehicle_class,
            vehicle_id=captain.vehicle_id,
            lat=captain.lat,
            lng=captain.lng,
            location_updated_at=captain.location_updated_at,
            rating=captain.rating,
            metrics=metrics,
        )
