from typing import Literal

from pydantic import BaseModel, Field

from ...offer import Offer
from .rides import RideResponse


class OfferRespondRequest(BaseModel):
    captain_id: str = Field(..., min_length=1)
    response: Literal["accept", "decline"]
    reason: str | None = Field(None, max_length=200)


class OfferRespondResponse(BaseModel):
    offer: Offer
    ride: RideResponse
    reassignment_outcome: str | None = None
