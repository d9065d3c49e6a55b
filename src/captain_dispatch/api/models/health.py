"""Health check models."""

from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    database: Literal["healthy", "unhealthy"]
    schema_version: str | None = None
    timestamp: str
